import logging
import shutil
from pathlib import Path

WORK_DIR_PREFIX = "venc-"

class HousekeepingService:
    """Service for cleaning up leftovers of interrupted encodes."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_stale_work_dirs(self, directory: Path) -> int:
        """Removes encoder scratch directories (venc-*) left in directory.

        Only safe at startup, before the worker claims anything.
        """
        if not directory.is_dir():
            return 0
        removed = 0
        for entry in directory.iterdir():
            if entry.is_dir() and entry.name.startswith(WORK_DIR_PREFIX):
                try:
                    shutil.rmtree(entry)
                    removed += 1
                except OSError as e:
                    self.logger.warning(f"HOUSEKEEPING: could not remove {entry}: {e}")
        if removed:
            self.logger.info(f"HOUSEKEEPING: removed {removed} stale work dirs from {directory}")
        return removed
