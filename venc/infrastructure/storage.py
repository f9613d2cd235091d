import logging
import shutil
from pathlib import Path, PurePosixPath
from urllib.parse import quote
from venc.config.models import StorageConfig
from venc.domain.errors import StorageError

FALLBACK_FILENAME = "video.mp4"

class LocalObjectStorage:
    """Raw/serving object storage backed by two local directories.

    Raw uploads live under `raw_dir` and are addressed by an input locator
    (a relative path). Serving outputs are written to
    `serving_dir/<video_id>/<name>` and exposed under `public_base_url`.
    """

    def __init__(self, config: StorageConfig):
        self.raw_dir = Path(config.raw_dir)
        self.serving_dir = Path(config.serving_dir)
        self.public_base_url = config.public_base_url
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _safe_relative(name: str) -> PurePosixPath:
        rel = PurePosixPath(name)
        if not name or rel.is_absolute() or ".." in rel.parts:
            raise StorageError(f"Invalid object name: {name!r}")
        return rel

    def resolve_raw(self, input_locator: str) -> Path:
        """Returns the local path of a raw upload."""
        path = self.raw_dir.joinpath(*self._safe_relative(input_locator).parts)
        if not path.is_file():
            raise StorageError(f"Raw object not found: {input_locator}")
        return path

    def serving_path(self, video_id: str, name: str) -> Path:
        return self.serving_dir.joinpath(
            *self._safe_relative(video_id).parts, *self._safe_relative(name).parts
        )

    def url_for(self, video_id: str, name: str) -> str:
        return f"{self.public_base_url}/{quote(video_id)}/{quote(str(self._safe_relative(name)))}"

    def publish(self, video_id: str, name: str, source: Path) -> str:
        """Copies a local file into serving storage and returns its URL."""
        dest = self.serving_path(video_id, name)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)
        except OSError as e:
            raise StorageError(f"Failed to publish {name} for {video_id}: {e}") from e
        return self.url_for(video_id, name)

    def publish_tree(self, video_id: str, source_dir: Path) -> int:
        """Publishes every file under source_dir, keeping relative paths."""
        count = 0
        for path in sorted(source_dir.rglob("*")):
            if path.is_file():
                self.publish(video_id, path.relative_to(source_dir).as_posix(), path)
                count += 1
        return count

    def copy_raw_to_serving(self, video_id: str, input_locator: str) -> str:
        """Copies raw bytes verbatim to the serving area and returns the URL."""
        source = self.resolve_raw(input_locator)
        self.logger.info(f"STORAGE_COPY: video_id={video_id} locator={input_locator}")
        return self.publish(video_id, FALLBACK_FILENAME, source)
