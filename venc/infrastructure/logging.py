import logging
from pathlib import Path
from typing import Optional

def setup_logging(log_path: Optional[Path] = None, debug: bool = False) -> logging.Logger:
    """
    Setup logging configuration for venc.

    Logs go to stderr and, when log_path is given, to that file as well
    (its parent directory is created).

    Args:
        log_path: Optional path to a log file
        debug: If True, enable DEBUG level logging
    """
    handlers: list = [logging.StreamHandler()]
    if log_path is not None:
        log_file = Path(log_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: file={log_path or '-'} debug={'ON' if debug else 'OFF'}")

    return logger
