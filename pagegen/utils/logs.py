import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_workspace_path() -> Path:
    """Get the workspace path without importing from config to avoid circular imports."""
    ws_path = os.getenv("PAGEGEN_WORKSPACE")
    if ws_path:
        return Path(ws_path)
    return Path.home() / ".pagegen" / "workspace"


def setup_logger(
    log_file: str = "pagegen.log",
    log_level: int = logging.INFO,
    console: bool = False,
) -> logging.Logger:
    """Send ``pagegen.*`` records to ``<workspace>/logs/<log_file>``.

    With ``console`` set, records are also written to stderr so they do not
    interleave with streamed chat output on stdout.
    """
    logger = logging.getLogger("pagegen")
    logger.setLevel(log_level)

    # Remove any existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    log_dir = get_workspace_path() / "logs"
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, log_file),
        maxBytes=1024 * 1024,  # 1 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    logger.propagate = False
    return logger
