"""Claudio logging configuration.

Every module logs through `logging.getLogger(__name__)`; this module wires the
root `claudio` logger once at daemon startup. Logs go to stderr and to a
rotating file under the state directory (default `~/.claudio/logs/claudio.log`).
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from claudio.constants import DEFAULT_STATE_DIR

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 5


def setup_logging(level: Optional[str] = None, log_dir: Optional[Path] = None) -> None:
    """Configure Claudio logging.

    Args:
        level: Optional override for `CLAUDIO_LOG_LEVEL`.
        log_dir: Optional override for the log directory.
    """
    if level:
        os.environ["CLAUDIO_LOG_LEVEL"] = level

    resolved_level = os.getenv("CLAUDIO_LOG_LEVEL", "INFO").upper()
    logger = logging.getLogger("claudio")
    logger.setLevel(resolved_level)
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    target_dir = log_dir or Path(DEFAULT_STATE_DIR).expanduser() / "logs"
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            target_dir / "claudio.log",
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as e:
        logger.warning("File logging disabled (%s): %s", target_dir, e)
    else:
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Third-party loggers stay at WARNING.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
