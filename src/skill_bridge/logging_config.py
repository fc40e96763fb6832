"""Centralized logging configuration for the bridge process."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

_LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_HANDLER_MARKER = "_skill_bridge_handler"


def setup_logging(level: str = "INFO", log_dir: Path | None = None) -> None:
    """Configure the root logger once; repeated calls only adjust the level."""

    root = logging.getLogger()
    root.setLevel(level)
    if any(getattr(handler, _HANDLER_MARKER, False) for handler in root.handlers):
        return

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    setattr(stream_handler, _HANDLER_MARKER, True)
    root.addHandler(stream_handler)

    if log_dir is None:
        return
    log_dir.mkdir(parents=True, exist_ok=True)
    # Daily rotation, two weeks kept
    file_handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(log_dir / "skill-bridge.log"),
        when="midnight",
        interval=1,
        backupCount=14,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    setattr(file_handler, _HANDLER_MARKER, True)
    root.addHandler(file_handler)
