"""Logging helpers for the AURA service."""

from __future__ import annotations

import logging
import sys
import threading
from typing import Optional

from aura.settings import Settings

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_logging_configured = False
_logging_lock = threading.Lock()

_logger = logging.getLogger(__name__)


def configure_logging(settings: Optional[Settings] = None, force: bool = False) -> None:
    """Configure process logging once: stderr plus an optional log file."""
    global _logging_configured

    with _logging_lock:
        if _logging_configured and not force:
            return

        settings = settings or Settings()
        level = getattr(logging, settings.log_level.upper(), logging.INFO)

        handlers: list[logging.Handler] = []

        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
        handlers.append(stream_handler)

        if settings.log_file:
            try:
                settings.log_file.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(settings.log_file)
                file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
                handlers.append(file_handler)
            except OSError as exc:
                _logger.warning("Failed to open log file %s: %s", settings.log_file, exc)

        logging.basicConfig(level=level, handlers=handlers, force=True)
        _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
