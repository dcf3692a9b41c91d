"""Opt-in debug file logging for the ``marble_tools`` package."""
from __future__ import annotations

import logging
import sys
from pathlib import Path

from .config import MarbleSettings

PACKAGE_LOGGER = "marble_tools"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_chained_excepthook = None


class DebugFileHandler(logging.FileHandler):
    """File handler owned by :func:`setup_debug_logging`."""


def _log_unhandled(exc_type, exc_value, exc_traceback) -> None:
    logging.getLogger(PACKAGE_LOGGER).critical(
        "Unhandled %s", exc_type.__name__, exc_info=(exc_type, exc_value, exc_traceback)
    )
    if _chained_excepthook is not None:
        _chained_excepthook(exc_type, exc_value, exc_traceback)


def setup_debug_logging(settings: MarbleSettings) -> Path | None:
    """Route package log records to ``settings.debug_log_path`` when debugging.

    Calling it again replaces the previous debug handler. Returns the log path,
    or ``None`` when debugging is off.
    """

    global _chained_excepthook
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in [h for h in package_logger.handlers if isinstance(h, DebugFileHandler)]:
        package_logger.removeHandler(handler)
        handler.close()
    if not settings.debug:
        if not package_logger.handlers:
            package_logger.addHandler(logging.NullHandler())
        return None

    log_path = settings.debug_log_path
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = DebugFileHandler(log_path, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG)
    if _chained_excepthook is None:
        _chained_excepthook = sys.excepthook
        sys.excepthook = _log_unhandled
    package_logger.info("Debug logging enabled at %s", log_path)
    return log_path
