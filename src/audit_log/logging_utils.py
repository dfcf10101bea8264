"""Logging for the ``audit_log`` package.

Every module logs through a child of the ``audit_log`` logger. The package
installs only a ``NullHandler`` on it, so hosts keep control of output;
``configure_logging`` is an opt-in helper that attaches stderr and file
handlers to this package's logger without touching the root logger.
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

from audit_log.config import LoggingSettings, load_settings

PACKAGE_LOGGER = "audit_log"

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_package_logger = logging.getLogger(PACKAGE_LOGGER)
_package_logger.addHandler(logging.NullHandler())

_installed_handlers: list[logging.Handler] = []
_handlers_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package namespace."""
    if name != PACKAGE_LOGGER and not name.startswith(f"{PACKAGE_LOGGER}."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def _remove_installed_handlers() -> None:
    while _installed_handlers:
        handler = _installed_handlers.pop()
        _package_logger.removeHandler(handler)
        handler.close()


def configure_logging(settings: LoggingSettings | None = None) -> logging.Logger:
    """Send audit log output to stderr and, if configured, a file.

    Calling it again replaces the handlers installed by the previous call.
    """
    settings = settings or load_settings().logging
    level = getattr(logging, settings.level.upper(), logging.INFO)
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)

    with _handlers_lock:
        _remove_installed_handlers()

        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        _installed_handlers.append(stream_handler)

        if settings.file:
            try:
                Path(settings.file).parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(settings.file)
                file_handler.setFormatter(formatter)
                _installed_handlers.append(file_handler)
            except OSError as exc:
                _package_logger.warning("Failed to open log file %s: %s", settings.file, exc)

        for handler in _installed_handlers:
            _package_logger.addHandler(handler)
        _package_logger.setLevel(level)

    return _package_logger
