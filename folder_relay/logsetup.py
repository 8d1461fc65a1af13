"""Logging setup for Folder Relay: a rotating log file plus stderr."""

import logging
import logging.handlers
import sys
from pathlib import Path

from folder_relay.config import Config, get_log_path

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Handlers installed by setup_logging, so a second call replaces them
_installed: list[logging.Handler] = []


def setup_logging(config: Config, log_path: Path | None = None) -> None:
    """Configure rotating file log and stderr handler."""
    log_path = log_path or get_log_path()
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in _installed:
        root_logger.removeHandler(handler)
        handler.close()
    _installed.clear()

    fmt = logging.Formatter(_FORMAT)

    # Rotating file handler
    max_bytes = config.max_log_size_mb * 1024 * 1024
    fh = logging.handlers.RotatingFileHandler(
        str(log_path),
        maxBytes=max_bytes,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(fmt)

    # Stderr handler (console mode / launchd stderr capture)
    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(level)
    sh.setFormatter(fmt)

    for handler in (fh, sh):
        root_logger.addHandler(handler)
        _installed.append(handler)
