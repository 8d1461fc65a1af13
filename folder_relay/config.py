"""Configuration management for Folder Relay.

Stores and retrieves settings from a JSON config file in the
platform-appropriate application data directory, and resolves the
watched/destination folders the service runs against.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from folder_relay.platform_utils import (
    default_destination_folder,
    default_source_folder,
)
from folder_relay.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from folder_relay.platform_utils import (
    get_log_path as _platform_log_path,
)

logger = logging.getLogger(__name__)

# Environment variables that override the folders stored on disk
ENV_SOURCE = "FOLDER_RELAY_SOURCE"
ENV_DESTINATION = "FOLDER_RELAY_DESTINATION"

DEFAULT_CONFIG: dict[str, Any] = {
    "source_folder": "",  # blank = platform default
    "destination_folder": "",  # blank = platform default
    # ---- sweep ----
    "sweep_interval_seconds": 30,
    "sweep_min_age_seconds": 5,
    # ---- watcher ----
    "settle_delay_ms": 100,
    "health_check_seconds": 5,
    # ---- retry ----
    "max_attempts": 3,
    "retry_backoff_seconds": 1,
    # ---- logging ----
    "log_level": "INFO",
    "max_log_size_mb": 10,  # rotate log when it exceeds this size
    "log_backup_count": 3,  # number of rotated log files to keep
    "event_log_enabled": True,  # Windows Event Log / syslog channel
}


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


@dataclass(frozen=True)
class WatchConfiguration:
    """Immutable settings the running service is built from."""

    source_dir: str
    dest_dir: str
    sweep_interval: float = 30.0
    sweep_min_age: float = 5.0
    settle_delay: float = 0.1
    health_check_interval: float = 5.0
    max_attempts: int = 3
    retry_backoff: float = 1.0


def ensure_directories(watch: WatchConfiguration) -> None:
    """Create the source and destination folders if they are missing.

    Raises ``OSError`` when either folder cannot be created.
    """
    for label, folder in (("source", watch.source_dir), ("destination", watch.dest_dir)):
        path = Path(folder)
        if path.is_dir():
            continue
        path.mkdir(parents=True, exist_ok=True)
        logger.info("Created %s directory: %s", label, path)


class Config:
    """Configuration manager backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = path or get_config_path()
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        self.load()

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
                if not isinstance(stored, dict):
                    raise ValueError("top-level JSON value is not an object")
                # Merge stored values over defaults so new keys get defaults
                self._data = {**DEFAULT_CONFIG, **stored}
                logger.info("Configuration loaded from %s", self._path)
            except (json.JSONDecodeError, ValueError, OSError) as exc:
                logger.warning("Could not read config (%s); using defaults.", exc)
                self._data = dict(DEFAULT_CONFIG)
        else:
            self._data = dict(DEFAULT_CONFIG)
            self.save()
            logger.info("Created default configuration at %s", self._path)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved.")
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    # ---- folders ----

    @property
    def source_folder(self) -> str:
        """Return the watched folder, honouring the environment override."""
        return (
            os.environ.get(ENV_SOURCE)
            or self._data["source_folder"]
            or default_source_folder()
        )

    @source_folder.setter
    def source_folder(self, value: str) -> None:
        self._data["source_folder"] = value

    @property
    def destination_folder(self) -> str:
        """Return the destination folder, honouring the environment override."""
        return (
            os.environ.get(ENV_DESTINATION)
            or self._data["destination_folder"]
            or default_destination_folder()
        )

    @destination_folder.setter
    def destination_folder(self, value: str) -> None:
        self._data["destination_folder"] = value

    # ---- sweep ----

    @property
    def sweep_interval(self) -> int:
        """Return seconds between sweeps of the source folder (minimum 1)."""
        return max(1, int(self._data["sweep_interval_seconds"]))

    @sweep_interval.setter
    def sweep_interval(self, value: int) -> None:
        self._data["sweep_interval_seconds"] = max(1, int(value))

    @property
    def sweep_min_age(self) -> int:
        """Return how old a file must be before the sweep moves it."""
        return max(0, int(self._data["sweep_min_age_seconds"]))

    @sweep_min_age.setter
    def sweep_min_age(self, value: int) -> None:
        self._data["sweep_min_age_seconds"] = max(0, int(value))

    # ---- watcher ----

    @property
    def settle_delay_ms(self) -> int:
        """Return the wait after a creation event before moving, in ms."""
        return max(0, int(self._data["settle_delay_ms"]))

    @settle_delay_ms.setter
    def settle_delay_ms(self, value: int) -> None:
        self._data["settle_delay_ms"] = max(0, int(value))

    @property
    def health_check_interval(self) -> int:
        return max(1, int(self._data["health_check_seconds"]))

    @health_check_interval.setter
    def health_check_interval(self, value: int) -> None:
        self._data["health_check_seconds"] = max(1, int(value))

    # ---- retry ----

    @property
    def max_attempts(self) -> int:
        """Return the number of move attempts before giving up."""
        return max(1, int(self._data["max_attempts"]))

    @max_attempts.setter
    def max_attempts(self, value: int) -> None:
        self._data["max_attempts"] = max(1, int(value))

    @property
    def retry_backoff(self) -> float:
        """Return the backoff unit; attempt *n* waits ``n * backoff`` seconds."""
        return max(0.0, float(self._data["retry_backoff_seconds"]))

    @retry_backoff.setter
    def retry_backoff(self, value: float) -> None:
        self._data["retry_backoff_seconds"] = max(0.0, float(value))

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._data.get("log_level", "INFO")

    @log_level.setter
    def log_level(self, value: str) -> None:
        self._data["log_level"] = value

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return max(1, int(self._data.get("max_log_size_mb", 10)))

    @max_log_size_mb.setter
    def max_log_size_mb(self, value: int) -> None:
        self._data["max_log_size_mb"] = max(1, int(value))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return max(0, int(self._data.get("log_backup_count", 3)))

    @log_backup_count.setter
    def log_backup_count(self, value: int) -> None:
        self._data["log_backup_count"] = max(0, int(value))

    @property
    def event_log_enabled(self) -> bool:
        """Return whether the operator event channel is used."""
        return bool(self._data.get("event_log_enabled", True))

    @event_log_enabled.setter
    def event_log_enabled(self, value: bool) -> None:
        self._data["event_log_enabled"] = value

    # ---- convenience ----

    def snapshot(self) -> WatchConfiguration:
        """Freeze the current settings for one run of the service."""
        return WatchConfiguration(
            source_dir=self.source_folder,
            dest_dir=self.destination_folder,
            sweep_interval=float(self.sweep_interval),
            sweep_min_age=float(self.sweep_min_age),
            settle_delay=self.settle_delay_ms / 1000.0,
            health_check_interval=float(self.health_check_interval),
            max_attempts=self.max_attempts,
            retry_backoff=self.retry_backoff,
        )
