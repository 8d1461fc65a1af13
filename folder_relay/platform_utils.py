"""
Cross-platform utilities for Folder Relay.

Centralises all OS-detection logic so every other module can import
a single canonical set of helpers rather than scattering ``sys.platform``
checks throughout the codebase.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"
IS_LINUX: bool = sys.platform.startswith("linux")

_APP_DIR_NAME = "FolderRelay"

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application config directory, created if needed.

    - Windows : ``%APPDATA%\\FolderRelay``
    - macOS   : ``~/Library/Application Support/FolderRelay``
    - Linux   : ``$XDG_CONFIG_HOME/FolderRelay`` (default ``~/.config``)
    """
    if IS_WINDOWS:
        base = os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))

    config_dir = Path(base) / _APP_DIR_NAME
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_path() -> Path:
    """Return the path to the log file (inside the config directory)."""
    return get_config_dir() / "folder_relay.log"


def default_source_folder() -> str:
    """Return the watched folder used when none is configured."""
    if IS_WINDOWS:
        return r"C:\Folder1"
    return str(Path.home() / "Folder1")


def default_destination_folder() -> str:
    """Return the destination folder used when none is configured."""
    if IS_WINDOWS:
        return r"C:\Folder2"
    return str(Path.home() / "Folder2")
