"""
Background service / daemon support for Folder Relay.

Runs the relay headless, as an OS-managed service.

**Windows** — runs as a Windows service via pywin32:
    python -m folder_relay.service install
    python -m folder_relay.service start
    python -m folder_relay.service stop
    python -m folder_relay.service remove

**macOS** — runs via a launchd LaunchAgent:
    python -m folder_relay.service install   (creates ~/Library/LaunchAgents plist)
    python -m folder_relay.service start     (launchctl load)
    python -m folder_relay.service stop      (launchctl unload)
    python -m folder_relay.service remove    (deletes plist)

**Linux** — runs as a headless foreground process:
    python -m folder_relay.service start     (blocks until Ctrl-C)
"""

import logging
import subprocess
import sys
from pathlib import Path

from folder_relay.platform_utils import IS_MACOS, IS_WINDOWS

logger = logging.getLogger(__name__)

# ---- Windows service (pywin32) -----------------------------------------

_HAS_WIN32 = False
if IS_WINDOWS:
    try:
        import servicemanager  # type: ignore[import-untyped]
        import win32event  # type: ignore[import-untyped]
        import win32service  # type: ignore[import-untyped]
        import win32serviceutil  # type: ignore[import-untyped]
        _HAS_WIN32 = True
    except ImportError:
        pass

# ---- macOS launchd constants -------------------------------------------

_LAUNCHD_LABEL = "com.folderrelay.agent"
_PLIST_DIR = Path.home() / "Library" / "LaunchAgents" if IS_MACOS else Path("/dev/null")
_PLIST_PATH = _PLIST_DIR / f"{_LAUNCHD_LABEL}.plist" if IS_MACOS else Path("/dev/null")


def build_service():
    """Load the configuration, set up logging and return an unstarted service."""
    from folder_relay.config import Config
    from folder_relay.logsetup import setup_logging
    from folder_relay.monitor import FileMonitorService

    cfg = Config()
    setup_logging(cfg)
    return FileMonitorService(cfg)


# ======================================================================
# Windows service
# ======================================================================

if _HAS_WIN32:

    class FolderRelayService(win32serviceutil.ServiceFramework):
        """Windows service implementation for Folder Relay."""

        _svc_name_ = "FolderRelay"
        _svc_display_name_ = "Folder Relay"
        _svc_description_ = (
            "Monitors a source folder and moves new files to a destination folder."
        )

        def __init__(self, args):
            super().__init__(args)
            self._stop_event = win32event.CreateEvent(None, 0, 0, None)
            self._service = None

        def SvcStop(self):
            self.ReportServiceStatus(win32service.SERVICE_STOP_PENDING)
            win32event.SetEvent(self._stop_event)
            logger.info("Service stop requested.")

        def SvcDoRun(self):
            servicemanager.LogMsg(
                servicemanager.EVENTLOG_INFORMATION_TYPE,
                servicemanager.PYS_SERVICE_STARTED,
                (self._svc_name_, ""),
            )
            try:
                self._service = build_service()
                self._service.start()
                win32event.WaitForSingleObject(self._stop_event, win32event.INFINITE)
            except Exception as exc:
                logger.exception("Service error: %s", exc)
                servicemanager.LogErrorMsg(f"Folder Relay error: {exc}")
                raise
            finally:
                if self._service:
                    self._service.stop()
            logger.info("Service stopped.")


# ======================================================================
# macOS launchd helpers
# ======================================================================

def _macos_plist_content() -> str:
    """Generate the launchd plist XML for the current Python environment."""
    exe = sys.executable
    log_dir = Path.home() / "Library" / "Logs" / "FolderRelay"
    log_dir.mkdir(parents=True, exist_ok=True)
    return f"""\
<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN"
  "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
<plist version="1.0">
<dict>
    <key>Label</key>
    <string>{_LAUNCHD_LABEL}</string>
    <key>ProgramArguments</key>
    <array>
        <string>{exe}</string>
        <string>-m</string>
        <string>folder_relay.service</string>
        <string>run</string>
    </array>
    <key>RunAtLoad</key>
    <true/>
    <key>KeepAlive</key>
    <true/>
    <key>StandardOutPath</key>
    <string>{log_dir / 'stdout.log'}</string>
    <key>StandardErrorPath</key>
    <string>{log_dir / 'stderr.log'}</string>
</dict>
</plist>
"""


def _macos_install() -> None:
    _PLIST_DIR.mkdir(parents=True, exist_ok=True)
    _PLIST_PATH.write_text(_macos_plist_content(), encoding="utf-8")
    print(f"Installed launchd plist: {_PLIST_PATH}")


def _macos_start() -> None:
    if _PLIST_PATH.exists():
        subprocess.run(["launchctl", "load", str(_PLIST_PATH)], check=True)
        print("Folder Relay launchd agent loaded.")
    else:
        print("Plist not found. Run 'install' first.")


def _macos_stop() -> None:
    if _PLIST_PATH.exists():
        subprocess.run(["launchctl", "unload", str(_PLIST_PATH)], check=False)
        print("Folder Relay launchd agent unloaded.")
    else:
        print("Plist not found.")


def _macos_remove() -> None:
    _macos_stop()
    if _PLIST_PATH.exists():
        _PLIST_PATH.unlink()
        print("Removed launchd plist.")


# ======================================================================
# Cross-platform headless runner (Linux / launchd / console)
# ======================================================================

def run_foreground() -> None:
    """Run the relay in the foreground until SIGINT/SIGTERM."""
    build_service().run_as_console()


# ======================================================================
# CLI entry
# ======================================================================

def main(argv: list[str] | None = None) -> None:
    """Entry point when this module is run for service/daemon control."""
    argv = sys.argv[1:] if argv is None else argv
    cmd = argv[0] if argv else ""

    # ---- Windows ----
    if IS_WINDOWS:
        if not _HAS_WIN32:
            print("ERROR: pywin32 is required for service mode on Windows.")
            print("       pip install pywin32")
            sys.exit(1)
        if cmd == "":
            try:
                servicemanager.Initialize()
                servicemanager.PrepareToHostSingle(FolderRelayService)
                servicemanager.StartServiceCtrlDispatcher()
            except Exception:
                _show_help()
        else:
            win32serviceutil.HandleCommandLine(
                FolderRelayService, argv=[sys.argv[0], *argv]
            )
        return

    # ---- macOS ----
    if IS_MACOS:
        actions = {
            "install": _macos_install,
            "start": _macos_start,
            "stop": _macos_stop,
            "remove": _macos_remove,
        }
        if cmd in actions:
            actions[cmd]()
        elif cmd == "run":
            run_foreground()
        else:
            _show_help()
        return

    # ---- Linux / other ----
    if cmd in ("start", "run"):
        run_foreground()
    else:
        _show_help()


def _show_help() -> None:
    platform = "Windows" if IS_WINDOWS else ("macOS" if IS_MACOS else "Linux")
    print(f"Folder Relay — Background Service  ({platform})")
    print()
    if IS_WINDOWS:
        print("Usage:")
        print("  python -m folder_relay.service install   Install the Windows service")
        print("  python -m folder_relay.service start     Start the service")
        print("  python -m folder_relay.service stop      Stop the service")
        print("  python -m folder_relay.service remove    Uninstall the service")
    elif IS_MACOS:
        print("Usage:")
        print("  python -m folder_relay.service install   Create launchd plist")
        print("  python -m folder_relay.service start     Load the launchd agent")
        print("  python -m folder_relay.service stop      Unload the launchd agent")
        print("  python -m folder_relay.service remove    Remove the plist")
        print("  python -m folder_relay.service run       Run in foreground")
    else:
        print("Usage:")
        print("  python -m folder_relay.service start     Run in foreground (Ctrl-C to stop)")


if __name__ == "__main__":
    main()
