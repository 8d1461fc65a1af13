"""Operator notification channel for Folder Relay.

On Windows, writes entries to the Application event log through pywin32
so administrators see moves and faults in Event Viewer.  On macOS and
Linux, entries go to the local syslog daemon.  The channel is strictly
best-effort: a failure to write is logged locally and never raised into
the caller.
"""

import logging
import logging.handlers
import os
from collections.abc import Callable

from folder_relay import __app_name__
from folder_relay.platform_utils import IS_WINDOWS

logger = logging.getLogger(__name__)

# Severities accepted by OperatorChannel.report
SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"
SEVERITY_FATAL = "fatal"

_LOG_LEVELS = {
    SEVERITY_INFO: logging.INFO,
    SEVERITY_WARNING: logging.WARNING,
    SEVERITY_ERROR: logging.ERROR,
    SEVERITY_FATAL: logging.CRITICAL,
}

_EVENT_SOURCE = "FolderRelay"
_SYSLOG_SOCKETS = ("/dev/log", "/var/run/syslog")

# ---- pywin32 (Windows Event Log) ----
_HAS_WIN32 = False
if IS_WINDOWS:
    try:
        import win32evtlog  # type: ignore[import-untyped]
        import win32evtlogutil  # type: ignore[import-untyped]

        _HAS_WIN32 = True
    except ImportError:
        logger.warning("pywin32 not installed — Windows Event Log disabled.")

Writer = Callable[[str, str], None]


def _windows_writer(source: str) -> Writer | None:
    """Register *source* with the event log and return a writer for it."""
    if not _HAS_WIN32:
        return None
    try:
        win32evtlogutil.AddSourceToRegistry(source, eventLogType="Application")
    except Exception as exc:
        logger.warning(
            "Event Log source could not be registered (%s). Continuing without "
            "Event Log support; run as administrator to create it.",
            exc,
        )
        return None

    event_types = {
        SEVERITY_INFO: win32evtlog.EVENTLOG_INFORMATION_TYPE,
        SEVERITY_WARNING: win32evtlog.EVENTLOG_WARNING_TYPE,
        SEVERITY_ERROR: win32evtlog.EVENTLOG_ERROR_TYPE,
        SEVERITY_FATAL: win32evtlog.EVENTLOG_ERROR_TYPE,
    }

    def write(message: str, severity: str) -> None:
        win32evtlogutil.ReportEvent(
            source,
            1,
            eventType=event_types.get(severity, win32evtlog.EVENTLOG_INFORMATION_TYPE),
            strings=[message],
        )

    return write


def _syslog_writer(source: str) -> tuple[Writer | None, logging.Handler | None]:
    """Return a writer that forwards to the local syslog socket, if any.

    Each writer emits through its own handler, so two channels never
    deliver the same entry twice.
    """
    address = next((p for p in _SYSLOG_SOCKETS if os.path.exists(p)), None)
    if address is None:
        logger.debug("No syslog socket found; operator channel disabled.")
        return None, None
    try:
        handler = logging.handlers.SysLogHandler(address=address)
    except OSError as exc:
        logger.warning("Syslog unavailable (%s); operator channel disabled.", exc)
        return None, None
    handler.setFormatter(logging.Formatter(f"{source}: %(message)s"))

    def write(message: str, severity: str) -> None:
        level = _LOG_LEVELS.get(severity, logging.INFO)
        handler.handle(
            logging.makeLogRecord(
                {
                    "name": source,
                    "msg": message,
                    "levelno": level,
                    "levelname": logging.getLevelName(level),
                }
            )
        )

    return write, handler


class OperatorChannel:
    """Best-effort operator-visible log.

    - Windows: Application event log (pywin32)
    - macOS / Linux: local syslog
    - Anything else, or registration failure: disabled

    Pass *writer* to send entries somewhere else.
    """

    def __init__(
        self,
        enabled: bool = True,
        writer: Writer | None = None,
        source: str = _EVENT_SOURCE,
    ) -> None:
        """Bind to the platform event log unless a *writer* is given."""
        self._handler: logging.Handler | None = None
        self._closed = False
        if writer is not None:
            self._writer: Writer | None = writer
        elif not enabled:
            self._writer = None
        elif IS_WINDOWS:
            self._writer = _windows_writer(source)
        else:
            self._writer, self._handler = _syslog_writer(source)

    @property
    def available(self) -> bool:
        """True if entries are going anywhere."""
        return self._writer is not None

    def report(self, message: str, severity: str = SEVERITY_INFO) -> None:
        """Record *message* at *severity*; never raises."""
        if self._writer is None:
            logger.debug("Operator channel (disabled) [%s]: %s", severity, message)
            return
        try:
            self._writer(message, severity)
        except Exception as exc:
            logger.warning("Failed to write to %s event log: %s", __app_name__, exc)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the syslog handler, if one was opened.

        A closed channel drops further entries.
        """
        self._closed = True
        self._writer = None
        if self._handler is not None:
            self._handler.close()
            self._handler = None
