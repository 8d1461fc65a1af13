"""File system watcher for Folder Relay.

Uses the watchdog library to monitor the source folder for newly
created files.  Each creation event is handled on its own worker thread:
wait a short settle delay, then hand the file to the move callback.

The watchdog observer is supervised.  When the observer or one of its
emitter threads dies (inotify queue overflow, a vanished watch
directory, an internal error), the watcher disposes of it and
subscribes again.  If that fails too the watcher is left faulted and
the failure is reported at the highest severity; the periodic sweep
keeps moving files in the meantime.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from watchdog.events import FileCreatedEvent, FileSystemEventHandler
from watchdog.observers import Observer

from folder_relay.eventlog import (
    SEVERITY_ERROR,
    SEVERITY_FATAL,
    SEVERITY_INFO,
    SEVERITY_WARNING,
    OperatorChannel,
)

logger = logging.getLogger(__name__)

# Watcher states
ACTIVE = "active"
FAULTED = "faulted"
REINITIALIZING = "reinitializing"
STOPPED = "stopped"


class CreatedFileHandler(FileSystemEventHandler):
    """Watchdog handler that forwards new top-level files."""

    def __init__(self, on_created: Callable[[Path], None]):
        super().__init__()
        self._on_created = on_created

    def on_created(self, event: FileCreatedEvent) -> None:  # type: ignore[override]
        """Handle a new file creation event."""
        if event.is_directory:
            return
        self._on_created(Path(os.fsdecode(event.src_path)))


class ChangeWatcher:
    """Supervised watchdog subscription on one folder.

    Usage:
        watcher = ChangeWatcher(source, engine.move, settle_delay=0.1)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        source_folder: str,
        on_file_created: Callable[[Path, str], Any],
        settle_delay: float = 0.1,
        health_check_interval: float = 5.0,
        channel: OperatorChannel | None = None,
    ):
        """Create a watcher; *on_file_created* gets ``(path, name)``."""
        self.source_folder = source_folder
        self._on_file_created = on_file_created
        self._settle_delay = max(0.0, settle_delay)
        self._health_check_interval = health_check_interval
        self._channel = channel or OperatorChannel(enabled=False)
        self._handler = CreatedFileHandler(self._dispatch)
        self._observer: Any | None = None
        self._state = STOPPED
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._supervisor: threading.Thread | None = None

    # ---- lifecycle ----

    def start(self) -> None:
        """Subscribe to the source folder and start supervising.

        Raises ``FileNotFoundError`` if the folder is missing, or the
        observer's own error if the subscription cannot be made.
        """
        with self._lock:
            if self._state != STOPPED:
                return
            self._subscribe()
            self._state = ACTIVE
            self._stop.clear()
            self._supervisor = threading.Thread(
                target=self._supervise, daemon=True, name="WatcherSupervisor"
            )
            self._supervisor.start()
        logger.info("Watching '%s' (settle=%.2fs)", self.source_folder, self._settle_delay)

    def stop(self) -> None:
        """Stop watching and release the subscription.

        Moves already handed to worker threads are left to finish.
        """
        self._stop.set()
        with self._lock:
            if self._state == STOPPED and self._observer is None:
                return
            self._dispose()
            self._state = STOPPED
        supervisor = self._supervisor
        if supervisor and supervisor is not threading.current_thread():
            supervisor.join(timeout=5)
        self._supervisor = None
        logger.info("Watcher stopped.")

    @property
    def state(self) -> str:
        """Return one of ``active``, ``faulted``, ``reinitializing``, ``stopped``."""
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        """Return whether the watcher is currently receiving events."""
        with self._lock:
            return self._state == ACTIVE and self._observer_healthy()

    # ---- fault handling ----

    def report_fault(self, exc: BaseException) -> bool:
        """Tear down the subscription after *exc* and subscribe again.

        Returns True when the watcher is active again.
        """
        with self._lock:
            if self._state == STOPPED:
                return False
            self._state = FAULTED
            logger.error("File watcher error occurred: %s", exc)
            self._channel.report(f"File watcher error: {exc}", SEVERITY_ERROR)

            self._dispose()
            self._state = REINITIALIZING
            try:
                self._subscribe()
            except Exception as reinit_exc:
                self._state = FAULTED
                logger.critical(
                    "Failed to reinitialize file watcher on %s; new files will "
                    "only be picked up by the sweep.",
                    self.source_folder,
                    exc_info=True,
                )
                self._channel.report(
                    f"Failed to reinitialize file watcher: {reinit_exc}",
                    SEVERITY_FATAL,
                )
                return False

            self._state = ACTIVE
        logger.info("File watcher reinitialized after error")
        self._channel.report("File watcher reinitialized after error", SEVERITY_INFO)
        return True

    def _supervise(self) -> None:
        """Periodically check that the observer threads are still alive."""
        while not self._stop.wait(timeout=self._health_check_interval):
            with self._lock:
                if self._state != ACTIVE or self._observer_healthy():
                    continue
            self.report_fault(RuntimeError("watchdog observer stopped unexpectedly"))

    # ---- subscription ----

    def _subscribe(self) -> None:
        if not os.path.isdir(self.source_folder):
            raise FileNotFoundError(
                f"Source folder does not exist: {self.source_folder}"
            )

        observer = Observer()
        observer.schedule(self._handler, self.source_folder, recursive=False)
        # Emitters start here; a watch that cannot be set up raises now
        observer.start()
        self._observer = observer

    def _dispose(self) -> None:
        observer = self._observer
        self._observer = None
        if observer is None:
            return
        try:
            observer.stop()
            observer.join(timeout=5)
        except Exception:
            logger.warning("Error disposing file watcher", exc_info=True)
            return
        if observer.is_alive():
            logger.warning("Observer thread did not stop cleanly")

    def _observer_healthy(self) -> bool:
        observer = self._observer
        if observer is None or not observer.is_alive():
            return False
        return all(emitter.is_alive() for emitter in observer.emitters)

    # ---- events ----

    def _dispatch(self, path: Path) -> None:
        """Hand *path* to its own worker so the observer is never blocked."""
        logger.info("File created: %s", path)
        worker = threading.Thread(
            target=self._handle_created,
            args=(path,),
            name=f"Move-{path.name}",
        )
        try:
            worker.start()
        except RuntimeError as exc:
            # Out of threads; the sweep picks the file up later
            logger.error("Could not start a worker for %s: %s", path, exc)
            self._channel.report(
                f"Error processing file: {path}. Error: {exc}", SEVERITY_WARNING
            )

    def _handle_created(self, path: Path) -> None:
        try:
            # Let writers that create-then-write finish first
            if self._settle_delay:
                time.sleep(self._settle_delay)
            self._on_file_created(path, path.name)
        except Exception as exc:
            logger.exception("Error processing file creation event for: %s", path)
            self._channel.report(
                f"Error processing file: {path}. Error: {exc}", SEVERITY_WARNING
            )
