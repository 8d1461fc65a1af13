"""
Service lifecycle for Folder Relay.

``FileMonitorService`` owns everything one run of the relay needs: the
frozen folder settings, the move engine, the watcher and the sweep.
Hosts (the Windows service, launchd, the console runner) only ever call
``start`` and ``stop``; both are safe to call repeatedly and ``stop`` is
safe after a failed or partial ``start``.
"""

import logging
import signal
import threading
from pathlib import Path

from folder_relay import __app_name__
from folder_relay.config import Config, WatchConfiguration, ensure_directories
from folder_relay.eventlog import (
    SEVERITY_ERROR,
    SEVERITY_INFO,
    OperatorChannel,
)
from folder_relay.mover import EXHAUSTED_RETRIES, FATAL, MOVED, MoveEngine, MoveOutcome
from folder_relay.sweeper import SweepScheduler
from folder_relay.watcher import ChangeWatcher

logger = logging.getLogger(__name__)


class FileMonitorService:
    """Watches the source folder and moves new files to the destination."""

    def __init__(
        self,
        config: Config | None = None,
        channel: OperatorChannel | None = None,
    ) -> None:
        self.config = config or Config()
        # A channel passed in belongs to the caller; ours is closed on stop
        self._owns_channel = channel is None
        self.channel = channel or self._open_channel()
        self.watch: WatchConfiguration | None = None
        self.engine: MoveEngine | None = None
        self.watcher: ChangeWatcher | None = None
        self.sweeper: SweepScheduler | None = None
        self._running = False
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Create the folders, subscribe the watcher and start the sweep.

        Any failure is reported and re-raised to the host, after the
        pieces that did start have been stopped again.
        """
        with self._lock:
            if self._running:
                return
            if self._owns_channel and self.channel.closed:
                self.channel = self._open_channel()
            try:
                watch = self.config.snapshot()
                self.watch = watch
                ensure_directories(watch)

                self.engine = MoveEngine(
                    destination_root=watch.dest_dir,
                    max_attempts=watch.max_attempts,
                    backoff=watch.retry_backoff,
                    on_outcome=self._on_outcome,
                )
                self.watcher = ChangeWatcher(
                    source_folder=watch.source_dir,
                    on_file_created=self.engine.move,
                    settle_delay=watch.settle_delay,
                    health_check_interval=watch.health_check_interval,
                    channel=self.channel,
                )
                self.sweeper = SweepScheduler(
                    source_folder=watch.source_dir,
                    mover=self.engine.move,
                    interval=watch.sweep_interval,
                    min_age=watch.sweep_min_age,
                )
                self.watcher.start()
                self.sweeper.start()
            except Exception as exc:
                logger.exception("Failed to start %s", __app_name__)
                self.channel.report(
                    f"Failed to start {__app_name__}: {exc}", SEVERITY_ERROR
                )
                self._teardown()
                raise
            self._running = True

        logger.info("%s started successfully. Monitoring: %s", __app_name__, watch.source_dir)
        self.channel.report(f"{__app_name__} started successfully", SEVERITY_INFO)

    def stop(self) -> None:
        """Stop watching and sweeping; in-flight moves are left to finish."""
        with self._lock:
            was_running = self._running
            self._running = False
            self._teardown()
        if not was_running:
            self._close_owned_channel()
            return
        if self.engine and self.engine.active_moves:
            logger.info("%d move(s) still in progress.", self.engine.active_moves)
        logger.info("%s stopped successfully (%s)", __app_name__, self.status_summary())
        self.channel.report(f"{__app_name__} stopped", SEVERITY_INFO)
        self._close_owned_channel()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def status_summary(self) -> str:
        """Return a short human-readable status string."""
        if self.engine is None:
            return "Not started"
        state = self.watcher.state if self.watcher else "stopped"
        return f"watcher {state} — {self.engine.stats.summary()}"

    # ------------------------------------------------------------------
    # Console mode
    # ------------------------------------------------------------------

    def run_as_console(self) -> None:
        """Run in the foreground until Ctrl-C or SIGTERM."""
        self.start()
        watch = self.watch
        done = threading.Event()

        def _handler(sig, frame):
            done.set()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)

        print(f"{__app_name__} started successfully!")
        print(f"Monitoring: {watch.source_dir}")
        print(f"Moving files to: {watch.dest_dir}")
        print("\nService is running. Try creating files in the source folder.")
        print("Press Ctrl-C to stop the service...\n")
        while not done.wait(timeout=1):
            pass
        self.stop()
        print(f"{__app_name__} stopped ({self.status_summary()}).")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_channel(self) -> OperatorChannel:
        return OperatorChannel(enabled=self.config.event_log_enabled)

    def _close_owned_channel(self) -> None:
        if self._owns_channel:
            self.channel.close()

    def _teardown(self) -> None:
        if self.watcher:
            try:
                self.watcher.stop()
            except Exception:
                logger.exception("Error stopping file watcher")
        if self.sweeper:
            try:
                self.sweeper.stop()
            except Exception:
                logger.exception("Error stopping sweep")
        self.watcher = None
        self.sweeper = None

    def _on_outcome(self, outcome: MoveOutcome) -> None:
        """Called (from a mover thread) after each move resolves."""
        name = Path(outcome.source).name
        if outcome.kind == MOVED:
            self.channel.report(
                f"File moved: {name} from {Path(outcome.source).parent} to "
                f"{Path(outcome.destination).parent}",
                SEVERITY_INFO,
            )
        elif outcome.kind == EXHAUSTED_RETRIES:
            self.channel.report(
                f"Failed to move file after {outcome.attempts} attempts: {name}. "
                f"Error: {outcome.error}",
                SEVERITY_ERROR,
            )
        elif outcome.kind == FATAL:
            self.channel.report(
                f"Unexpected error moving file: {name}. Error: {outcome.error}",
                SEVERITY_ERROR,
            )
