"""Periodic sweep of the source folder.

A backstop for creation events the watcher never delivered: every
interval, list the files directly in the source folder and move every
one that is older than a minimum age.  The age threshold keeps the
sweep away from files still being written and from files whose
creation event is already being handled.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from pathlib import Path

from folder_relay.mover import MoveOutcome

logger = logging.getLogger(__name__)


def _created_at(stat: os.stat_result) -> float:
    """Best available creation time for *stat*."""
    # st_birthtime: macOS/BSD, and Windows on Python 3.12+; Linux has only st_ctime
    return getattr(stat, "st_birthtime", None) or stat.st_ctime


class SweepScheduler:
    """Runs ``sweep_once`` on a background thread every *interval* seconds."""

    def __init__(
        self,
        source_folder: str,
        mover: Callable[[Path, str], MoveOutcome],
        interval: float = 30.0,
        min_age: float = 5.0,
    ):
        self.source_folder = source_folder
        self._mover = mover
        self._interval = interval
        self._min_age = min_age
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="Sweep")
        self._thread.start()
        logger.info(
            "Sweeping '%s' every %.0fs (min age %.0fs)",
            self.source_folder, self._interval, self._min_age,
        )

    def stop(self) -> None:
        """Stop the timer; a sweep already running finishes its current file."""
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread and thread is not threading.current_thread():
            thread.join(timeout=5)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(timeout=self._interval):
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Error during sweep of %s", self.source_folder)

    def sweep_once(self) -> list[MoveOutcome]:
        """Move every sufficiently old file in the source folder now."""
        try:
            with os.scandir(self.source_folder) as it:
                entries = [e for e in it if e.is_file(follow_symlinks=False)]
        except OSError as exc:
            logger.error("Cannot list source folder %s: %s", self.source_folder, exc)
            return []

        outcomes = []
        now = time.time()
        for entry in entries:
            if self._stop.is_set():
                break
            try:
                if now - _created_at(entry.stat(follow_symlinks=False)) < self._min_age:
                    continue
                logger.info("Sweep processing file: %s", entry.path)
                outcomes.append(self._mover(Path(entry.path), entry.name))
            except FileNotFoundError:
                logger.debug("Gone before sweep reached it: %s", entry.path)
            except Exception:
                logger.exception("Sweep failed for %s", entry.path)
        return outcomes
