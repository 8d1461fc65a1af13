"""
File move engine for Folder Relay.

Moves files from the watched source folder into the destination folder.
A move never replaces an existing file: when the name is taken the file
is renamed ``name_1.ext``, ``name_2.ext`` … against the live contents of
the destination.  I/O failures (locked files, files still being written,
naming races) are retried with a linear backoff; anything else is
reported as fatal for that file.

The engine is called from the watcher's worker threads and from the
sweep thread at the same time.  Every attempt re-checks that the source
still exists, so when two callers race on one file exactly one moves it
and the other sees it vanish.
"""

import errno
import logging
import os
import shutil
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from folder_relay.platform_utils import IS_WINDOWS

logger = logging.getLogger(__name__)

# Move outcomes
MOVED = "moved"
SOURCE_VANISHED = "source_vanished"
EXHAUSTED_RETRIES = "exhausted_retries"
FATAL = "fatal"

_COPY_CHUNK = 1024 * 1024  # 1 MiB chunks for the cross-device fallback

# errno values for which a hard link is impossible but a copy may work
_NO_LINK_ERRNOS = frozenset(
    code
    for code in (
        errno.EXDEV,
        errno.EPERM,
        errno.EMLINK,
        getattr(errno, "ENOTSUP", None),
        getattr(errno, "EOPNOTSUPP", None),
        getattr(errno, "ENOSYS", None),
    )
    if code is not None
)


@dataclass
class MoveOutcome:
    """Result of one ``MoveEngine.move`` call."""
    kind: str
    source: str
    destination: str = ""
    attempts: int = 0
    error: Exception | None = None
    started: float = 0.0
    finished: float = 0.0

    @property
    def moved(self) -> bool:
        return self.kind == MOVED

    @property
    def duration(self) -> float:
        if self.finished and self.started:
            return self.finished - self.started
        return 0.0

    @property
    def timestamp_str(self) -> str:
        """Human-readable timestamp of when the move resolved."""
        if self.finished:
            return datetime.fromtimestamp(self.finished).strftime("%Y-%m-%d %H:%M:%S")
        return ""


@dataclass
class MoveStats:
    """Aggregated move statistics."""
    total_moved: int = 0
    total_vanished: int = 0
    total_exhausted: int = 0
    total_fatal: int = 0
    last_moved_file: str = ""
    history: list[MoveOutcome] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, outcome: MoveOutcome) -> None:
        with self._lock:
            self.history.append(outcome)
            if outcome.kind == MOVED:
                self.total_moved += 1
                self.last_moved_file = outcome.destination
            elif outcome.kind == SOURCE_VANISHED:
                self.total_vanished += 1
            elif outcome.kind == EXHAUSTED_RETRIES:
                self.total_exhausted += 1
            else:
                self.total_fatal += 1
            # Keep last 1000 records
            if len(self.history) > 1000:
                self.history = self.history[-1000:]

    def summary(self) -> str:
        with self._lock:
            return (
                f"{self.total_moved} moved, "
                f"{self.total_exhausted + self.total_fatal} failed, "
                f"{self.total_vanished} already gone"
            )


class _PathLocks:
    """One lock per source path, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (threading.Lock(), 0))
            self._locks[key] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._guard:
                lock, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _copy_then_delete(source: Path, dest: Path) -> bool:
    """Copy *source* to a freshly created *dest*, then remove *source*.

    Returns False when the source was taken by another mover before it
    could be removed; the copy is discarded in that case.
    """
    with open(source, "rb") as src:
        # "x" refuses to open a name someone else already claimed
        dst = open(dest, "xb")
        try:
            with dst:
                shutil.copyfileobj(src, dst, _COPY_CHUNK)
            shutil.copystat(source, dest)
        except BaseException:
            _discard(dest)
            raise
    try:
        os.unlink(source)
    except FileNotFoundError:
        _discard(dest)
        return False
    except BaseException:
        _discard(dest)
        raise
    return True


def _transfer(source: Path, dest: Path) -> bool:
    """Move *source* to *dest* without ever replacing an existing file.

    Uses a rename (Windows) or hard link plus unlink (elsewhere) so the
    destination name is claimed atomically; falls back to copy-then-delete
    across devices.  Returns False when another mover took the source.
    """
    if IS_WINDOWS:
        try:
            # os.rename refuses to replace an existing file on Windows
            os.rename(source, dest)
            return True
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise
        return _copy_then_delete(source, dest)

    try:
        os.link(source, dest)
    except OSError as exc:
        if exc.errno not in _NO_LINK_ERRNOS:
            raise
        logger.debug("Hard link unavailable (%s); copying %s", exc, source)
        return _copy_then_delete(source, dest)

    try:
        os.unlink(source)
    except FileNotFoundError:
        _discard(dest)
        return False
    except BaseException:
        _discard(dest)
        raise
    return True


class MoveEngine:
    """
    Moves files into the destination folder with collision-safe names.

    Parameters
    ----------
    destination_root : str
        The folder files are moved into.
    max_attempts : int
        Attempts made before an I/O failure is given up on.
    backoff : float
        Backoff unit in seconds; after failed attempt *n* the engine
        waits ``n * backoff`` before trying again.
    on_outcome : callable, optional
        Callback invoked with every MoveOutcome.
    """

    def __init__(
        self,
        destination_root: str,
        max_attempts: int = 3,
        backoff: float = 1.0,
        on_outcome: Callable[[MoveOutcome], None] | None = None,
    ):
        self.destination_root = Path(destination_root)
        self._max_attempts = max(1, max_attempts)
        self._backoff = max(0.0, backoff)
        self._on_outcome = on_outcome
        self._path_locks = _PathLocks()
        self.stats = MoveStats()
        self._active_moves: int = 0
        self._lock = threading.Lock()

    @property
    def active_moves(self) -> int:
        with self._lock:
            return self._active_moves

    def move(self, source_path: str | Path, logical_name: str) -> MoveOutcome:
        """Move *source_path* into the destination folder as *logical_name*."""
        source = Path(source_path)
        with self._lock:
            self._active_moves += 1
        outcome = MoveOutcome(kind=FATAL, source=str(source), started=time.time())
        try:
            outcome = self._move_with_retries(source, Path(logical_name).name, outcome)
        finally:
            outcome.finished = time.time()
            with self._lock:
                self._active_moves -= 1
            self.stats.record(outcome)
            if self._on_outcome:
                try:
                    self._on_outcome(outcome)
                except Exception:
                    logger.exception("Error in on_outcome callback")
        return outcome

    def resolve_destination(self, logical_name: str) -> Path:
        """Return the first free destination path for *logical_name*.

        Existence is checked against the folder as it is now; nothing
        is created.
        """
        dest = self.destination_root / logical_name
        if not os.path.lexists(dest):
            return dest
        stem, ext = os.path.splitext(logical_name)
        counter = 1
        while True:
            candidate = self.destination_root / f"{stem}_{counter}{ext}"
            if not os.path.lexists(candidate):
                return candidate
            counter += 1

    def _move_with_retries(
        self, source: Path, logical_name: str, outcome: MoveOutcome
    ) -> MoveOutcome:
        attempt = 0
        while True:
            try:
                with self._path_locks.hold(str(source)):
                    if not source.exists():
                        logger.debug("Source file no longer exists: %s", source)
                        outcome.kind = SOURCE_VANISHED
                        outcome.attempts = attempt
                        return outcome

                    dest = self.resolve_destination(logical_name)
                    outcome.destination = str(dest)
                    if not _transfer(source, dest):
                        logger.debug("Source taken by another mover: %s", source)
                        outcome.kind = SOURCE_VANISHED
                        outcome.destination = ""
                        outcome.attempts = attempt + 1
                        return outcome

                outcome.kind = MOVED
                outcome.attempts = attempt + 1
                outcome.error = None
                logger.info("Moved %s -> %s", source, dest)
                return outcome

            except OSError as exc:
                if not source.exists():
                    logger.debug("Source file vanished during move: %s", source)
                    outcome.kind = SOURCE_VANISHED
                    outcome.error = None
                    outcome.destination = ""
                    outcome.attempts = attempt + 1
                    return outcome
                attempt += 1
                outcome.error = exc
                outcome.attempts = attempt
                logger.warning(
                    "I/O error moving %s (attempt %d/%d): %s",
                    source, attempt, self._max_attempts, exc,
                )
                if attempt >= self._max_attempts:
                    logger.error(
                        "Failed to move file after %d attempts: %s",
                        self._max_attempts, source,
                    )
                    outcome.kind = EXHAUSTED_RETRIES
                    outcome.destination = ""
                    return outcome
                delay = attempt * self._backoff
                logger.info("Retrying in %.0fs (attempt %d failed)…", delay, attempt)
                time.sleep(delay)

            except Exception as exc:
                logger.exception("Unexpected error moving %s", source)
                outcome.kind = FATAL
                outcome.error = exc
                outcome.attempts = attempt + 1
                outcome.destination = ""
                return outcome
