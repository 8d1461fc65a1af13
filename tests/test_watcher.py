"""
Tests for the supervised folder watcher.

These run a real watchdog observer on a temporary folder.
"""

import logging
import threading
import time

import pytest

from folder_relay.eventlog import SEVERITY_ERROR, SEVERITY_FATAL, SEVERITY_INFO
from folder_relay.mover import MoveEngine
from folder_relay.watcher import ACTIVE, FAULTED, STOPPED, ChangeWatcher


class Recorder:
    """Thread-safe stand-in for MoveEngine.move."""

    def __init__(self, fail_first=0):
        self.calls = []
        self._fail_first = fail_first
        self._lock = threading.Lock()

    def __call__(self, path, name):
        with self._lock:
            self.calls.append((path, name))
            if self._fail_first:
                self._fail_first -= 1
                raise RuntimeError("handler blew up")

    def names(self):
        with self._lock:
            return [name for _, name in self.calls]


@pytest.fixture
def make_watcher(channel):
    watchers = []

    def factory(source, on_created, **kwargs):
        kwargs.setdefault("settle_delay", 0.01)
        kwargs.setdefault("channel", channel)
        watcher = ChangeWatcher(str(source), on_created, **kwargs)
        watchers.append(watcher)
        return watcher

    yield factory
    for watcher in watchers:
        watcher.stop()


class TestLifecycle:
    """Tests for start/stop."""

    def test_start_makes_watcher_active(self, folders, make_watcher):
        source, _ = folders
        watcher = make_watcher(source, Recorder())

        watcher.start()

        assert watcher.state == ACTIVE
        assert watcher.is_running

    def test_start_on_missing_folder_raises(self, tmp_path, make_watcher):
        watcher = make_watcher(tmp_path / "missing", Recorder())

        with pytest.raises(FileNotFoundError):
            watcher.start()

        assert watcher.state == STOPPED

    def test_stop_is_idempotent(self, folders, make_watcher):
        source, _ = folders
        watcher = make_watcher(source, Recorder())

        watcher.stop()
        watcher.start()
        watcher.stop()
        watcher.stop()

        assert watcher.state == STOPPED
        assert not watcher.is_running

    def test_start_twice_keeps_one_subscription(self, folders, make_watcher):
        source, _ = folders
        watcher = make_watcher(source, Recorder())

        watcher.start()
        first = watcher._observer
        watcher.start()

        assert watcher._observer is first


class TestEvents:
    """Tests for creation-event handling."""

    def test_new_file_is_handed_over(self, folders, make_watcher, wait_for):
        source, _ = folders
        recorder = Recorder()
        watcher = make_watcher(source, recorder)
        watcher.start()

        (source / "report.txt").write_text("x")

        assert wait_for(lambda: "report.txt" in recorder.names())
        path, name = recorder.calls[0]
        assert path.name == "report.txt"
        assert name == "report.txt"

    def test_directories_are_ignored(self, folders, make_watcher, wait_for):
        source, _ = folders
        recorder = Recorder()
        watcher = make_watcher(source, recorder)
        watcher.start()

        (source / "subdir").mkdir()
        (source / "marker.txt").write_text("x")

        assert wait_for(lambda: "marker.txt" in recorder.names())
        time.sleep(0.2)
        assert "subdir" not in recorder.names()

    def test_files_in_subfolders_are_ignored(self, folders, make_watcher, wait_for):
        source, _ = folders
        (source / "nested").mkdir()
        recorder = Recorder()
        watcher = make_watcher(source, recorder)
        watcher.start()

        (source / "nested" / "deep.txt").write_text("x")
        (source / "marker.txt").write_text("x")

        assert wait_for(lambda: "marker.txt" in recorder.names())
        time.sleep(0.2)
        assert "deep.txt" not in recorder.names()

    def test_handler_error_does_not_stop_watcher(
        self, folders, make_watcher, channel, wait_for
    ):
        source, _ = folders
        recorder = Recorder(fail_first=1)
        watcher = make_watcher(source, recorder)
        watcher.start()

        (source / "first.txt").write_text("x")
        assert wait_for(lambda: "first.txt" in recorder.names())
        (source / "second.txt").write_text("x")

        assert wait_for(lambda: "second.txt" in recorder.names())
        assert watcher.state == ACTIVE
        assert wait_for(lambda: channel.messages("warning"))

    def test_worker_start_failure_is_contained(
        self, folders, make_watcher, channel, monkeypatch, caplog, wait_for
    ):
        source, _ = folders
        recorder = Recorder()
        watcher = make_watcher(source, recorder)
        watcher.start()

        def no_threads(self):
            raise RuntimeError("can't start new thread")

        with caplog.at_level(logging.ERROR, logger="folder_relay.watcher"):
            with monkeypatch.context() as m:
                m.setattr(threading.Thread, "start", no_threads)
                watcher._dispatch(source / "stranded.txt")

        assert any("stranded.txt" in r.getMessage() for r in caplog.records)
        assert channel.messages("warning")
        assert recorder.names() == []

        (source / "after.txt").write_text("x")
        assert wait_for(lambda: "after.txt" in recorder.names())
        assert watcher.state == ACTIVE

    def test_end_to_end_with_move_engine(self, folders, make_watcher, wait_for):
        source, dest = folders
        engine = MoveEngine(str(dest))
        watcher = make_watcher(source, engine.move)
        watcher.start()

        (source / "report.txt").write_text("first")
        assert wait_for(lambda: (dest / "report.txt").exists())
        assert wait_for(lambda: not (source / "report.txt").exists())

        (source / "report.txt").write_text("second")
        assert wait_for(lambda: (dest / "report_1.txt").exists())
        assert (dest / "report.txt").read_text() == "first"
        assert wait_for(lambda: (dest / "report_1.txt").read_text() == "second")


class TestSelfHealing:
    """Tests for watcher fault recovery."""

    def test_fault_resubscribes(self, folders, make_watcher, channel, wait_for):
        source, _ = folders
        recorder = Recorder()
        watcher = make_watcher(source, recorder)
        watcher.start()
        old_observer = watcher._observer

        assert watcher.report_fault(OSError("event queue overflow")) is True

        assert watcher.state == ACTIVE
        assert watcher._observer is not old_observer
        assert not old_observer.is_alive()
        assert channel.severities() == [SEVERITY_ERROR, SEVERITY_INFO]

        (source / "after.txt").write_text("x")
        assert wait_for(lambda: "after.txt" in recorder.names())

    def test_failed_resubscribe_leaves_watcher_faulted(
        self, folders, make_watcher, channel
    ):
        source, _ = folders
        watcher = make_watcher(source, Recorder())
        watcher.start()
        source.rmdir()

        assert watcher.report_fault(OSError("watch directory removed")) is False

        assert watcher.state == FAULTED
        assert not watcher.is_running
        assert SEVERITY_FATAL in channel.severities()

    def test_supervisor_detects_dead_observer(self, folders, make_watcher, wait_for):
        source, _ = folders
        recorder = Recorder()
        watcher = make_watcher(source, recorder, health_check_interval=0.1)
        watcher.start()
        old_observer = watcher._observer

        # Kill the observer behind the watcher's back
        old_observer.stop()
        old_observer.join(timeout=5)

        assert wait_for(
            lambda: watcher._observer not in (None, old_observer)
            and watcher.state == ACTIVE
        )
        (source / "healed.txt").write_text("x")
        assert wait_for(lambda: "healed.txt" in recorder.names())

    def test_fault_after_stop_is_ignored(self, folders, make_watcher, channel):
        source, _ = folders
        watcher = make_watcher(source, Recorder())
        watcher.start()
        watcher.stop()

        assert watcher.report_fault(OSError("late")) is False
        assert watcher.state == STOPPED
        assert channel.entries == []
