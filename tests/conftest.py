"""Shared fixtures for the Folder Relay tests."""

import time

import pytest

from folder_relay.eventlog import OperatorChannel


class RecordingChannel(OperatorChannel):
    """Operator channel that keeps every entry in memory."""

    def __init__(self):
        self.entries = []
        super().__init__(writer=lambda message, severity: self.entries.append((severity, message)))

    def severities(self):
        return [severity for severity, _ in self.entries]

    def messages(self, severity=None):
        return [m for s, m in self.entries if severity is None or s == severity]


def _wait_for(predicate, timeout=5.0, interval=0.05):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    """Poll a predicate until it holds or the timeout expires."""
    return _wait_for


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def folders(tmp_path):
    """Existing (source, destination) folders."""
    source = tmp_path / "in"
    dest = tmp_path / "out"
    source.mkdir()
    dest.mkdir()
    return source, dest


class _BackoffClock:
    """Stands in for the `time` module inside folder_relay.mover."""

    def __init__(self):
        self.waits = []

    def sleep(self, seconds):
        self.waits.append(seconds)

    def time(self):
        return time.time()


@pytest.fixture
def no_sleep(monkeypatch):
    """Record MoveEngine backoff waits instead of sleeping."""
    clock = _BackoffClock()
    monkeypatch.setattr("folder_relay.mover.time", clock)
    return clock.waits
