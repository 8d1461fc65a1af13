"""
Tests for the operator notification channel.
"""

import logging
import socket

import pytest

from folder_relay import eventlog
from folder_relay.eventlog import (
    SEVERITY_ERROR,
    SEVERITY_FATAL,
    SEVERITY_INFO,
    OperatorChannel,
)
from folder_relay.platform_utils import IS_WINDOWS


class TestOperatorChannel:
    """Tests for OperatorChannel."""

    def test_writer_receives_entries(self):
        entries = []
        channel = OperatorChannel(writer=lambda m, s: entries.append((s, m)))

        channel.report("started")
        channel.report("watcher gone", SEVERITY_FATAL)

        assert channel.available
        assert entries == [(SEVERITY_INFO, "started"), (SEVERITY_FATAL, "watcher gone")]

    def test_writer_failure_is_swallowed_and_logged(self, caplog):
        def broken(message, severity):
            raise OSError("The event log file is full")

        channel = OperatorChannel(writer=broken)

        with caplog.at_level(logging.WARNING, logger="folder_relay.eventlog"):
            channel.report("move failed", SEVERITY_ERROR)

        assert any("event log file is full" in r.getMessage().lower() for r in caplog.records)

    def test_disabled_channel_is_a_no_op(self):
        channel = OperatorChannel(enabled=False)

        channel.report("nobody listens")
        channel.close()

        assert not channel.available

    def test_close_is_idempotent(self):
        channel = OperatorChannel()

        channel.close()
        channel.close()

        assert channel.closed

    def test_closed_channel_drops_entries(self):
        entries = []
        channel = OperatorChannel(writer=lambda m, s: entries.append(m))

        channel.close()
        channel.report("too late")

        assert entries == []
        assert not channel.available


@pytest.fixture
def syslog_socket(tmp_path, monkeypatch):
    """A local datagram socket standing in for the syslog daemon."""
    if IS_WINDOWS or not hasattr(socket, "AF_UNIX"):
        pytest.skip("Unix domain sockets required")
    path = tmp_path / "log"
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    sock.bind(str(path))
    sock.settimeout(2)
    monkeypatch.setattr(eventlog, "_SYSLOG_SOCKETS", (str(path),))
    yield sock
    sock.close()


def _drain(sock, wait=0.3):
    datagrams = [sock.recv(4096)]
    sock.settimeout(wait)
    while True:
        try:
            datagrams.append(sock.recv(4096))
        except socket.timeout:
            return datagrams


class TestSyslogChannel:
    """Tests for the syslog-backed channel."""

    def test_entry_reaches_syslog(self, syslog_socket):
        channel = OperatorChannel()
        try:
            channel.report("File moved: a.txt", SEVERITY_ERROR)
        finally:
            channel.close()

        datagrams = _drain(syslog_socket)

        assert len(datagrams) == 1
        assert b"FolderRelay: File moved: a.txt" in datagrams[0]

    def test_two_channels_deliver_each_entry_once(self, syslog_socket):
        first = OperatorChannel()
        second = OperatorChannel()
        try:
            second.report("hello")
        finally:
            first.close()
            second.close()

        datagrams = _drain(syslog_socket)

        assert len(datagrams) == 1
        assert b"hello" in datagrams[0]

    def test_closing_one_channel_leaves_the_other_working(self, syslog_socket):
        first = OperatorChannel()
        second = OperatorChannel()
        first.close()
        try:
            second.report("still here")
        finally:
            second.close()

        datagrams = _drain(syslog_socket)

        assert len(datagrams) == 1
        assert b"still here" in datagrams[0]
