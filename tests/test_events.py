"""Tests for the status/log event hub."""

import logging

from meter_rtu_mcp.events import EventHub, LogEntry, LogLevel, StatusChange


def test_log_reaches_listener_and_history():
    hub = EventHub()
    seen = []
    hub.on_log(seen.append)
    entry = hub.log(LogLevel.WARNING, "Read failed", ValueError("boom"))
    assert seen == [entry]
    assert entry.error == "boom"
    assert hub.recent_log() == [entry]


def test_log_also_goes_to_logging(caplog):
    hub = EventHub()
    with caplog.at_level(logging.INFO):
        hub.log(LogLevel.INFO, "Meter connected")
    assert "Meter connected" in caplog.text


def test_unsubscribe():
    hub = EventHub()
    seen = []
    unsubscribe = hub.on_status(seen.append)
    hub.publish_status(StatusChange(True, "Connected", 1.0))
    unsubscribe()
    hub.publish_status(StatusChange(False, "Disconnected"))
    assert len(seen) == 1


def test_failing_listener_does_not_break_others():
    hub = EventHub()
    seen = []

    def broken(_change):
        raise RuntimeError("listener bug")

    hub.on_status(broken)
    hub.on_status(seen.append)
    hub.publish_status(StatusChange(False, "Disconnected"))
    assert len(seen) == 1


def test_recent_log_bounded():
    hub = EventHub(history=3)
    for i in range(5):
        hub.log(LogLevel.INFO, f"entry {i}")
    assert [e.message for e in hub.recent_log()] == ["entry 2", "entry 3", "entry 4"]
    assert [e.message for e in hub.recent_log(1)] == ["entry 4"]
    assert hub.recent_log(0) == []


def test_entry_to_dict():
    d = LogEntry(LogLevel.ERROR, "Connection failed", "timeout").to_dict()
    assert d["level"] == "error"
    assert d["error"] == "timeout"
    assert "timestamp" in d
