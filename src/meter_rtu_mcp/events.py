"""Status and log event stream published by the device client.

Subscribers are plain callables, invoked synchronously on whichever task
published the event. Thread or UI affinity is up to the subscriber.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

RECENT_LOG_SIZE = 100


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def logging_level(self) -> int:
        return {
            LogLevel.INFO: logging.INFO,
            LogLevel.WARNING: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
        }[self]


@dataclass(frozen=True)
class LogEntry:
    """One leveled message for the external log view."""

    level: LogLevel
    message: str
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        result = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class StatusChange:
    """Connection status transition."""

    connected: bool
    message: str
    firmware_version: float = 0.0

    def to_dict(self) -> dict:
        return {
            "connected": self.connected,
            "message": self.message,
            "firmware_version": self.firmware_version,
        }


StatusListener = Callable[[StatusChange], None]
LogListener = Callable[[LogEntry], None]


class EventHub:
    """Fan-out of status and log events to subscribers.

    Keeps the most recent log entries so late subscribers can catch up.
    """

    def __init__(self, history: int = RECENT_LOG_SIZE) -> None:
        self._status_listeners: list[StatusListener] = []
        self._log_listeners: list[LogListener] = []
        self._recent: deque[LogEntry] = deque(maxlen=history)

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        """Subscribe to status changes. Returns an unsubscribe callable."""
        self._status_listeners.append(listener)
        return lambda: self._status_listeners.remove(listener)

    def on_log(self, listener: LogListener) -> Callable[[], None]:
        """Subscribe to log entries. Returns an unsubscribe callable."""
        self._log_listeners.append(listener)
        return lambda: self._log_listeners.remove(listener)

    def recent_log(self, limit: int | None = None) -> list[LogEntry]:
        entries = list(self._recent)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def publish_status(self, change: StatusChange) -> None:
        for listener in list(self._status_listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Status listener %r failed", listener)

    def publish_log(self, entry: LogEntry) -> None:
        self._recent.append(entry)
        for listener in list(self._log_listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception("Log listener %r failed", listener)

    def log(
        self,
        level: LogLevel,
        message: str,
        error: BaseException | str | None = None,
        source: logging.Logger | None = None,
    ) -> LogEntry:
        """Record ``message`` on ``source`` (or this module's logger) and publish it."""
        detail = str(error) if error is not None else None
        (source or logger).log(
            level.logging_level, "%s%s", message, f": {detail}" if detail else ""
        )
        entry = LogEntry(level=level, message=message, error=detail)
        self.publish_log(entry)
        return entry
