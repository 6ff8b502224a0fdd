"""Fixed-interval measurement polling.

A tick fires every ``polling_period`` seconds. A tick that finds the
previous poll still running is skipped, so at most one
``read_measurements`` call is outstanding at any time. Ticking stops
once the client is no longer connected.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable

from .client import DeviceClient
from .events import LogLevel
from .models.measurement import MeasurementSnapshot
from .protocol.errors import MeterError

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[MeasurementSnapshot], None]


class MeasurementPoller:
    """Drives ``client.read_measurements`` on a timer while connected."""

    def __init__(
        self,
        client: DeviceClient,
        period: float | None = None,
        on_snapshot: SnapshotListener | None = None,
    ) -> None:
        self._client = client
        self._period = client.config.polling_period if period is None else period
        self._listeners: list[SnapshotListener] = [on_snapshot] if on_snapshot else []
        self._lock = asyncio.Lock()
        self._ticker: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._latest: MeasurementSnapshot | None = None
        self.skipped = 0

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def latest(self) -> MeasurementSnapshot | None:
        return self._latest

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        if self.running:
            return
        self._ticker = asyncio.create_task(self._tick_loop(), name="meter-poller")

    async def stop(self) -> None:
        for task in (self._ticker, self._inflight):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._ticker = None
        self._inflight = None

    async def _tick_loop(self) -> None:
        loop = asyncio.get_running_loop()
        await asyncio.sleep(self._client.config.post_connect_delay)
        next_tick = loop.time()
        while True:
            if not self._client.connected:
                logger.info("Client disconnected, polling stopped")
                return
            if self._inflight is None or self._inflight.done():
                self._inflight = asyncio.create_task(self.poll_once())
                self._inflight.add_done_callback(self._poll_done)
            else:
                self.skipped += 1
                logger.debug("Previous poll still running, skipping tick")
            next_tick += self._period
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    @staticmethod
    def _poll_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            logger.error("Poll failed", exc_info=err)

    async def poll_once(self) -> MeasurementSnapshot | None:
        """Run one polling cycle.

        Returns ``None`` when skipped, disconnected, or the read failed.
        A failure that means the session is gone forces a disconnect.
        """
        if self._lock.locked():
            self.skipped += 1
            return None

        async with self._lock:
            if not self._client.connected:
                return None
            try:
                snapshot = await self._client.read_measurements()
            except MeterError as err:
                if err.connection_lost:
                    self._client.events.log(
                        LogLevel.ERROR, "Connection lost", err, source=logger
                    )
                    await self._client.disconnect()
                return None

        self._latest = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener %r failed", listener)
        return snapshot
