"""High-level client for the three-phase meter.

Connection lifecycle::

    DISCONNECTED -> CONNECTING -> PROBING(unit) -> CONNECTED
          ^______________|______________|

Any failure while connecting returns to ``DISCONNECTED``. Public
operations are coroutines and must not overlap on one client; the
poller in :mod:`meter_rtu_mcp.poller` is the usual caller.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from enum import Enum
from typing import Callable

from .config import ClientConfig
from .events import EventHub, LogLevel, StatusChange
from .models.measurement import ConnectResult, MeasurementSnapshot
from .models.registers import DEFAULT_REGISTER_MAP, RegisterMap
from .protocol.commands import FunctionCode, build_read_holding_registers
from .protocol.errors import ErrorKind, MeterError, NotConnectedError, ProbeExhaustedError
from .protocol.framing import ResponseFrame, validate
from .protocol.registers import FLOAT_REGISTERS, decode_float, decode_registers
from .transport.tcp_connection import TCPSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str, int, ClientConfig], TCPSession]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    PROBING = "probing"
    CONNECTED = "connected"


def validate_ip_address(host: str) -> str | None:
    """Return an error message if ``host`` is not a usable IP address."""
    if not host or not host.strip():
        return "IP address is required"
    try:
        ipaddress.ip_address(host.strip())
    except ValueError:
        return f"Invalid IP address format: {host!r}"
    return None


class DeviceClient:
    """Owns one TCP session to the meter and the unit address it answers on.

    Usage::

        client = DeviceClient()
        result = await client.connect("10.0.0.5", 1001)
        if result.success:
            snapshot = await client.read_measurements()
        await client.disconnect()
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        register_map: RegisterMap = DEFAULT_REGISTER_MAP,
        events: EventHub | None = None,
        session_factory: SessionFactory = TCPSession,
    ) -> None:
        self._config = config or ClientConfig()
        self._registers = register_map
        self._events = events or EventHub()
        self._session_factory = session_factory
        self._session: TCPSession | None = None
        self._state = ConnectionState.DISCONNECTED
        self._unit_id: int | None = None
        self._probing_unit: int | None = None
        self._firmware_version = 0.0
        self._io_lock = asyncio.Lock()

        self._log(LogLevel.INFO, "Meter client started")

    # ─── properties ───────────────────────────────────────────────────

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def events(self) -> EventHub:
        return self._events

    @property
    def registers(self) -> RegisterMap:
        return self._registers

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return (
            self._state is ConnectionState.CONNECTED
            and self._session is not None
            and self._session.connected
        )

    @property
    def unit_id(self) -> int | None:
        return self._unit_id

    @property
    def probing_unit(self) -> int | None:
        """Unit address under test while in ``PROBING``."""
        return self._probing_unit

    @property
    def firmware_version(self) -> float:
        return self._firmware_version

    def status(self) -> dict:
        session = self._session
        return {
            "state": self._state.value,
            "connected": self.connected,
            "host": session.host if session else None,
            "port": session.port if session else None,
            "unit_id": self._unit_id,
            "firmware_version": self._firmware_version,
        }

    def _log(self, level: LogLevel, message: str, error: BaseException | None = None) -> None:
        self._events.log(level, message, error, source=logger)

    def _notify(self, connected: bool, message: str) -> None:
        self._events.publish_status(
            StatusChange(connected, message, self._firmware_version)
        )

    # ─── lifecycle ────────────────────────────────────────────────────

    async def connect(self, host: str, port: int | None = None) -> ConnectResult:
        """Open a session and discover which unit address the meter uses.

        Never raises for network or device failures; inspect the result.
        """
        if port is None:
            port = self._config.default_port

        problem = validate_ip_address(host)
        if problem:
            self._log(LogLevel.WARNING, problem)
            self._notify(False, problem)
            return ConnectResult.failure(problem, ErrorKind.INVALID_ADDRESS)
        host = host.strip()

        await self._teardown()
        self._state = ConnectionState.CONNECTING
        self._log(LogLevel.INFO, f"Connecting to {host}:{port}")

        session = self._session_factory(host, port, self._config)
        self._session = session
        try:
            await session.open()
        except MeterError as err:
            return await self._fail(f"Connection failed: {err}", err.kind, err)

        try:
            unit = await self._probe()
        except ProbeExhaustedError as err:
            return await self._fail("Connection failed", err.kind, err)

        self._unit_id = unit
        self._state = ConnectionState.CONNECTED

        try:
            self._firmware_version = await self.read_float(self._registers.version.address)
        except MeterError as err:
            self._firmware_version = 0.0
            self._log(LogLevel.WARNING, "Firmware version read failed", err)
            self._log(LogLevel.INFO, f"Meter connected (unit {unit})")
        else:
            self._log(
                LogLevel.INFO,
                f"Meter connected (unit {unit}) - firmware v{self._firmware_version:.2f}",
            )

        self._notify(True, "Connected")
        return ConnectResult.ok("Connected", self._firmware_version, unit)

    async def _fail(self, message: str, kind: ErrorKind, err: BaseException) -> ConnectResult:
        await self._teardown()
        self._log(LogLevel.ERROR, message, err)
        self._notify(False, message)
        return ConnectResult.failure(message, kind)

    async def _probe(self) -> int:
        """Try each candidate unit address on the open session.

        The session is re-opened only after a socket-level failure.

        Raises:
            ProbeExhaustedError: If no candidate answered.
        """
        session = self._session
        address = self._registers.probe_address
        try:
            for unit in self._config.unit_ids:
                self._state = ConnectionState.PROBING
                self._probing_unit = unit
                try:
                    if not session.connected:
                        await session.open()
                    frame = await self._transact(unit, address, 1)
                except MeterError as err:
                    logger.info("Unit %d did not answer probe: %s", unit, err)
                    if err.kind is ErrorKind.SOCKET_FAILURE:
                        await session.close()
                    continue

                if frame.data:
                    logger.info("Unit %d answered probe: %r", unit, frame)
                    return unit
                logger.info("Unit %d answered probe with no data", unit)
        finally:
            self._probing_unit = None

        raise ProbeExhaustedError(tuple(self._config.unit_ids))

    async def disconnect(self) -> None:
        """Close the session. Always ends ``DISCONNECTED``, never raises."""
        await self._teardown()
        self._log(LogLevel.INFO, "Meter disconnected")
        self._notify(False, "Disconnected")

    async def _teardown(self) -> None:
        session = self._session
        self._session = None
        self._unit_id = None
        self._firmware_version = 0.0
        self._state = ConnectionState.DISCONNECTED
        if session is not None:
            await session.close()

    # ─── reads ────────────────────────────────────────────────────────

    async def _transact(self, unit: int, address: int, count: int) -> ResponseFrame:
        request = build_read_holding_registers(unit, address, count)
        async with self._io_lock:
            # A disconnect may have run while this read waited for the lock.
            session = self._session
            if session is None or not session.connected:
                raise NotConnectedError()
            raw = await session.exchange(request, FunctionCode.READ_HOLDING_REGISTERS)
        return validate(raw, FunctionCode.READ_HOLDING_REGISTERS, count)

    async def _read(self, address: int, count: int) -> ResponseFrame:
        if not self.connected or self._unit_id is None:
            raise NotConnectedError()
        return await self._transact(self._unit_id, address, count)

    async def read_holding_registers(self, address: int, count: int) -> list[int]:
        """Read ``count`` registers starting at ``address``.

        Raises:
            MeterError: On any transport or frame failure.
        """
        frame = await self._read(address, count)
        return decode_registers(frame.data, count)

    async def read_float(self, address: int) -> float:
        """Read the float stored in registers ``address`` and ``address + 1``."""
        frame = await self._read(address, FLOAT_REGISTERS)
        return decode_float(frame.data)

    async def read_frequency(self) -> float:
        return await self.read_float(self._registers.frequency_a.address)

    async def read_measurements(self) -> MeasurementSnapshot:
        """Read the three phase voltages and currents as one snapshot.

        All six reads must succeed; the first failure is raised and no
        partial snapshot is produced.
        """
        if not self.connected:
            raise NotConnectedError()

        values: list[float] = []
        registers = self._registers.measurements
        try:
            for i, reg in enumerate(registers):
                values.append(await self.read_float(reg.address))
                if i < len(registers) - 1:
                    await asyncio.sleep(self._config.inter_read_delay)
        except MeterError as err:
            self._log(
                LogLevel.WARNING,
                f"Measurement read failed at {reg.name} (register {reg.address})",
                err,
            )
            raise

        return MeasurementSnapshot(*values)

    async def test_connection(self) -> str:
        """Probe the adopted unit once and describe the outcome."""
        if not self.connected or self._unit_id is None:
            return "Not connected"
        try:
            frame = await self._read(self._registers.probe_address, 1)
        except MeterError as err:
            return f"Test failed: {err}"
        return f"Response OK from unit {self._unit_id}: {frame.data.hex(' ')}"
