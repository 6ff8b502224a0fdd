"""Simulated meter answering Modbus RTU frames over TCP.

Behaves like the RTU-to-TCP gateway in front of the real meter: requests
for unknown unit ids get no answer at all, and responses can be delayed,
split into small chunks, truncated, corrupted or duplicated to exercise the
client's reassembly and buffer hygiene.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .protocol.commands import REQUEST_SIZE, FunctionCode
from .protocol.framing import Request, parse_request
from .protocol.registers import encode_registers, float_to_registers
from .utils.crc import append_crc

logger = logging.getLogger(__name__)

EXC_ILLEGAL_FUNCTION = 0x01
EXC_ILLEGAL_ADDRESS = 0x02


@dataclass
class SimulatorBehavior:
    """Faults and timing injected into responses."""

    response_delay: float = 0.0
    chunk_size: int = 0  # 0 sends each response in one write
    chunk_delay: float = 0.005
    corrupt_crc: bool = False
    duplicate_responses: bool = False
    truncate_to: int = 0  # 0 sends the whole frame
    exception_code: int | None = None
    silent_addresses: set[int] = field(default_factory=set)


class SimulatedMeter:
    """In-process meter reachable at ``host:port`` once started.

    Usage::

        async with SimulatedMeter(unit_ids=(1,)) as meter:
            meter.set_float(68, 220.5)
            await client.connect(meter.host, meter.port)
    """

    def __init__(
        self,
        unit_ids: tuple[int, ...] = (1,),
        host: str = "127.0.0.1",
        port: int = 0,
        behavior: SimulatorBehavior | None = None,
    ) -> None:
        self.unit_ids = set(unit_ids)
        self.host = host
        self.port = port
        self.behavior = behavior or SimulatorBehavior()
        self.registers: dict[int, int] = {}
        self.requests: list[Request] = []
        self._server: asyncio.Server | None = None
        self._connections: set[asyncio.StreamWriter] = set()
        self.connections_total = 0

    def set_register(self, address: int, value: int) -> None:
        self.registers[address] = value & 0xFFFF

    def set_float(self, address: int, value: float) -> None:
        """Store ``value`` in ``address``/``address + 1`` in meter word order."""
        low, high = float_to_registers(value)
        self.registers[address] = low
        self.registers[address + 1] = high

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle_connection, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        logger.info("Simulated meter listening on %s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for writer in list(self._connections):
            writer.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("Simulated meter stopped")

    async def drop_connections(self) -> None:
        """Close every open client connection, keeping the listener up."""
        for writer in list(self._connections):
            writer.close()

    async def __aenter__(self) -> SimulatedMeter:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    def build_response(self, request: Request) -> bytes | None:
        """Response frame for ``request``, or ``None`` if the meter stays silent."""
        if request.unit not in self.unit_ids:
            return None
        if request.address in self.behavior.silent_addresses:
            return None

        if self.behavior.exception_code is not None:
            return self._exception(request.unit, request.function, self.behavior.exception_code)
        if request.function != FunctionCode.READ_HOLDING_REGISTERS:
            return self._exception(request.unit, request.function, EXC_ILLEGAL_FUNCTION)
        if request.count < 1 or request.address + request.count > 0x10000:
            return self._exception(request.unit, request.function, EXC_ILLEGAL_ADDRESS)

        values = [
            self.registers.get(request.address + i, 0) for i in range(request.count)
        ]
        data = encode_registers(values)
        frame = append_crc(bytes([request.unit, request.function, len(data)]) + data)
        if self.behavior.corrupt_crc:
            frame = frame[:-2] + bytes([frame[-2] ^ 0xFF, frame[-1]])
        if self.behavior.truncate_to:
            frame = frame[: self.behavior.truncate_to]
        return frame

    @staticmethod
    def _exception(unit: int, function: int, code: int) -> bytes:
        return append_crc(bytes([unit, function | 0x80, code]))

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        logger.debug("Simulator connection from %s", peer)
        self._connections.add(writer)
        self.connections_total += 1
        try:
            while True:
                raw = await reader.readexactly(REQUEST_SIZE)
                request = parse_request(raw)
                if request is None:
                    logger.debug("Simulator ignoring malformed request %s", raw.hex(" "))
                    continue
                self.requests.append(request)

                response = self.build_response(request)
                if response is None:
                    continue
                if self.behavior.response_delay:
                    await asyncio.sleep(self.behavior.response_delay)
                await self._send(writer, response)
                if self.behavior.duplicate_responses:
                    await self._send(writer, response)
        except (asyncio.IncompleteReadError, ConnectionError):
            logger.debug("Simulator connection from %s closed", peer)
        finally:
            self._connections.discard(writer)
            writer.close()

    async def _send(self, writer: asyncio.StreamWriter, frame: bytes) -> None:
        size = self.behavior.chunk_size
        if size <= 0:
            writer.write(frame)
            await writer.drain()
            return
        for offset in range(0, len(frame), size):
            writer.write(frame[offset : offset + size])
            await writer.drain()
            await asyncio.sleep(self.behavior.chunk_delay)
