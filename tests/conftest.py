"""Shared fakes for client and poller tests."""

from __future__ import annotations

import pytest

from meter_rtu_mcp.config import ClientConfig
from meter_rtu_mcp.protocol.errors import ErrorKind, NotConnectedError, TransportError
from meter_rtu_mcp.protocol.framing import parse_request
from meter_rtu_mcp.protocol.registers import encode_float
from meter_rtu_mcp.utils.crc import append_crc

FAST_CONFIG = ClientConfig(
    connect_timeout=1.0,
    exchange_timeout=0.5,
    poll_interval=0.0,
    flush_delay=0.001,
    inter_read_delay=0.0,
    post_connect_delay=0.0,
    polling_period=0.05,
)


class FakeMeter:
    """Answers decoded requests without any socket."""

    def __init__(self, units=(1,)):
        self.units = set(units)
        self.floats: dict[int, float] = {0: 1.5}
        self.requests = []
        self.fail_addresses: dict[int, Exception] = {}
        self.open_error: Exception | None = None
        self.opens = 0

    def respond(self, request: bytes) -> bytes:
        req = parse_request(request)
        assert req is not None, "client sent a malformed request"
        self.requests.append(req)
        if req.address in self.fail_addresses:
            raise self.fail_addresses[req.address]
        if req.unit not in self.units:
            return b""
        if req.count == 2:
            data = encode_float(self.floats.get(req.address, 0.0))
        else:
            data = b"\x00" * (2 * req.count)
        return append_crc(bytes([req.unit, req.function, len(data)]) + data)

    @property
    def probed_units(self):
        return [r.unit for r in self.requests if r.count == 1]


class FakeSession:
    """Stands in for TCPSession, delegating exchanges to a FakeMeter."""

    def __init__(self, meter: FakeMeter, host: str, port: int):
        self.meter = meter
        self.host = host
        self.port = port
        self._open = False
        self.closes = 0

    @property
    def connected(self) -> bool:
        return self._open

    async def open(self) -> None:
        self.meter.opens += 1
        if self.meter.open_error is not None:
            raise self.meter.open_error
        self._open = True

    async def close(self) -> None:
        self._open = False
        self.closes += 1

    async def exchange(self, request, expected_function=0x03, timeout=None) -> bytes:
        if not self._open:
            raise NotConnectedError("TCP session is not open")
        try:
            return self.meter.respond(request)
        except TransportError as err:
            if err.kind is ErrorKind.SOCKET_FAILURE:
                self._open = False
            raise


@pytest.fixture
def fake_meter():
    return FakeMeter()


@pytest.fixture
def sessions():
    return []


@pytest.fixture
def session_factory(fake_meter, sessions):
    def factory(host, port, config):
        session = FakeSession(fake_meter, host, port)
        sessions.append(session)
        return session

    return factory


@pytest.fixture
def fast_config():
    return FAST_CONFIG
