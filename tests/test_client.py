"""Tests for the device client state machine and reads."""

import asyncio

import pytest

from meter_rtu_mcp.client import ConnectionState, DeviceClient, validate_ip_address
from meter_rtu_mcp.events import LogLevel
from meter_rtu_mcp.models.registers import ADDR_IRMS_A, ADDR_URMS_AN, ADDR_VERSION
from meter_rtu_mcp.protocol.errors import (
    ErrorKind,
    FrameError,
    MeterError,
    NotConnectedError,
    TransportError,
)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def make_client(fast_config, session_factory):
    def make(**kwargs):
        return DeviceClient(fast_config, session_factory=session_factory, **kwargs)

    return make


def test_connect_adopts_first_unit(make_client, fake_meter):
    fake_meter.floats[ADDR_VERSION] = 2.5

    async def scenario():
        client = make_client()
        result = await client.connect("10.0.0.5", 1001)
        return client, result

    client, result = run(scenario())
    assert result.success
    assert result.unit_id == 1
    assert result.firmware_version == 2.5
    assert client.state is ConnectionState.CONNECTED
    assert client.unit_id == 1
    assert fake_meter.probed_units == [1]


def test_probe_stops_at_accepting_unit(make_client, fake_meter):
    """Only unit 2 answers: unit 3 must never be tried."""
    fake_meter.units = {2}

    async def scenario():
        client = make_client()
        return client, await client.connect("10.0.0.5", 1001)

    client, result = run(scenario())
    assert result.success
    assert result.unit_id == 2
    assert client.unit_id == 2
    assert fake_meter.probed_units == [1, 2]
    assert all(r.unit != 3 for r in fake_meter.requests)


def test_probe_reuses_session(make_client, fake_meter, sessions):
    fake_meter.units = {3}

    async def scenario():
        return await make_client().connect("10.0.0.5", 1001)

    assert run(scenario()).unit_id == 3
    assert len(sessions) == 1
    assert fake_meter.opens == 1


def test_probe_reopens_after_socket_failure(make_client, fake_meter, sessions):
    fake_meter.units = {2}
    failures = [TransportError(ErrorKind.SOCKET_FAILURE, "reset by peer")]
    original = fake_meter.respond

    def flaky(request):
        if failures:
            raise failures.pop()
        return original(request)

    fake_meter.respond = flaky

    async def scenario():
        return await make_client().connect("10.0.0.5", 1001)

    result = run(scenario())
    assert result.success
    assert result.unit_id == 2
    assert fake_meter.opens == 2


def test_probe_exhausted(make_client, fake_meter, sessions):
    fake_meter.units = set()
    statuses = []

    async def scenario():
        client = make_client()
        client.events.on_status(statuses.append)
        return client, await client.connect("10.0.0.5", 1001)

    client, result = run(scenario())
    assert not result.success
    assert result.error_kind is ErrorKind.PROBE_EXHAUSTED
    assert client.state is ConnectionState.DISCONNECTED
    assert fake_meter.probed_units == [1, 2, 3]
    assert sessions[0].connected is False
    assert statuses[-1].connected is False


def test_connect_timeout_reported(make_client, fake_meter):
    fake_meter.open_error = TransportError(ErrorKind.CONNECT_TIMEOUT, "timeout")

    async def scenario():
        client = make_client()
        return client, await client.connect("10.0.0.5", 1001)

    client, result = run(scenario())
    assert not result.success
    assert result.error_kind is ErrorKind.CONNECT_TIMEOUT
    assert client.state is ConnectionState.DISCONNECTED


def test_connect_rejects_bad_address(make_client, sessions):
    async def scenario():
        return await make_client().connect("not-an-ip", 1001)

    result = run(scenario())
    assert not result.success
    assert result.error_kind is ErrorKind.INVALID_ADDRESS
    assert sessions == []


def test_validate_ip_address():
    assert validate_ip_address("10.0.0.5") is None
    assert validate_ip_address(" 192.168.1.10 ") is None
    assert validate_ip_address("") is not None
    assert validate_ip_address("300.1.1.1") is not None


def test_firmware_read_failure_still_connects(make_client, fake_meter):
    """Probe (1 register) works but the 2-register version read fails."""
    original = fake_meter.respond

    def no_float(request):
        if request[5] == 2:
            return b""
        return original(request)

    fake_meter.respond = no_float
    logs = []

    async def scenario():
        client = make_client()
        client.events.on_log(logs.append)
        return client, await client.connect("10.0.0.5", 1001)

    client, result = run(scenario())
    assert result.success
    assert result.firmware_version == 0.0
    assert client.connected
    assert any(e.level is LogLevel.WARNING for e in logs)


def test_connect_replaces_previous_session(make_client, sessions):
    async def scenario():
        client = make_client()
        await client.connect("10.0.0.5", 1001)
        await client.connect("10.0.0.6", 1001)
        return client

    client = run(scenario())
    assert len(sessions) == 2
    assert sessions[0].connected is False
    assert sessions[0].closes >= 1
    assert client.status()["host"] == "10.0.0.6"


def test_read_measurements(make_client, fake_meter):
    values = {68: 220.5, 70: 221.0, 72: 219.5, 74: 1.25, 76: 1.5, 78: 1.75}
    fake_meter.floats.update(values)

    async def scenario():
        client = make_client()
        await client.connect("10.0.0.5", 1001)
        return await client.read_measurements()

    snapshot = run(scenario())
    assert snapshot.voltages == (220.5, 221.0, 219.5)
    assert snapshot.currents == (1.25, 1.5, 1.75)
    assert snapshot.has_valid_voltages
    assert snapshot.display()["voltage_a"] == "220.5 V"
    assert snapshot.display()["current_c"] == "1.75 A"


def test_read_measurements_is_atomic(make_client, fake_meter):
    """The 4th read (current A) fails: no snapshot at all."""
    fake_meter.fail_addresses[ADDR_IRMS_A] = FrameError(ErrorKind.CRC_MISMATCH, "bad crc")

    async def scenario():
        client = make_client()
        await client.connect("10.0.0.5", 1001)
        return await client.read_measurements()

    with pytest.raises(MeterError) as exc:
        run(scenario())
    assert exc.value.kind is ErrorKind.CRC_MISMATCH
    reads = [r.address for r in fake_meter.requests if r.count == 2 and r.address != 0]
    assert reads == [68, 70, 72, 74]


def test_read_requires_connection(make_client):
    async def scenario():
        client = make_client()
        with pytest.raises(NotConnectedError):
            await client.read_measurements()
        with pytest.raises(NotConnectedError):
            await client.read_float(ADDR_URMS_AN)
        with pytest.raises(NotConnectedError):
            await client.read_holding_registers(0, 1)

    run(scenario())


def test_disconnect_twice(make_client):
    async def scenario():
        client = make_client()
        await client.connect("10.0.0.5", 1001)
        await client.disconnect()
        first = client.state
        await client.disconnect()
        return first, client.state

    first, second = run(scenario())
    assert first is ConnectionState.DISCONNECTED
    assert second is ConnectionState.DISCONNECTED


def test_disconnect_without_connect(make_client):
    async def scenario():
        client = make_client()
        await client.disconnect()
        return client

    assert run(scenario()).state is ConnectionState.DISCONNECTED


def test_status_events(make_client):
    statuses = []

    async def scenario():
        client = make_client()
        client.events.on_status(statuses.append)
        await client.connect("10.0.0.5", 1001)
        await client.disconnect()

    run(scenario())
    assert [s.connected for s in statuses] == [True, False]
    assert statuses[0].firmware_version == 1.5


def test_read_holding_registers(make_client, fake_meter):
    async def scenario():
        client = make_client()
        await client.connect("10.0.0.5", 1001)
        return await client.read_holding_registers(100, 3)

    assert run(scenario()) == [0, 0, 0]


def test_test_connection(make_client):
    async def scenario():
        client = make_client()
        before = await client.test_connection()
        await client.connect("10.0.0.5", 1001)
        return before, await client.test_connection()

    before, after = run(scenario())
    assert before == "Not connected"
    assert after.startswith("Response OK from unit 1")


def test_startup_log_entry(make_client):
    async def scenario():
        return make_client()

    client = run(scenario())
    assert client.events.recent_log()[0].message == "Meter client started"


def test_read_waiting_for_io_lock_after_disconnect(make_client):
    """A read queued behind another exchange fails cleanly if the session goes away."""

    async def scenario():
        client = make_client()
        await client.connect("10.0.0.5", 1001)
        await client._io_lock.acquire()
        read = asyncio.create_task(client.read_float(ADDR_URMS_AN))
        await asyncio.sleep(0)
        await client.disconnect()
        client._io_lock.release()
        with pytest.raises(NotConnectedError) as exc:
            await read
        return exc.value

    assert run(scenario()).kind is ErrorKind.NOT_CONNECTED
