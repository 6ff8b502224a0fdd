"""MCP server entry point for the three-phase meter.

Exposes the device client as tools over the Model Context Protocol
using the official Python MCP SDK with stdio transport. While connected,
a background poller refreshes the latest snapshot once per second.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import DeviceClient
from .config import LOG_LEVEL, ClientConfig
from .poller import MeasurementPoller
from .protocol.errors import MeterError

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "meter-rtu",
    instructions="MCP server for a three-phase meter polled via Modbus RTU over TCP",
)

# Global client state
_client: DeviceClient | None = None
_poller: MeasurementPoller | None = None


def _get_client() -> DeviceClient:
    global _client
    if _client is None:
        _client = DeviceClient(ClientConfig.from_env())
    return _client


def _error(err: MeterError) -> dict[str, Any]:
    return {"error": str(err), "kind": err.kind.value}


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
async def connect(host: str, port: int | None = None) -> dict[str, Any]:
    """Connect to the meter and discover its unit address (1-3).

    Args:
        host: IP address of the RTU-over-TCP gateway.
        port: TCP port (default 1001).
    """
    global _poller
    client = _get_client()
    if _poller is not None:
        await _poller.stop()
        _poller = None

    result = await client.connect(host, port)
    if result.success:
        _poller = MeasurementPoller(client)
        _poller.start()
    return result.to_dict()


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Close the connection to the meter."""
    global _poller
    if _poller is not None:
        await _poller.stop()
        _poller = None
    await _get_client().disconnect()
    return {"disconnected": True}


@mcp.tool()
async def get_status() -> dict[str, Any]:
    """Connection state, adopted unit id and firmware version."""
    status = _get_client().status()
    status["polling"] = _poller is not None and _poller.running
    return status


@mcp.tool()
async def test_connection() -> dict[str, str]:
    """Send one probe read to the connected meter."""
    return {"result": await _get_client().test_connection()}


# ─── MEASUREMENT TOOLS ────────────────────────────────────────────────

@mcp.tool()
async def read_measurements() -> dict[str, Any]:
    """Read phase voltages and currents (A, B, C) as one snapshot."""
    try:
        snapshot = await _get_client().read_measurements()
    except MeterError as err:
        return _error(err)
    return snapshot.to_dict()


@mcp.tool()
async def get_latest_measurements() -> dict[str, Any]:
    """Return the most recent snapshot taken by the background poller."""
    if _poller is None or _poller.latest is None:
        return {"error": "No measurements polled yet"}
    return _poller.latest.to_dict()


@mcp.tool()
async def read_frequency() -> dict[str, Any]:
    """Read the phase A frequency in Hz."""
    try:
        return {"frequency_hz": await _get_client().read_frequency()}
    except MeterError as err:
        return _error(err)


@mcp.tool()
async def read_float(address: int) -> dict[str, Any]:
    """Read a float stored in two consecutive registers.

    Args:
        address: First of the two registers (0-65534).
    """
    if not 0 <= address <= 0xFFFE:
        return {"error": "Address must be 0-65534"}
    try:
        return {"address": address, "value": await _get_client().read_float(address)}
    except MeterError as err:
        return _error(err)


@mcp.tool()
async def read_registers(address: int, count: int = 1) -> dict[str, Any]:
    """Read raw holding registers.

    Args:
        address: Starting register (0-65535).
        count: Number of registers (1-125).
    """
    if not 0 <= address <= 0xFFFF:
        return {"error": "Address must be 0-65535"}
    if not 1 <= count <= 125:
        return {"error": "Count must be 1-125"}
    try:
        values = await _get_client().read_holding_registers(address, count)
    except MeterError as err:
        return _error(err)
    return {
        "address": address,
        "values": values,
        "hex": [f"0x{v:04X}" for v in values],
    }


@mcp.tool()
async def get_recent_log(limit: int = 50) -> dict[str, Any]:
    """Recent client log entries, oldest first.

    Args:
        limit: Maximum number of entries (default 50).
    """
    entries = _get_client().events.recent_log(limit)
    return {"entries": [e.to_dict() for e in entries]}


# ─── RESOURCES ────────────────────────────────────────────────────────

@mcp.resource("meter://registers")
def register_map() -> str:
    """Register addresses and their meaning."""
    return json.dumps(_get_client().registers.to_dict(), indent=2)


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=LOG_LEVEL)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
