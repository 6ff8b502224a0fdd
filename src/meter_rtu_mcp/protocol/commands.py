"""Function codes and request builders.

Request layout (8 bytes)::

    +------+----------+---------+---------+----------+----------+--------+--------+
    | Unit | Function | Addr Hi | Addr Lo | Count Hi | Count Lo | CRC Lo | CRC Hi |
    +------+----------+---------+---------+----------+----------+--------+--------+

Address and count are big-endian; the CRC is appended low byte first.
"""

from __future__ import annotations

from enum import IntEnum

from ..utils.crc import append_crc

REQUEST_SIZE = 8
EXCEPTION_FLAG = 0x80
MAX_READ_REGISTERS = 125


class FunctionCode(IntEnum):
    """Modbus function codes used by the meter."""

    READ_HOLDING_REGISTERS = 0x03


def build_request(unit: int, function: int, address: int, count: int) -> bytes:
    """Build a raw 8-byte RTU request.

    Args:
        unit: Unit address (0-255).
        function: Function code byte (0-255).
        address: Starting register address (0-65535).
        count: Register count (0-65535).

    Raises:
        ValueError: If a field does not fit its wire width.
    """
    if not 0 <= unit <= 0xFF:
        raise ValueError(f"Unit address must be 0-255, got {unit}")
    if not 0 <= function <= 0xFF:
        raise ValueError(f"Function code must be 0-255, got {function}")
    if not 0 <= address <= 0xFFFF:
        raise ValueError(f"Register address must be 0-65535, got {address}")
    if not 0 <= count <= 0xFFFF:
        raise ValueError(f"Register count must be 0-65535, got {count}")

    body = (
        bytes([unit, function])
        + address.to_bytes(2, "big")
        + count.to_bytes(2, "big")
    )
    return append_crc(body)


def build_read_holding_registers(unit: int, address: int, count: int) -> bytes:
    """Build a read-holding-registers (0x03) request.

    Args:
        unit: Unit address of the meter.
        address: First register to read.
        count: Number of registers, 1-125.
    """
    if not 1 <= count <= MAX_READ_REGISTERS:
        raise ValueError(
            f"Register count must be 1-{MAX_READ_REGISTERS}, got {count}"
        )
    return build_request(unit, FunctionCode.READ_HOLDING_REGISTERS, address, count)


def is_exception_function(function: int) -> bool:
    """True if a response function byte signals a Modbus exception."""
    return function >= EXCEPTION_FLAG
