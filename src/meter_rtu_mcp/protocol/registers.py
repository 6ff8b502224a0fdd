"""Register payload decoding.

Each register is a big-endian 16-bit word. Floats span two registers
``addr`` (low word) and ``addr + 1`` (high word), and the meter swaps the
two bytes of each word. For a payload ``b0 b1 b2 b3`` the IEEE-754
little-endian bytes are ``b1 b0 b3 b2``.
"""

from __future__ import annotations

import struct

FLOAT_REGISTERS = 2
FLOAT_SIZE = 4


def decode_registers(payload: bytes, count: int | None = None) -> list[int]:
    """Split a payload into unsigned 16-bit register values.

    Args:
        payload: Data bytes of a read response.
        count: Number of registers expected. Defaults to ``len(payload) // 2``.

    Raises:
        ValueError: If the payload holds fewer than ``count`` registers.
    """
    if count is None:
        count = len(payload) // 2
    if len(payload) < 2 * count:
        raise ValueError(
            f"Payload has {len(payload)} bytes, need {2 * count} for {count} registers"
        )
    return [(payload[2 * i] << 8) | payload[2 * i + 1] for i in range(count)]


def encode_registers(values: list[int]) -> bytes:
    """Pack register values into a big-endian payload."""
    out = bytearray()
    for value in values:
        if not 0 <= value <= 0xFFFF:
            raise ValueError(f"Register value must be 0-65535, got {value}")
        out += value.to_bytes(2, "big")
    return bytes(out)


def decode_float(payload: bytes) -> float:
    """Decode a float from the four data bytes of a two-register read.

    Raises:
        ValueError: If ``payload`` is not exactly 4 bytes.
    """
    if len(payload) != FLOAT_SIZE:
        raise ValueError(f"Float payload must be {FLOAT_SIZE} bytes, got {len(payload)}")
    raw = bytes([payload[1], payload[0], payload[3], payload[2]])
    return struct.unpack("<f", raw)[0]


def encode_float(value: float) -> bytes:
    """Encode ``value`` as the 4 payload bytes the meter would send."""
    raw = struct.pack("<f", value)
    return bytes([raw[1], raw[0], raw[3], raw[2]])


def float_to_registers(value: float) -> tuple[int, int]:
    """Register pair ``(addr, addr + 1)`` holding ``value`` in meter order."""
    low, high = decode_registers(encode_float(value), FLOAT_REGISTERS)
    return low, high
