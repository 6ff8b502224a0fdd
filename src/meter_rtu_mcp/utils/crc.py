"""CRC-16/Modbus checksum used by every RTU frame.

Reflected polynomial 0xA001, initial value 0xFFFF, computed bit by bit.
The checksum travels on the wire low byte first.
"""

from __future__ import annotations

CRC_INIT = 0xFFFF
CRC_POLY = 0xA001


def crc16(data: bytes) -> int:
    """Compute the CRC-16/Modbus of ``data``.

    Args:
        data: Bytes to checksum.

    Returns:
        16-bit CRC value.
    """
    crc = CRC_INIT
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ CRC_POLY
            else:
                crc >>= 1
    return crc & 0xFFFF


def append_crc(data: bytes) -> bytes:
    """Return ``data`` followed by its CRC, low byte first."""
    return data + crc16(data).to_bytes(2, "little")


def verify_crc(frame: bytes) -> bool:
    """Check the trailing two CRC bytes of ``frame``.

    Frames shorter than 3 bytes cannot carry a checksum over any content
    and are reported as invalid rather than raising.
    """
    if len(frame) < 3:
        return False
    expected = int.from_bytes(frame[-2:], "little")
    return crc16(frame[:-2]) == expected
