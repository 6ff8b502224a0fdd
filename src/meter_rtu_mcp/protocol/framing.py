"""RTU response reassembly and validation.

Response layout (normal)::

    +------+----------+------------+------------------+--------+--------+
    | Unit | Function | Byte Count |  Data (N bytes)  | CRC Lo | CRC Hi |
    +------+----------+------------+------------------+--------+--------+

Response layout (exception, function byte has 0x80 set)::

    +------+----------+----------------+--------+--------+
    | Unit | Function | Exception Code | CRC Lo | CRC Hi |
    +------+----------+----------------+--------+--------+

Frames carry no delimiter: the end of a response is known only once the
byte-count field (or the exception flag) has been seen.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..utils.crc import verify_crc
from .commands import REQUEST_SIZE, FunctionCode, is_exception_function
from .errors import DeviceExceptionError, ErrorKind, FrameError

HEADER_SIZE = 3  # unit + function + byte count
CRC_SIZE = 2
MIN_FRAME_SIZE = HEADER_SIZE + CRC_SIZE
EXCEPTION_FRAME_SIZE = MIN_FRAME_SIZE


class FrameState(Enum):
    """Progress of a response being reassembled from the stream."""

    INCOMPLETE = "incomplete"
    COMPLETE = "complete"


@dataclass(frozen=True)
class Request:
    """A decoded request frame."""

    unit: int
    function: int
    address: int
    count: int


@dataclass(frozen=True)
class ResponseFrame:
    """A response that passed validation."""

    unit: int
    function: int
    byte_count: int
    data: bytes

    def __repr__(self) -> str:
        return (
            f"ResponseFrame(unit={self.unit}, function=0x{self.function:02X}, "
            f"data={self.data.hex(' ') if self.data else '(empty)'})"
        )


def parse_request(data: bytes) -> Request | None:
    """Parse an 8-byte request frame.

    Returns:
        A ``Request``, or ``None`` if the size or checksum is wrong.
    """
    if len(data) != REQUEST_SIZE or not verify_crc(data):
        return None
    return Request(
        unit=data[0],
        function=data[1],
        address=int.from_bytes(data[2:4], "big"),
        count=int.from_bytes(data[4:6], "big"),
    )


def expected_frame_length(
    buffer: bytes,
    expected_function: int = FunctionCode.READ_HOLDING_REGISTERS,
) -> int | None:
    """Total length of the response starting at ``buffer[0]``.

    Returns ``None`` while fewer than three bytes have arrived, or when the
    function byte is neither the expected code nor an exception code.
    """
    if len(buffer) < HEADER_SIZE:
        return None
    function = buffer[1]
    if function == expected_function:
        return buffer[2] + MIN_FRAME_SIZE
    if is_exception_function(function):
        return EXCEPTION_FRAME_SIZE
    return None


def accumulate(
    buffer: bytearray,
    chunk: bytes,
    expected_function: int = FunctionCode.READ_HOLDING_REGISTERS,
) -> FrameState:
    """Append ``chunk`` to ``buffer`` and report whether a frame is complete.

    Bytes past the expected length stay in ``buffer``; the caller decides
    what to do with them.
    """
    buffer.extend(chunk)
    expected = expected_frame_length(buffer, expected_function)
    if expected is not None and len(buffer) >= expected:
        return FrameState.COMPLETE
    return FrameState.INCOMPLETE


def validate(
    frame: bytes,
    expected_function: int,
    expected_register_count: int,
) -> ResponseFrame:
    """Check a reassembled response and return its decoded fields.

    Checks run in order: minimum length, CRC, function code, byte count.

    Raises:
        FrameError: With the kind of the first check that failed.
        DeviceExceptionError: If the device sent an exception response.
    """
    if not frame:
        raise FrameError(ErrorKind.NO_RESPONSE, "Device did not respond (timeout)")
    if len(frame) < MIN_FRAME_SIZE:
        raise FrameError(
            ErrorKind.FRAME_TOO_SHORT,
            f"Response too short: {len(frame)} bytes ({frame.hex(' ')})",
        )
    if not verify_crc(frame):
        raise FrameError(
            ErrorKind.CRC_MISMATCH, f"Invalid CRC in response ({frame.hex(' ')})"
        )

    function = frame[1]
    if function != expected_function:
        if is_exception_function(function):
            raise DeviceExceptionError(function, frame[2])
        raise FrameError(
            ErrorKind.UNEXPECTED_FUNCTION_CODE,
            f"Wrong function code: expected 0x{expected_function:02X}, "
            f"got 0x{function:02X}",
        )

    byte_count = frame[2]
    expected_bytes = 2 * expected_register_count
    if byte_count != expected_bytes:
        raise FrameError(
            ErrorKind.BYTE_COUNT_MISMATCH,
            f"Wrong byte count: expected {expected_bytes}, got {byte_count}",
        )
    data = bytes(frame[HEADER_SIZE:-CRC_SIZE])
    if len(data) != byte_count:
        raise FrameError(
            ErrorKind.BYTE_COUNT_MISMATCH,
            f"Byte count field says {byte_count} but {len(data)} data bytes arrived",
        )

    return ResponseFrame(
        unit=frame[0], function=function, byte_count=byte_count, data=data
    )
