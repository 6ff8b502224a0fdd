"""Error kinds raised by the protocol, transport and client layers.

Every exception carries an :class:`ErrorKind` so callers can branch on
``err.kind`` instead of on the exception class.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers."""

    CONNECT_TIMEOUT = "connect_timeout"
    SOCKET_FAILURE = "socket_failure"
    NO_RESPONSE = "no_response"
    FRAME_TOO_SHORT = "frame_too_short"
    CRC_MISMATCH = "crc_mismatch"
    UNEXPECTED_FUNCTION_CODE = "unexpected_function_code"
    BYTE_COUNT_MISMATCH = "byte_count_mismatch"
    DEVICE_EXCEPTION = "device_exception"
    NOT_CONNECTED = "not_connected"
    PROBE_EXHAUSTED = "probe_exhausted"
    INVALID_ADDRESS = "invalid_address"


# Kinds that mean the TCP session can no longer be trusted.
CONNECTION_LOST_KINDS = frozenset({ErrorKind.NOT_CONNECTED, ErrorKind.SOCKET_FAILURE})


class MeterError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def connection_lost(self) -> bool:
        return self.kind in CONNECTION_LOST_KINDS


class TransportError(MeterError):
    """TCP connect, write or read failure."""


class FrameError(MeterError):
    """A received frame failed structural or checksum validation."""


class DeviceExceptionError(FrameError):
    """The device answered with a Modbus exception response."""

    def __init__(self, function: int, exception_code: int) -> None:
        super().__init__(
            ErrorKind.DEVICE_EXCEPTION,
            f"Device exception 0x{exception_code:02X} "
            f"for function 0x{function & 0x7F:02X}",
        )
        self.function = function
        self.exception_code = exception_code


class NotConnectedError(MeterError):
    """An operation needed an open session and there was none."""

    def __init__(self, message: str = "Client is not connected") -> None:
        super().__init__(ErrorKind.NOT_CONNECTED, message)


class ProbeExhaustedError(MeterError):
    """No candidate unit address answered the liveness probe."""

    def __init__(self, unit_ids: tuple[int, ...]) -> None:
        ids = ", ".join(str(u) for u in unit_ids)
        super().__init__(
            ErrorKind.PROBE_EXHAUSTED, f"No response from unit ids {ids}"
        )
        self.unit_ids = unit_ids
