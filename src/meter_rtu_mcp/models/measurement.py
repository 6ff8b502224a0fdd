"""Value objects handed to callers of the device client."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..protocol.errors import ErrorKind


@dataclass(frozen=True)
class MeasurementSnapshot:
    """Phase voltages and currents captured in one polling cycle."""

    voltage_a: float
    voltage_b: float
    voltage_c: float
    current_a: float
    current_b: float
    current_c: float
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def has_valid_voltages(self) -> bool:
        return self.voltage_a > 0 or self.voltage_b > 0 or self.voltage_c > 0

    @property
    def voltages(self) -> tuple[float, float, float]:
        return (self.voltage_a, self.voltage_b, self.voltage_c)

    @property
    def currents(self) -> tuple[float, float, float]:
        return (self.current_a, self.current_b, self.current_c)

    def display(self) -> dict[str, str]:
        """Formatted values, volts with one decimal and amps with two."""
        out = {}
        for phase, volts, amps in zip("abc", self.voltages, self.currents):
            out[f"voltage_{phase}"] = f"{volts:.1f} V"
            out[f"current_{phase}"] = f"{amps:.2f} A"
        return out

    def to_dict(self) -> dict:
        return {
            "voltage_a": self.voltage_a,
            "voltage_b": self.voltage_b,
            "voltage_c": self.voltage_c,
            "current_a": self.current_a,
            "current_b": self.current_b,
            "current_c": self.current_c,
            "timestamp": self.timestamp.isoformat(),
            "display": self.display(),
        }


@dataclass(frozen=True)
class ConnectResult:
    """Outcome of :meth:`DeviceClient.connect`."""

    success: bool
    message: str
    firmware_version: float = 0.0
    unit_id: int | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def ok(cls, message: str, firmware_version: float, unit_id: int) -> ConnectResult:
        return cls(True, message, firmware_version, unit_id)

    @classmethod
    def failure(cls, message: str, kind: ErrorKind) -> ConnectResult:
        return cls(False, message, error_kind=kind)

    def to_dict(self) -> dict:
        result = {
            "success": self.success,
            "message": self.message,
            "firmware_version": self.firmware_version,
        }
        if self.unit_id is not None:
            result["unit_id"] = self.unit_id
        if self.error_kind is not None:
            result["error"] = self.error_kind.value
        return result
