"""Fixed register table of the meter.

Addresses are device constants. A different meter model gets its own
``RegisterMap`` instead of edits to the codec or client.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Quantity(str, Enum):
    """Physical meaning of a register."""

    VERSION = "version"
    FREQUENCY = "frequency"
    VOLTAGE = "voltage"
    CURRENT = "current"


@dataclass(frozen=True)
class FloatRegister:
    """A float stored across registers ``address`` and ``address + 1``."""

    name: str
    address: int
    quantity: Quantity
    unit: str = ""
    phase: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "address": self.address,
            "registers": [self.address, self.address + 1],
            "quantity": self.quantity.value,
            "unit": self.unit,
            "phase": self.phase,
        }


@dataclass(frozen=True)
class RegisterMap:
    """Register roles for one meter model."""

    version: FloatRegister
    frequency_a: FloatRegister
    voltage_a: FloatRegister
    voltage_b: FloatRegister
    voltage_c: FloatRegister
    current_a: FloatRegister
    current_b: FloatRegister
    current_c: FloatRegister

    @property
    def probe_address(self) -> int:
        """Register read as the liveness probe during unit discovery."""
        return self.version.address

    @property
    def measurements(self) -> tuple[FloatRegister, ...]:
        """The six registers of a snapshot, in read order."""
        return (
            self.voltage_a,
            self.voltage_b,
            self.voltage_c,
            self.current_a,
            self.current_b,
            self.current_c,
        )

    def all(self) -> tuple[FloatRegister, ...]:
        return (self.version, self.frequency_a) + self.measurements

    def to_dict(self) -> dict:
        return {reg.name: reg.to_dict() for reg in self.all()}


ADDR_VERSION = 0
ADDR_FREQ_A = 66
ADDR_URMS_AN = 68
ADDR_URMS_BN = 70
ADDR_URMS_CN = 72
ADDR_IRMS_A = 74
ADDR_IRMS_B = 76
ADDR_IRMS_C = 78

DEFAULT_REGISTER_MAP = RegisterMap(
    version=FloatRegister("version", ADDR_VERSION, Quantity.VERSION),
    frequency_a=FloatRegister("freq_a", ADDR_FREQ_A, Quantity.FREQUENCY, "Hz", "A"),
    voltage_a=FloatRegister("voltage_a", ADDR_URMS_AN, Quantity.VOLTAGE, "V", "A"),
    voltage_b=FloatRegister("voltage_b", ADDR_URMS_BN, Quantity.VOLTAGE, "V", "B"),
    voltage_c=FloatRegister("voltage_c", ADDR_URMS_CN, Quantity.VOLTAGE, "V", "C"),
    current_a=FloatRegister("current_a", ADDR_IRMS_A, Quantity.CURRENT, "A", "A"),
    current_b=FloatRegister("current_b", ADDR_IRMS_B, Quantity.CURRENT, "A", "B"),
    current_c=FloatRegister("current_c", ADDR_IRMS_C, Quantity.CURRENT, "A", "C"),
)
