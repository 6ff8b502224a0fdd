"""Data models: register table and measurement value objects."""

from .registers import DEFAULT_REGISTER_MAP, FloatRegister, Quantity, RegisterMap
from .measurement import ConnectResult, MeasurementSnapshot
