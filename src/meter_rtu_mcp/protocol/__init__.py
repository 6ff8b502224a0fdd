"""Protocol layer: request building, response framing, register decoding."""

from .commands import FunctionCode, build_request, build_read_holding_registers
from .framing import FrameState, ResponseFrame, accumulate, validate
from .registers import decode_float, decode_registers
from .errors import ErrorKind, MeterError
