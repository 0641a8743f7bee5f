"""
EiBotBoard (EBB) Driver Package.

"""

from .driver import (
    EBB,
    ConnectionState,
)
from .commands import (
    Command,
    Opcode,
    StepMode,
    encode_command,
    PEN_DOWN,
    PEN_UP,
    SERVO_CHANNEL_PEN,
)
from .decoders import (
    CurrentInfo,
    FirmwareVersion,
    GeneralStatus,
    MotorStatus,
    StopInfo,
)
from .errors import (
    EBBError,
    PortUnavailable,
    NotConnected,
    RangeValidationError,
    ResponseTimeout,
    MalformedResponse,
    UnexpectedStatus,
)
from .cache import MotorConfigCache
from .framing import (
    FramingEngine,
    FixedShape,
    NewlineOrPrefix,
    OkScan,
    QuietPeriod,
)
from .policy import LenientEBB, or_default, with_default
from .transport import SerialTransport, list_ports, find_port
