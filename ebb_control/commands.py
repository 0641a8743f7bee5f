# ebb_control/commands.py
"""
Opcodes, argument specifications and the command encoder.

An EBB command is a short mnemonic followed by comma-separated decimal
fields, e.g. ``HM,2000,0,0``. The encoder here only renders; argument
checking is done against the per-opcode table before a command is built.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, IntEnum

from .errors import RangeValidationError


class Opcode(str, Enum):
    ANALOG_VALUES = "A"
    ANALOG_CONFIGURE = "AC"
    ENTER_BOOTLOADER = "BL"
    CONFIGURE_PINS = "C"
    CLEAR_STEPS = "CS"
    CONFIGURE_USER = "CU"
    ENABLE_MOTORS = "EM"
    EMERGENCY_STOP = "ES"
    HOME_MOVE = "HM"
    DIGITAL_INPUTS = "I"
    LOW_LEVEL_MOVE = "LM"
    LOW_LEVEL_TIMED = "LT"
    MEMORY_READ = "MR"
    MEMORY_WRITE = "MW"
    NODE_DECREMENT = "ND"
    NODE_INCREMENT = "NI"
    DIGITAL_OUTPUTS = "O"
    PULSE_CONFIGURE = "PC"
    PIN_DIRECTION = "PD"
    PULSE_GO = "PG"
    PIN_INPUT = "PI"
    PIN_OUTPUT = "PO"
    QUERY_BUTTON = "QB"
    QUERY_CURRENT = "QC"
    QUERY_MOTORS = "QE"
    QUERY_GENERAL = "QG"
    QUERY_LAYER = "QL"
    QUERY_MOTION = "QM"
    QUERY_NODE = "QN"
    QUERY_PEN = "QP"
    QUERY_SERVO_POWER = "QR"
    QUERY_STEPS = "QS"
    QUERY_NICKNAME = "QT"
    RESET = "R"
    REBOOT = "RB"
    SERVO_OUTPUT = "S2"
    STEPPER_SERVO_CONFIGURE = "SC"
    SET_ENGRAVER = "SE"
    SET_LAYER = "SL"
    STEPPER_MOVE = "SM"
    SET_NODE = "SN"
    SET_PEN = "SP"
    SERVO_POWER_TIMEOUT = "SR"
    SET_NICKNAME = "ST"
    TIMED_READ = "T"
    TOGGLE_PEN = "TP"
    VERSION = "V"
    MIXED_AXIS_MOVE = "XM"

    def __str__(self):
        return self.value


# Microstep modes as accepted by EM (EBB command reference, EM)
class StepMode(IntEnum):
    DISABLED = 0
    DIV16 = 1
    DIV8 = 2
    DIV4 = 3
    DIV2 = 4
    FULL = 5


# QE reports divisors rather than EM mode numbers
QE_DIVISOR_TO_MODE = {
    0: StepMode.DISABLED,
    1: StepMode.FULL,
    2: StepMode.DIV2,
    4: StepMode.DIV4,
    8: StepMode.DIV8,
    16: StepMode.DIV16,
}

PEN_DOWN = 0
PEN_UP = 1

SERVO_CHANNEL_JP2 = 3
SERVO_CHANNEL_PEN = 4
SERVO_CHANNEL_JP3 = 5
SERVO_CHANNEL_JP4 = 6

PORTS = "ABCDE"


# --- Argument specifications ---

class Arg(ABC):
    """One positional field of a command."""

    def __init__(self, name: str, optional: bool = False):
        self.name = name
        self.optional = optional

    @abstractmethod
    def check(self, opcode, value):
        """Return the normalized value or raise RangeValidationError."""


class IntArg(Arg):
    def __init__(self, name: str, low: int, high: int, optional: bool = False):
        super().__init__(name, optional)
        self.low = low
        self.high = high

    def check(self, opcode, value):
        if isinstance(value, bool) or not isinstance(value, int):
            raise RangeValidationError(opcode, f"{self.name} must be an integer, got {value!r}")
        if not self.low <= value <= self.high:
            raise RangeValidationError(
                opcode, f"{self.name} must be {self.low}..{self.high}, got {value}"
            )
        return int(value)


class FlagArg(Arg):
    def check(self, opcode, value):
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise RangeValidationError(opcode, f"{self.name} must be a boolean, got {value!r}")


class PortArg(Arg):
    def check(self, opcode, value):
        if not isinstance(value, str) or len(value) != 1 or value.upper() not in PORTS:
            raise RangeValidationError(opcode, f"{self.name} must be a port letter A-E, got {value!r}")
        return value.upper()


class TextArg(Arg):
    def __init__(self, name: str, max_length: int, optional: bool = False):
        super().__init__(name, optional)
        self.max_length = max_length

    def check(self, opcode, value):
        if not isinstance(value, str):
            raise RangeValidationError(opcode, f"{self.name} must be a string, got {value!r}")
        if len(value) > self.max_length:
            raise RangeValidationError(
                opcode, f"{self.name} must be at most {self.max_length} characters"
            )
        if "," in value or not (value.isascii() and value.isprintable()):
            raise RangeValidationError(
                opcode, f"{self.name} must be printable ASCII without commas, got {value!r}"
            )
        return value


def check_args(opcode, specs, values):
    """
    Validate positional values against their specs.

    Trailing optional arguments may be None, which drops them (and every
    argument after them) from the wire line. Returns the normalized tuple.
    """
    if len(values) > len(specs):
        raise RangeValidationError(opcode, f"takes at most {len(specs)} arguments, got {len(values)}")
    checked = []
    omitted = None
    for index, spec in enumerate(specs):
        value = values[index] if index < len(values) else None
        if value is None:
            if not spec.optional:
                raise RangeValidationError(opcode, f"{spec.name} is required")
            omitted = omitted or spec.name
            continue
        if omitted is not None:
            raise RangeValidationError(opcode, f"{spec.name} given but {omitted} omitted")
        checked.append(spec.check(opcode, value))
    return tuple(checked)


# --- Command and encoder ---

@dataclass(frozen=True)
class Command:
    """A single EBB command line. Arguments are already validated."""

    opcode: Opcode  # a plain mnemonic string for commands outside the table
    args: tuple = ()

    def __repr__(self) -> str:
        return f"Command({encode_command(self)!r})"


def _field(value) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(int(value))
    return str(value)


def encode_command(command: Command) -> str:
    """Render a command to its wire text, without the trailing CR."""
    return ",".join([str(command.opcode), *(_field(a) for a in command.args)])
