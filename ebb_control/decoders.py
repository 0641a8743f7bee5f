# ebb_control/decoders.py
"""
Decoders that turn raw EBB replies into typed values.

Every decoder is a pure function ``(opcode, raw, **options)``. They only
raise; substituting a default for an unreadable reply is left to the
caller (see ``ebb_control.policy``).
"""
import re
from dataclasses import dataclass

from .commands import QE_DIVISOR_TO_MODE, StepMode
from .errors import MalformedResponse, UnexpectedStatus

_NUMERIC = re.compile(r"^[0-9,-]*$")
_HEX_BYTE = re.compile(r"^[0-9A-Fa-f]{2}$")
_VERSION = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")

# QC scaling (EBB command reference, QC)
ADC_MAX = 1023
ADC_REFERENCE_V = 3.3
CURRENT_SENSE_GAIN = 1.76
VPLUS_DIVISOR = 9.2
VPLUS_DIVISOR_LEGACY = 11.0
VPLUS_OFFSET_V = 0.3


# --- Result records ---

@dataclass(frozen=True)
class GeneralStatus:
    """QG status byte, one field per bit."""

    rb5: bool
    rb2: bool
    button_pressed: bool
    pen_up: bool
    command_executing: bool
    motor1_moving: bool
    motor2_moving: bool
    fifo_empty: bool


@dataclass(frozen=True)
class MotorStatus:
    command_executing: bool
    motor1_moving: bool
    motor2_moving: bool
    fifo_empty: bool | None  # None on firmware that omits the FIFO field


@dataclass(frozen=True)
class StopInfo:
    interrupted: bool
    fifo_steps: tuple[int, int] | None
    remaining_steps: tuple[int, int] | None


@dataclass(frozen=True)
class CurrentInfo:
    max_current: float  # amps, from the current-set potentiometer
    power_voltage: float  # volts at the motor supply input


@dataclass(frozen=True)
class FirmwareVersion:
    text: str
    number: tuple[int, int, int] | None

    def __str__(self):
        return self.text


# --- Helpers ---

def _text(opcode, raw: bytes) -> str:
    try:
        return raw.decode("ascii")
    except UnicodeDecodeError:
        raise MalformedResponse(opcode, raw, "non-ASCII bytes") from None


def _is_error_line(text: str) -> bool:
    return text.lstrip("\r\n").startswith("!")


def ok_payload(opcode, raw: bytes) -> str:
    """
    Return the payload that precedes the trailing OK marker, with line
    terminators removed.
    """
    text = _text(opcode, raw)
    if _is_error_line(text):
        raise UnexpectedStatus(opcode, raw, f"device error {text.strip()!r}")
    index = text.rfind("OK")
    if index == -1:
        raise UnexpectedStatus(opcode, raw, "missing OK")
    return text[:index].strip("\r\n")


def echo_fields(opcode, raw: bytes) -> list[str]:
    """Split a ``OP,field,...`` reply and check the leading echo."""
    text = _text(opcode, raw)
    if _is_error_line(text):
        raise UnexpectedStatus(opcode, raw, f"device error {text.strip()!r}")
    fields = text.strip("\r\n").split(",")
    if fields[0] != str(opcode):
        raise MalformedResponse(opcode, raw, f"expected '{opcode}' echo, got {fields[0]!r}")
    return fields[1:]


def _ints(opcode, raw, payload: str, count: int | None = None) -> list[int]:
    if not payload or not _NUMERIC.match(payload):
        raise MalformedResponse(opcode, raw, f"non-numeric payload {payload!r}")
    try:
        values = [int(field) for field in payload.split(",")]
    except ValueError:
        raise MalformedResponse(opcode, raw, f"bad integer field in {payload!r}") from None
    if count is not None and len(values) != count:
        raise MalformedResponse(opcode, raw, f"expected {count} fields, got {len(values)}")
    return values


def _flag(opcode, raw, value: int) -> bool:
    if value not in (0, 1):
        raise MalformedResponse(opcode, raw, f"expected 0 or 1, got {value}")
    return value == 1


# --- Decoders ---

def decode_ok(opcode, raw: bytes) -> None:
    """Plain acknowledgement: the reply must be OK with nothing else in it."""
    payload = ok_payload(opcode, raw)
    if payload.strip():
        raise UnexpectedStatus(opcode, raw, f"unexpected payload {payload!r} before OK")


def decode_int(opcode, raw: bytes) -> int:
    return _ints(opcode, raw, ok_payload(opcode, raw), 1)[0]


def decode_flag(opcode, raw: bytes) -> bool:
    return _flag(opcode, raw, decode_int(opcode, raw))


def decode_int_pair(opcode, raw: bytes) -> tuple[int, int]:
    first, second = _ints(opcode, raw, ok_payload(opcode, raw), 2)
    return first, second


def decode_text(opcode, raw: bytes) -> str:
    return ok_payload(opcode, raw).strip()


def decode_current(opcode, raw: bytes, legacy_board: bool = False) -> CurrentInfo:
    """
    QC replies with two 10-bit ADC readings: the current-set voltage on RA0
    and the divided-down motor supply voltage.
    """
    ra0, vplus = _ints(opcode, raw, ok_payload(opcode, raw), 2)
    for reading in (ra0, vplus):
        if not 0 <= reading <= ADC_MAX:
            raise MalformedResponse(opcode, raw, f"ADC reading {reading} outside 0..{ADC_MAX}")
    return current_from_adc(ra0, vplus, legacy_board)


def current_from_adc(ra0: int, vplus: int, legacy_board: bool = False) -> CurrentInfo:
    ra0_v = ADC_REFERENCE_V * ra0 / ADC_MAX
    vplus_v = ADC_REFERENCE_V * vplus / ADC_MAX
    divisor = VPLUS_DIVISOR_LEGACY if legacy_board else VPLUS_DIVISOR
    return CurrentInfo(
        max_current=ra0_v / CURRENT_SENSE_GAIN,
        power_voltage=vplus_v * divisor + VPLUS_OFFSET_V,
    )


def decode_motor_modes(opcode, raw: bytes) -> tuple[StepMode, StepMode]:
    divisors = _ints(opcode, raw, ok_payload(opcode, raw), 2)
    try:
        first, second = (QE_DIVISOR_TO_MODE[d] for d in divisors)
    except KeyError as e:
        raise MalformedResponse(opcode, raw, f"unknown microstep divisor {e.args[0]}") from None
    return first, second


def decode_stop_info(opcode, raw: bytes) -> StopInfo:
    values = _ints(opcode, raw, ok_payload(opcode, raw))
    if len(values) == 1:
        # Firmware before 2.2.7 only reports whether a move was interrupted
        return StopInfo(interrupted=_flag(opcode, raw, values[0]), fifo_steps=None, remaining_steps=None)
    if len(values) != 5:
        raise MalformedResponse(opcode, raw, f"expected 1 or 5 fields, got {len(values)}")
    return StopInfo(
        interrupted=_flag(opcode, raw, values[0]),
        fifo_steps=(values[1], values[2]),
        remaining_steps=(values[3], values[4]),
    )


def decode_general_status(opcode, raw: bytes) -> GeneralStatus:
    full = _text(opcode, raw)
    if _is_error_line(full):
        raise UnexpectedStatus(opcode, raw, f"device error {full.strip()!r}")
    # Only the last line is the status byte; earlier lines are strays
    lines = full.split()
    text = lines[-1] if lines else ""
    if not _HEX_BYTE.match(text):
        raise MalformedResponse(opcode, raw, "expected two hex digits")
    status = int(text, 16)

    def bit(n):
        return bool(status & (1 << n))

    return GeneralStatus(
        rb5=bit(7),
        rb2=bit(6),
        button_pressed=bit(5),
        pen_up=bit(4),
        command_executing=bit(3),
        motor1_moving=bit(2),
        motor2_moving=bit(1),
        fifo_empty=not bit(0),  # bit 0 is set while the FIFO holds a move
    )


def decode_motor_status(opcode, raw: bytes) -> MotorStatus:
    fields = echo_fields(opcode, raw)
    values = _ints(opcode, raw, ",".join(fields))
    if len(values) not in (3, 4):
        raise MalformedResponse(opcode, raw, f"expected 3 or 4 fields, got {len(values)}")
    return MotorStatus(
        command_executing=values[0] > 0,
        motor1_moving=_flag(opcode, raw, values[1]),
        motor2_moving=_flag(opcode, raw, values[2]),
        fifo_empty=(values[3] == 0) if len(values) == 4 else None,
    )


def decode_digital_inputs(opcode, raw: bytes) -> tuple[int, int, int, int, int]:
    values = _ints(opcode, raw, ",".join(echo_fields(opcode, raw)), 5)
    for value in values:
        if not 0 <= value <= 255:
            raise MalformedResponse(opcode, raw, f"port value {value} outside 0..255")
    return tuple(values)


def decode_memory(opcode, raw: bytes) -> int:
    value = _ints(opcode, raw, ",".join(echo_fields(opcode, raw)), 1)[0]
    if not 0 <= value <= 255:
        raise MalformedResponse(opcode, raw, f"byte value {value} outside 0..255")
    return value


def decode_pin(opcode, raw: bytes) -> bool:
    value = _ints(opcode, raw, ",".join(echo_fields(opcode, raw)), 1)[0]
    return _flag(opcode, raw, value)


def decode_analog_values(opcode, raw: bytes) -> dict[int, int]:
    """A replies ``A,CC:VVVV,CC:VVVV,...`` for every enabled channel."""
    values = {}
    for field in echo_fields(opcode, raw):
        if not field:
            continue
        channel, sep, reading = field.partition(":")
        if not sep or not channel.isdigit() or not reading.isdigit():
            raise MalformedResponse(opcode, raw, f"bad channel field {field!r}")
        values[int(channel)] = int(reading)
    return values


def decode_version(opcode, raw: bytes) -> FirmwareVersion:
    text = _text(opcode, raw).strip()
    if not text or _is_error_line(text):
        raise MalformedResponse(opcode, raw, "empty or error version reply")
    return FirmwareVersion(text=text, number=parse_firmware_version(text))


def parse_firmware_version(text: str) -> tuple[int, int, int] | None:
    """Pull ``(major, minor, patch)`` out of a V reply, e.g. '... Version 2.8.1'."""
    marker = text.rfind("Version")
    match = _VERSION.search(text, marker if marker != -1 else 0)
    if match is None:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch or 0)
