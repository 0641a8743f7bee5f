# ebb_control/protocol.py
"""
The per-opcode protocol table.

One entry per EBB command: its argument specs, the framing rule that ends
its reply, the decoder for that reply, and its default deadline. Adding a
command is an edit to PROTOCOL, not new control flow in the driver.
"""
from dataclasses import dataclass
from typing import Callable

from . import config
from .commands import Arg, FlagArg, IntArg, Opcode, PortArg, TextArg
from .decoders import (
    decode_analog_values,
    decode_current,
    decode_digital_inputs,
    decode_flag,
    decode_general_status,
    decode_int,
    decode_int_pair,
    decode_memory,
    decode_motor_modes,
    decode_motor_status,
    decode_ok,
    decode_pin,
    decode_stop_info,
    decode_text,
    decode_version,
)
from .framing import FixedShape, FramingRule, NewlineOrPrefix, OkScan, QuietPeriod

INT32_MAX = 2**31 - 1
UINT32_MAX = 2**32 - 1
INT24_MAX = 2**24 - 1
UINT16_MAX = 2**16 - 1
MAX_STEP_RATE = 25000  # steps/s per axis


@dataclass(frozen=True)
class OpcodeSpec:
    args: tuple[Arg, ...]
    framing: FramingRule | None  # None: fire-and-forget, no reply is read
    decoder: Callable | None
    timeout_ms: int = config.DEFAULT_TIMEOUT_MS


def _byte(name, optional=False):
    return IntArg(name, 0, 255, optional)


def _pin(name="pin"):
    return IntArg(name, 0, 7)


_OK = OkScan()

PROTOCOL: dict[Opcode, OpcodeSpec] = {
    Opcode.ANALOG_VALUES: OpcodeSpec((), NewlineOrPrefix(b"A,", 2), decode_analog_values),
    Opcode.ANALOG_CONFIGURE: OpcodeSpec(
        (IntArg("channel", 0, 15), FlagArg("enable")), _OK, decode_ok),
    Opcode.ENTER_BOOTLOADER: OpcodeSpec((), None, None),
    Opcode.CONFIGURE_PINS: OpcodeSpec(
        tuple(_byte(f"tris{port}") for port in "ABCDE"), _OK, decode_ok),
    Opcode.CLEAR_STEPS: OpcodeSpec((), _OK, decode_ok),
    Opcode.CONFIGURE_USER: OpcodeSpec(
        (IntArg("param", 1, 255), IntArg("value", 0, 1)), _OK, decode_ok),
    Opcode.ENABLE_MOTORS: OpcodeSpec(
        (IntArg("mode1", 0, 5), IntArg("mode2", 0, 5)), _OK, decode_ok),
    Opcode.EMERGENCY_STOP: OpcodeSpec(
        (FlagArg("disable_motors", optional=True),), _OK, decode_stop_info),
    Opcode.HOME_MOVE: OpcodeSpec(
        (
            IntArg("step_frequency", 2, MAX_STEP_RATE),
            IntArg("position1", -INT32_MAX, INT32_MAX, optional=True),
            IntArg("position2", -INT32_MAX, INT32_MAX, optional=True),
        ),
        _OK, decode_ok),
    Opcode.DIGITAL_INPUTS: OpcodeSpec((), NewlineOrPrefix(b"I,", 21), decode_digital_inputs),
    Opcode.LOW_LEVEL_MOVE: OpcodeSpec(
        (
            IntArg("rate1", 0, INT32_MAX),
            IntArg("steps1", -INT32_MAX, INT32_MAX),
            IntArg("accel1", -INT32_MAX, INT32_MAX),
            IntArg("rate2", 0, INT32_MAX),
            IntArg("steps2", -INT32_MAX, INT32_MAX),
            IntArg("accel2", -INT32_MAX, INT32_MAX),
            IntArg("clear", 0, 3, optional=True),
        ),
        _OK, decode_ok),
    Opcode.LOW_LEVEL_TIMED: OpcodeSpec(
        (
            IntArg("intervals", 1, UINT32_MAX),
            IntArg("rate1", -INT32_MAX, INT32_MAX),
            IntArg("accel1", -INT32_MAX, INT32_MAX),
            IntArg("rate2", -INT32_MAX, INT32_MAX),
            IntArg("accel2", -INT32_MAX, INT32_MAX),
            IntArg("clear", 0, 3, optional=True),
        ),
        _OK, decode_ok),
    Opcode.MEMORY_READ: OpcodeSpec(
        (IntArg("address", 0, 4095),), NewlineOrPrefix(b"MR,", 4), decode_memory),
    Opcode.MEMORY_WRITE: OpcodeSpec(
        (IntArg("address", 0, 4095), _byte("value")), _OK, decode_ok),
    Opcode.NODE_DECREMENT: OpcodeSpec((), _OK, decode_ok),
    Opcode.NODE_INCREMENT: OpcodeSpec((), _OK, decode_ok),
    Opcode.DIGITAL_OUTPUTS: OpcodeSpec(
        (_byte("portA"),) + tuple(_byte(f"port{p}", optional=True) for p in "BCDE"),
        _OK, decode_ok),
    Opcode.PULSE_CONFIGURE: OpcodeSpec(
        (IntArg("length0", 0, UINT16_MAX), IntArg("period0", 0, UINT16_MAX))
        + tuple(
            IntArg(f"{field}{n}", 0, UINT16_MAX, optional=True)
            for n in range(1, 4) for field in ("length", "period")
        ),
        _OK, decode_ok),
    Opcode.PIN_DIRECTION: OpcodeSpec(
        (PortArg("port"), _pin(), IntArg("direction", 0, 1)), _OK, decode_ok),
    Opcode.PULSE_GO: OpcodeSpec((FlagArg("enable"),), _OK, decode_ok),
    Opcode.PIN_INPUT: OpcodeSpec(
        (PortArg("port"), _pin()), NewlineOrPrefix(b"PI,", 4), decode_pin),
    Opcode.PIN_OUTPUT: OpcodeSpec(
        (PortArg("port"), _pin(), FlagArg("value")), _OK, decode_ok),
    Opcode.QUERY_BUTTON: OpcodeSpec((), _OK, decode_flag, config.STATUS_TIMEOUT_MS),
    Opcode.QUERY_CURRENT: OpcodeSpec((), _OK, decode_current),
    Opcode.QUERY_MOTORS: OpcodeSpec((), _OK, decode_motor_modes),
    Opcode.QUERY_GENERAL: OpcodeSpec(
        (), FixedShape(2), decode_general_status, config.STATUS_TIMEOUT_MS),
    Opcode.QUERY_LAYER: OpcodeSpec((), _OK, decode_int),
    Opcode.QUERY_MOTION: OpcodeSpec(
        (), NewlineOrPrefix(b"QM,", 8), decode_motor_status, config.STATUS_TIMEOUT_MS),
    Opcode.QUERY_NODE: OpcodeSpec((), _OK, decode_int),
    Opcode.QUERY_PEN: OpcodeSpec((), _OK, decode_flag, config.STATUS_TIMEOUT_MS),
    Opcode.QUERY_SERVO_POWER: OpcodeSpec((), _OK, decode_flag, config.STATUS_TIMEOUT_MS),
    Opcode.QUERY_STEPS: OpcodeSpec((), _OK, decode_int_pair),
    Opcode.QUERY_NICKNAME: OpcodeSpec((), OkScan(anchored=True), decode_text),
    Opcode.RESET: OpcodeSpec((), _OK, decode_ok),
    Opcode.REBOOT: OpcodeSpec((), None, None),
    Opcode.SERVO_OUTPUT: OpcodeSpec(
        (
            IntArg("position", 0, UINT16_MAX),
            IntArg("channel", 0, 24),
            IntArg("rate", 0, UINT16_MAX, optional=True),
            IntArg("delay", 0, UINT16_MAX, optional=True),
        ),
        _OK, decode_ok),
    Opcode.STEPPER_SERVO_CONFIGURE: OpcodeSpec(
        (_byte("param"), IntArg("value", 0, UINT16_MAX)), _OK, decode_ok),
    Opcode.SET_ENGRAVER: OpcodeSpec(
        (
            FlagArg("state"),
            IntArg("power", 0, 1023, optional=True),
            FlagArg("use_motion_queue", optional=True),
        ),
        _OK, decode_ok),
    Opcode.SET_LAYER: OpcodeSpec((IntArg("layer", 0, 127),), _OK, decode_ok),
    Opcode.STEPPER_MOVE: OpcodeSpec(
        (
            IntArg("duration_ms", 1, INT24_MAX),
            IntArg("steps1", -INT24_MAX, INT24_MAX),
            IntArg("steps2", -INT24_MAX, INT24_MAX, optional=True),
        ),
        _OK, decode_ok),
    Opcode.SET_NODE: OpcodeSpec((IntArg("count", 0, UINT32_MAX),), _OK, decode_ok),
    Opcode.SET_PEN: OpcodeSpec(
        (
            IntArg("value", 0, 1),
            IntArg("duration_ms", 0, UINT16_MAX, optional=True),
            IntArg("portb_pin", 0, 7, optional=True),
        ),
        _OK, decode_ok),
    Opcode.SERVO_POWER_TIMEOUT: OpcodeSpec(
        (IntArg("timeout_ms", 0, UINT32_MAX), FlagArg("power_on", optional=True)),
        _OK, decode_ok),
    Opcode.SET_NICKNAME: OpcodeSpec((TextArg("nickname", 16),), _OK, decode_ok),
    Opcode.TIMED_READ: OpcodeSpec(
        (IntArg("duration_ms", 1, UINT16_MAX), IntArg("mode", 0, 1)), _OK, decode_ok),
    Opcode.TOGGLE_PEN: OpcodeSpec(
        (IntArg("duration_ms", 0, UINT16_MAX, optional=True),), _OK, decode_ok),
    Opcode.VERSION: OpcodeSpec((), QuietPeriod(), decode_version),
    Opcode.MIXED_AXIS_MOVE: OpcodeSpec(
        (
            IntArg("duration_ms", 1, INT24_MAX),
            IntArg("steps_a", -INT24_MAX, INT24_MAX),
            IntArg("steps_b", -INT24_MAX, INT24_MAX),
        ),
        _OK, decode_ok),
}


def lookup(opcode) -> OpcodeSpec:
    return PROTOCOL[Opcode(opcode)]
