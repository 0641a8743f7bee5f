# ebb_control/driver.py
"""
Driver for the EiBotBoard (EBB) stepper/servo controller.

The EBB speaks a half-duplex ASCII protocol over a USB serial port: one
command line in, one reply out. This module provides the EBB class with
one method per firmware command. Each method validates its arguments
against the protocol table (nothing is sent for bad input), runs the
exchange through the FramingEngine and decodes the reply.

Example:

    with EBB("/dev/ttyACM0") as ebb:
        ebb.enable_motors(StepMode.DIV16, StepMode.DIV16)
        ebb.move_stepper_steps(1000, 800, -800)
        print(ebb.get_step_positions())
"""
import logging
import threading
from enum import Enum

import serial

from . import config
from .cache import MotorConfigCache
from .commands import (
    PEN_DOWN,
    PEN_UP,
    Command,
    Opcode,
    StepMode,
    check_args,
)
from .decoders import CurrentInfo, FirmwareVersion, GeneralStatus, MotorStatus, StopInfo
from .errors import EBBError, NotConnected, PortUnavailable, RangeValidationError, UnexpectedStatus
from .framing import FramingEngine, FramingRule, OkScan
from .protocol import MAX_STEP_RATE, lookup
from .transport import SerialTransport

log = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


def _check_step_rate(opcode, duration_ms, *steps):
    if not isinstance(duration_ms, int) or duration_ms <= 0:
        return
    for count in steps:
        if isinstance(count, int) and abs(count) * 1000 > MAX_STEP_RATE * duration_ms:
            raise RangeValidationError(
                opcode,
                f"{abs(count)} steps in {duration_ms} ms exceeds {MAX_STEP_RATE} steps/s",
            )


# The Main Driver Class
class EBB:
    def __init__(
        self,
        port: str | None = None,
        baud: int = config.BAUD_RATE,
        timeout_ms: float | None = None,
        poll_interval: float = config.POLL_INTERVAL_S,
        legacy_board: bool = False,
        cache: MotorConfigCache | None = None,
        transport_factory=SerialTransport,
    ):
        """
        Args:
            port: Serial port of the EBB; defaults to config.SERIAL_PORT at open().
            baud: Baud rate handed to the transport factory.
            timeout_ms: Deadline for every exchange. None uses each opcode's
                default (3000 ms, 1000 ms for the status queries).
            poll_interval: Sleep between empty polls of the transport.
            legacy_board: Use the pre-v2.5 supply divider when decoding QC.
            cache: Motor configuration shadow; a fresh one per instance if None.
            transport_factory: Called as ``factory(port, baud)`` by open().
        """
        self.port = port
        self.baud = baud
        self.timeout_ms = timeout_ms
        self.poll_interval = poll_interval
        self.legacy_board = legacy_board
        self.cache = cache if cache is not None else MotorConfigCache()
        self.firmware: FirmwareVersion | None = None
        self.transport = None
        self._transport_factory = transport_factory
        self._engine: FramingEngine | None = None
        # One exchange (and its cache update) at a time
        self._lock = threading.RLock()

    # --- Connection lifecycle ---

    @property
    def state(self) -> ConnectionState:
        return ConnectionState.CONNECTED if self._engine is not None else ConnectionState.DISCONNECTED

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def open(self, port: str | None = None, probe: bool = True):
        """
        Opens the serial port and, with ``probe``, confirms an EBB answers V.

        Raises:
            PortUnavailable: if the port cannot be opened or nothing
                EBB-like answers the identity probe.
        """
        if self.connected:
            return
        port = port or self.port or config.SERIAL_PORT
        try:
            transport = self._transport_factory(port, self.baud)
        except (serial.SerialException, OSError) as e:
            raise PortUnavailable(f"Could not open {port}: {e}") from e
        self.port = port
        self.attach(transport)

        if probe:
            try:
                version = self.get_firmware_version()
            except EBBError as e:
                self.close()
                raise PortUnavailable(f"No EBB answered on {port}: {e}") from e
            log.info(f"Connected to EBB on {port}: {version}")

    def attach(self, transport):
        """Adopts an already-open transport and marks the driver connected."""
        with self._lock:
            self.transport = transport
            self._engine = FramingEngine(transport, self.poll_interval)

    def close(self):
        """Closes the transport. Safe to call when already closed."""
        with self._lock:
            transport = self.transport
            self.transport = None
            self._engine = None
            self.firmware = None
            if transport is not None:
                try:
                    transport.close()
                finally:
                    log.info(f"Disconnected from {self.port}.")

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Leave the machine de-energized with the pen raised
        if self.connected:
            try:
                self.disable_motors()
                self.set_pen_state(False)
            except EBBError as e:
                log.warning(f"Could not park the EBB on exit: {e}")
        self.close()

    # --- Exchange plumbing ---

    def _require_engine(self) -> FramingEngine:
        if self._engine is None:
            raise NotConnected("Not connected to an EBB. Call open() first.")
        return self._engine

    def _transact(self, opcode: Opcode, *args, timeout_ms=None, **decode_options):
        """Validate, send, frame and decode one command from the protocol table."""
        spec = lookup(opcode)
        with self._lock:
            engine = self._require_engine()
            command = Command(opcode, check_args(opcode, spec.args, args))
            if spec.framing is None:
                engine.send(command)
                return None
            if timeout_ms is None:
                timeout_ms = self.timeout_ms if self.timeout_ms is not None else spec.timeout_ms
            raw = engine.send_and_receive(command, spec.framing, timeout_ms)
            return spec.decoder(opcode, raw, **decode_options)

    def send_raw(self, line: str, rule: FramingRule | None = None, timeout_ms=None) -> bytes:
        """
        Sends a command that is not in the protocol table and returns the
        undecoded reply. ``rule`` defaults to scanning for OK.
        """
        opcode, *fields = line.rstrip("\r").split(",")
        with self._lock:
            engine = self._require_engine()
            return engine.send_and_receive(
                Command(opcode, tuple(fields)),
                rule or OkScan(),
                timeout_ms if timeout_ms is not None else (self.timeout_ms or config.DEFAULT_TIMEOUT_MS),
            )

    # --- Identity and board control ---

    def get_firmware_version(self, timeout_ms=None) -> FirmwareVersion:
        """Queries V. The result is also kept in ``self.firmware``."""
        version = self._transact(Opcode.VERSION, timeout_ms=timeout_ms)
        self.firmware = version
        return version

    def get_nickname(self, timeout_ms=None) -> str:
        return self._transact(Opcode.QUERY_NICKNAME, timeout_ms=timeout_ms)

    def set_nickname(self, nickname: str, timeout_ms=None):
        """Stores a nickname (up to 16 characters) in the EBB's flash."""
        self._transact(Opcode.SET_NICKNAME, nickname, timeout_ms=timeout_ms)

    def reset(self, timeout_ms=None):
        self._transact(Opcode.RESET, timeout_ms=timeout_ms)

    def reboot(self):
        """Reboots the EBB. It drops off USB, so the port is closed right after."""
        log.info("Rebooting EBB...")
        with self._lock:
            try:
                self._transact(Opcode.REBOOT)
            finally:
                self.close()

    def enter_bootloader(self):
        """Puts the EBB in bootloader mode; it re-enumerates as a different device."""
        log.info("Sending EBB to bootloader...")
        with self._lock:
            try:
                self._transact(Opcode.ENTER_BOOTLOADER)
            finally:
                self.close()

    def configure_user_option(self, param: int, value: int, timeout_ms=None):
        self._transact(Opcode.CONFIGURE_USER, param, value, timeout_ms=timeout_ms)

    def set_user_options(self, ok_responses: bool, param_check: bool, fifo_led: bool):
        """
        Sets the three CU options.

        Turning ``ok_responses`` off stops the EBB from sending OK, after which
        every OK-terminated command in this driver times out.
        """
        if not ok_responses:
            log.warning("Disabling OK responses; OK-terminated commands will time out.")
        self.configure_user_option(1, int(bool(ok_responses)))
        self.configure_user_option(2, int(bool(param_check)))
        self.configure_user_option(3, int(bool(fifo_led)))

    def configure_stepper_servo(self, param: int, value: int, timeout_ms=None):
        self._transact(Opcode.STEPPER_SERVO_CONFIGURE, param, value, timeout_ms=timeout_ms)

    # --- Motors ---

    def enable_motors(self, mode1, mode2, timeout_ms=None):
        """
        Enables, disables and sets the microstep mode of both motors (EM).

        Modes are StepMode values 0-5. The motor config cache is updated
        only after the EBB acknowledges.
        """
        log.info(f"Setting motor modes to {mode1}, {mode2}")
        with self._lock:
            self._transact(Opcode.ENABLE_MOTORS, mode1, mode2, timeout_ms=timeout_ms)
            self.cache.record(mode1, mode2)

    def disable_motors(self, timeout_ms=None):
        self.enable_motors(StepMode.DISABLED, StepMode.DISABLED, timeout_ms=timeout_ms)

    def get_motor_config(self, timeout_ms=None) -> tuple[StepMode, StepMode]:
        """
        Returns the microstep mode of both motors.

        Uses QE where the firmware has it. On older firmware, or when the
        EBB rejects QE, the answer comes from the motor config cache, which
        only reflects what this driver has sent and observed.
        """
        with self._lock:
            self._require_engine()
            number = self.firmware.number if self.firmware else None
            if number is not None and number < config.QE_MIN_FIRMWARE:
                log.debug(f"Firmware {number} has no QE; answering from cache")
                return self.cache.read()
            try:
                return self._transact(Opcode.QUERY_MOTORS, timeout_ms=timeout_ms)
            except UnexpectedStatus as e:
                log.warning(f"QE not supported ({e}); answering from cache")
                return self.cache.read()

    def get_motor_status(self, timeout_ms=None) -> MotorStatus:
        """Queries QM. Motors seen idle are marked DISABLED in the cache."""
        with self._lock:
            status = self._transact(Opcode.QUERY_MOTION, timeout_ms=timeout_ms)
            self.cache.narrow(status.motor1_moving, status.motor2_moving)
            return status

    def get_general_status(self, timeout_ms=None) -> GeneralStatus:
        return self._transact(Opcode.QUERY_GENERAL, timeout_ms=timeout_ms)

    def clear_step_position(self, timeout_ms=None):
        self._transact(Opcode.CLEAR_STEPS, timeout_ms=timeout_ms)

    def get_step_positions(self, timeout_ms=None) -> tuple[int, int]:
        return self._transact(Opcode.QUERY_STEPS, timeout_ms=timeout_ms)

    def emergency_stop(self, disable_motors: bool = False, timeout_ms=None) -> StopInfo:
        """Aborts the current move and flushes the FIFO; optionally de-energizes."""
        log.info("Emergency stop requested.")
        return self._transact(
            Opcode.EMERGENCY_STOP, True if disable_motors else None, timeout_ms=timeout_ms
        )

    def move_home(self, step_frequency: int, position1: int = 0, position2: int = 0, timeout_ms=None):
        """Moves to an absolute position relative to home (HM) at ``step_frequency`` Hz."""
        log.info(f"Moving to ({position1}, {position2}) at {step_frequency} steps/s")
        self._transact(Opcode.HOME_MOVE, step_frequency, position1, position2, timeout_ms=timeout_ms)

    def move_stepper_steps(self, duration_ms: int, steps1: int, steps2: int | None = None, timeout_ms=None):
        """Queues a straight-line move (SM) of the given steps over ``duration_ms``."""
        _check_step_rate(Opcode.STEPPER_MOVE, duration_ms, steps1, steps2)
        self._transact(Opcode.STEPPER_MOVE, duration_ms, steps1, steps2, timeout_ms=timeout_ms)

    def move_mixed_axis(self, duration_ms: int, steps_a: int, steps_b: int, timeout_ms=None):
        """Queues a mixed-axis (CoreXY/H-bot) move (XM)."""
        if isinstance(steps_a, int) and isinstance(steps_b, int):
            # Motor 1 turns A+B steps, motor 2 turns A-B
            _check_step_rate(Opcode.MIXED_AXIS_MOVE, duration_ms, steps_a + steps_b, steps_a - steps_b)
        self._transact(Opcode.MIXED_AXIS_MOVE, duration_ms, steps_a, steps_b, timeout_ms=timeout_ms)

    def move_low_level(self, rate1, steps1, accel1, rate2, steps2, accel2,
                       clear1: bool = False, clear2: bool = False, timeout_ms=None):
        """Low-level step-limited move (LM)."""
        clear = (2 if clear2 else 0) | (1 if clear1 else 0)
        self._transact(
            Opcode.LOW_LEVEL_MOVE, rate1, steps1, accel1, rate2, steps2, accel2, clear,
            timeout_ms=timeout_ms,
        )

    def move_timed(self, intervals, rate1, accel1, rate2, accel2,
                   clear1: bool = False, clear2: bool = False, timeout_ms=None):
        """Low-level time-limited move (LT)."""
        clear = (2 if clear2 else 0) | (1 if clear1 else 0)
        self._transact(
            Opcode.LOW_LEVEL_TIMED, intervals, rate1, accel1, rate2, accel2, clear,
            timeout_ms=timeout_ms,
        )

    def get_current_info(self, legacy_board: bool | None = None, timeout_ms=None) -> CurrentInfo:
        """Reads the motor current setting and supply voltage (QC)."""
        if legacy_board is None:
            legacy_board = self.legacy_board
        return self._transact(Opcode.QUERY_CURRENT, timeout_ms=timeout_ms, legacy_board=legacy_board)

    # --- Pen, servo and engraver ---

    def set_pen_state(self, down: bool, duration_ms: int | None = None,
                      portb_pin: int | None = None, timeout_ms=None):
        self._transact(
            Opcode.SET_PEN, PEN_DOWN if down else PEN_UP, duration_ms, portb_pin,
            timeout_ms=timeout_ms,
        )

    def toggle_pen(self, duration_ms: int | None = None, timeout_ms=None):
        self._transact(Opcode.TOGGLE_PEN, duration_ms, timeout_ms=timeout_ms)

    def is_pen_down(self, timeout_ms=None) -> bool:
        # QP answers 1 for pen up, 0 for pen down
        return not self._transact(Opcode.QUERY_PEN, timeout_ms=timeout_ms)

    def servo_output(self, position: int, channel: int, rate: int | None = None,
                     delay: int | None = None, timeout_ms=None):
        """Drives an RC servo output (S2). ``position`` is in 1/12 MHz units, 0 turns it off."""
        self._transact(Opcode.SERVO_OUTPUT, position, channel, rate, delay, timeout_ms=timeout_ms)

    def is_servo_powered(self, timeout_ms=None) -> bool:
        return self._transact(Opcode.QUERY_SERVO_POWER, timeout_ms=timeout_ms)

    def set_servo_power_timeout(self, timeout: int, power_on: bool | None = None, timeout_ms=None):
        """Sets how long (ms) the servo stays powered after its last move (SR)."""
        self._transact(Opcode.SERVO_POWER_TIMEOUT, timeout, power_on, timeout_ms=timeout_ms)

    def set_engraver(self, on: bool, power: int | None = None,
                     use_motion_queue: bool | None = None, timeout_ms=None):
        self._transact(Opcode.SET_ENGRAVER, on, power, use_motion_queue, timeout_ms=timeout_ms)

    def is_button_pressed(self, timeout_ms=None) -> bool:
        """True if the PRG button was pressed since the last QB."""
        return self._transact(Opcode.QUERY_BUTTON, timeout_ms=timeout_ms)

    # --- Layer and node counter ---

    def get_layer(self, timeout_ms=None) -> int:
        return self._transact(Opcode.QUERY_LAYER, timeout_ms=timeout_ms)

    def set_layer(self, layer: int, timeout_ms=None):
        self._transact(Opcode.SET_LAYER, layer, timeout_ms=timeout_ms)

    def get_node_count(self, timeout_ms=None) -> int:
        return self._transact(Opcode.QUERY_NODE, timeout_ms=timeout_ms)

    def set_node_count(self, count: int, timeout_ms=None):
        self._transact(Opcode.SET_NODE, count, timeout_ms=timeout_ms)

    def increment_node_count(self, timeout_ms=None):
        self._transact(Opcode.NODE_INCREMENT, timeout_ms=timeout_ms)

    def decrement_node_count(self, timeout_ms=None):
        self._transact(Opcode.NODE_DECREMENT, timeout_ms=timeout_ms)

    # --- GPIO, analog and memory ---

    def configure_pin_directions(self, tris, timeout_ms=None):
        """Writes TRISA..TRISE (C). ``tris`` holds exactly five bytes."""
        tris = tuple(tris)
        if len(tris) != 5:
            raise RangeValidationError(Opcode.CONFIGURE_PINS, f"expected 5 TRIS values, got {len(tris)}")
        self._transact(Opcode.CONFIGURE_PINS, *tris, timeout_ms=timeout_ms)

    def set_digital_outputs(self, outputs, timeout_ms=None):
        """Writes LATA and, if given, LATB..LATE (O)."""
        outputs = tuple(outputs)
        if not 1 <= len(outputs) <= 5:
            raise RangeValidationError(Opcode.DIGITAL_OUTPUTS, f"expected 1-5 port values, got {len(outputs)}")
        self._transact(Opcode.DIGITAL_OUTPUTS, *outputs, timeout_ms=timeout_ms)

    def get_digital_inputs(self, timeout_ms=None) -> tuple[int, int, int, int, int]:
        return self._transact(Opcode.DIGITAL_INPUTS, timeout_ms=timeout_ms)

    def set_pin_mode(self, port: str, pin: int, output: bool, timeout_ms=None):
        self._transact(Opcode.PIN_DIRECTION, port, pin, 0 if output else 1, timeout_ms=timeout_ms)

    def get_pin(self, port: str, pin: int, timeout_ms=None) -> bool:
        return self._transact(Opcode.PIN_INPUT, port, pin, timeout_ms=timeout_ms)

    def set_pin(self, port: str, pin: int, high: bool, timeout_ms=None):
        self._transact(Opcode.PIN_OUTPUT, port, pin, high, timeout_ms=timeout_ms)

    def configure_pulse(self, params, timeout_ms=None):
        """Sets up to four (length, period) pulse channels on RB0..RB3 (PC)."""
        params = tuple(params)
        if len(params) % 2 or not 2 <= len(params) <= 8:
            raise RangeValidationError(
                Opcode.PULSE_CONFIGURE, f"expected 1-4 length/period pairs, got {len(params)} values"
            )
        self._transact(Opcode.PULSE_CONFIGURE, *params, timeout_ms=timeout_ms)

    def pulse_start(self, enable: bool, timeout_ms=None):
        self._transact(Opcode.PULSE_GO, enable, timeout_ms=timeout_ms)

    def configure_analog_input(self, channel: int, enable: bool, timeout_ms=None):
        self._transact(Opcode.ANALOG_CONFIGURE, channel, enable, timeout_ms=timeout_ms)

    def get_analog_values(self, timeout_ms=None) -> dict[int, int]:
        """Reads every enabled analog channel (A) as ``{channel: 0..1023}``."""
        return self._transact(Opcode.ANALOG_VALUES, timeout_ms=timeout_ms)

    def timed_read(self, duration_ms: int, digital: bool = True, timeout_ms=None):
        """Starts periodic I (digital) or A (analog) reports every ``duration_ms`` (T)."""
        self._transact(Opcode.TIMED_READ, duration_ms, 0 if digital else 1, timeout_ms=timeout_ms)

    def read_memory(self, address: int, timeout_ms=None) -> int:
        return self._transact(Opcode.MEMORY_READ, address, timeout_ms=timeout_ms)

    def write_memory(self, address: int, value: int, timeout_ms=None):
        self._transact(Opcode.MEMORY_WRITE, address, value, timeout_ms=timeout_ms)
