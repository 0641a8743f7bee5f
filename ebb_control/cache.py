# ebb_control/cache.py
"""
Last-known microstep configuration of the two motors.

Only firmware 2.8.0 and later answers QE, so the driver shadows every EM
it sends here and answers get_motor_config() from this copy when the
device cannot. It is a best-effort record, not device state.
"""
import logging

from .commands import StepMode

log = logging.getLogger(__name__)


class MotorConfigCache:
    """Two StepMode slots, defaulting to the finest microstep mode."""

    def __init__(self, mode1: StepMode = StepMode.DIV16, mode2: StepMode = StepMode.DIV16):
        self._modes = [StepMode(mode1), StepMode(mode2)]

    def record(self, mode1, mode2):
        """Store the modes of a successful EM command."""
        self._modes = [StepMode(mode1), StepMode(mode2)]
        log.debug(f"Motor config cache recorded {self._modes[0].name}, {self._modes[1].name}")

    def narrow(self, motor1_active: bool, motor2_active: bool):
        """
        Mark motors observed as inactive as DISABLED.

        Never moves a slot away from DISABLED; only record() can do that.
        """
        for slot, active in enumerate((motor1_active, motor2_active)):
            if not active and self._modes[slot] != StepMode.DISABLED:
                log.debug(f"Motor config cache: motor {slot + 1} inactive, marking DISABLED")
                self._modes[slot] = StepMode.DISABLED

    def read(self) -> tuple[StepMode, StepMode]:
        return self._modes[0], self._modes[1]

    def __repr__(self):
        return f"MotorConfigCache({self._modes[0].name}, {self._modes[1].name})"
