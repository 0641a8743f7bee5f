# ebb_control/config.py
import os

# --- Serial Port Configuration ---
SERIAL_PORT = os.environ.get("EBB_SERIAL_PORT", "/dev/ttyACM0")
BAUD_RATE = 115200  # ignored by the EBB's USB CDC port, kept for pyserial

# --- USB identity of the EiBotBoard (used for port discovery) ---
EBB_VID = 0x04D8
EBB_PID = 0xFD92

# --- Exchange timing ---
DEFAULT_TIMEOUT_MS = 3000
STATUS_TIMEOUT_MS = 1000  # QG/QM/QB/QR/QP, polled by interactive callers
POLL_INTERVAL_S = 0.001
QUIET_PERIOD_MS = 100

# First firmware release that answers QE
QE_MIN_FIRMWARE = (2, 8, 0)
