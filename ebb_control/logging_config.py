# ebb_control/logging_config.py

import logging
import sys

LOG_FILENAME = "ebb_session_log.txt"


def setup_logging(filename: str = LOG_FILENAME, console_level: int = logging.INFO):
    """
    Configures the root logger to output to a file and the console.
    """

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    if logger.handlers:
        return

    # --- Create a handler to write logs to a file ---
    file_handler = logging.FileHandler(filename, mode='w')
    file_handler.setLevel(logging.DEBUG)  # Log everything, including TX/RX traffic

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    logger.info(f"Logging configured. Detailed logs will be written to '{filename}'")
