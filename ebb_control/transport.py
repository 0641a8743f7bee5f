# ebb_control/transport.py
"""
Byte transport for the EBB and serial port discovery.

The driver only needs four things from a transport: write bytes, ask how
many bytes are waiting, read one byte without blocking, and close. Anything
with those methods can stand in for SerialTransport (the tests use a
scripted fake).
"""
import logging
from dataclasses import dataclass
from typing import Protocol

import serial
from serial.tools import list_ports as serial_list_ports

from . import config

log = logging.getLogger(__name__)


class Transport(Protocol):
    def write(self, data: bytes) -> None: ...

    def available(self) -> int: ...

    def read_byte(self) -> int | None: ...

    def close(self) -> None: ...


class SerialTransport:
    """pyserial port opened non-blocking; reads never wait."""

    def __init__(self, port: str, baud: int = config.BAUD_RATE):
        self.port = port
        self.baud = baud
        # Raises serial.SerialException if the port cannot be opened
        self.ser = serial.Serial(port, baud, timeout=0, write_timeout=1.0)
        log.info(f"Serial port {port} opened.")

    @property
    def is_open(self) -> bool:
        return self.ser is not None and self.ser.is_open

    def write(self, data: bytes) -> None:
        self.ser.write(data)
        self.ser.flush()

    def available(self) -> int:
        return self.ser.in_waiting

    def read_byte(self) -> int | None:
        data = self.ser.read(1)
        return data[0] if data else None

    def close(self) -> None:
        if self.is_open:
            self.ser.close()
            log.info(f"Serial port {self.port} closed.")


@dataclass
class PortInfo:
    device: str
    description: str
    hwid: str
    vid: int | None
    pid: int | None


def _is_ebb(port) -> bool:
    if port.vid == config.EBB_VID and port.pid == config.EBB_PID:
        return True
    return "EiBotBoard" in (port.description or "") or "EiBotBoard" in (port.product or "")


def list_ports(all_ports: bool = False) -> list[PortInfo]:
    """List serial ports that look like an EBB (or every port with ``all_ports``)."""
    found = []
    for port in serial_list_ports.comports():
        if all_ports or _is_ebb(port):
            found.append(
                PortInfo(
                    device=port.device,
                    description=port.description,
                    hwid=port.hwid,
                    vid=port.vid,
                    pid=port.pid,
                )
            )
    return found


def find_port() -> str | None:
    """Return the first port that looks like an EBB, or None."""
    ports = list_ports()
    return ports[0].device if ports else None
