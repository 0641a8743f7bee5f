"""Shared fixtures: a scripted stand-in for the EBB's serial port."""

from collections import deque

import pytest

from ebb_control import EBB


class FakeTransport:
    """
    Records every write and plays back queued replies.

    A reply queued with ``queue_reply`` becomes readable only after the next
    write, one chunk per ``available()`` poll, like a USB CDC port
    delivering a reply in fragments.
    """

    def __init__(self):
        self.writes = []
        self.rx = bytearray()
        self.replies = deque()
        self.pending = deque()
        self.closed = False

    def queue_reply(self, *chunks: bytes):
        self.replies.append(chunks)

    def preload(self, data: bytes):
        """Bytes already waiting before the next command, e.g. a late reply."""
        self.rx.extend(data)

    def write(self, data: bytes) -> None:
        self.writes.append(bytes(data))
        if self.replies:
            self.pending.extend(self.replies.popleft())

    def available(self) -> int:
        if not self.rx and self.pending:
            self.rx.extend(self.pending.popleft())
        return len(self.rx)

    def read_byte(self):
        if not self.rx:
            return None
        byte = self.rx[0]
        del self.rx[0]
        return byte

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def ebb(transport):
    device = EBB(transport_factory=lambda port, baud: transport, poll_interval=0.001)
    device.open("/dev/ttyFAKE", probe=False)
    yield device
    device.close()
