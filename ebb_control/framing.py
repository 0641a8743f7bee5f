# ebb_control/framing.py
"""
Response framing for the EBB's line protocol.

The EBB does not use one terminator for every reply. Most commands end
with ``OK``, some answer with a single newline-terminated line, QG sends
two bare hex digits and V sends free text. Each opcode therefore carries
one of the rules below, and the FramingEngine keeps reading until that
rule says the reply is complete or the deadline passes.
"""
import logging
import time
from abc import ABC, abstractmethod

from . import config
from .commands import Command, encode_command
from .errors import ResponseTimeout
from .transport import Transport

log = logging.getLogger(__name__)

CR = b"\r"
TERMINATORS = b"\r\n"
HEX_DIGITS = b"0123456789ABCDEFabcdef"


class FramingRule(ABC):
    """Decides when an accumulated reply is complete."""

    @abstractmethod
    def is_complete(self, buffer: bytes, idle_s: float) -> bool:
        """
        Args:
            buffer: Every byte received for this exchange so far.
            idle_s: Seconds since the last byte arrived (or since the
                command was sent, when nothing has arrived yet).
        """


class OkScan(FramingRule):
    """Complete once ``OK`` shows up, or a full ``!`` error line arrived."""

    def __init__(self, anchored: bool = False):
        # Anchored scans only accept OK at the start of a line, for replies
        # whose payload is free text that may itself contain "OK".
        self.anchored = anchored

    def is_complete(self, buffer, idle_s):
        body = buffer.lstrip(TERMINATORS)
        if body.startswith(b"!") and b"\n" in body:
            return True
        if not self.anchored:
            return b"OK" in buffer
        index = body.find(b"OK")
        while index != -1:
            if index == 0 or body[index - 1:index] in (b"\r", b"\n"):
                return True
            index = body.find(b"OK", index + 1)
        return False

    def __repr__(self):
        return f"OkScan(anchored={self.anchored})"


class QuietPeriod(FramingRule):
    """Complete once bytes have arrived and then nothing for ``quiet_ms``."""

    def __init__(self, quiet_ms: float = config.QUIET_PERIOD_MS):
        if quiet_ms < 100:
            raise ValueError(f"quiet window must be at least 100 ms, got {quiet_ms}")
        self.quiet_s = quiet_ms / 1000.0

    def is_complete(self, buffer, idle_s):
        # A silent device must never look like a finished reply.
        return len(buffer) > 0 and idle_s >= self.quiet_s

    def __repr__(self):
        return f"QuietPeriod({self.quiet_s * 1000:g} ms)"


class FixedShape(FramingRule):
    """
    Complete once the current line holds ``count`` bytes of ``tokens``.

    Counting restarts after every line terminator, so a stray ``OK`` line
    from an earlier command cannot stand in for the expected bytes. A
    complete ``!`` error line also ends the exchange.
    """

    def __init__(self, count: int, tokens: bytes = HEX_DIGITS):
        self.count = count
        self.tokens = frozenset(tokens)

    def is_complete(self, buffer, idle_s):
        body = buffer.lstrip(TERMINATORS)
        if body.startswith(b"!"):
            return b"\n" in body
        line = body.replace(b"\r", b"\n").rsplit(b"\n", 1)[-1]
        return sum(1 for byte in line if byte in self.tokens) >= self.count

    def __repr__(self):
        return f"FixedShape({self.count})"


class NewlineOrPrefix(FramingRule):
    """
    Complete on a newline after payload, or after a quiet window once the
    buffer starts with the expected echo and is at least ``min_length`` long.
    """

    def __init__(self, prefix: bytes, min_length: int, quiet_ms: float = config.QUIET_PERIOD_MS):
        self.prefix = prefix
        self.min_length = min_length
        self.quiet_s = quiet_ms / 1000.0

    def is_complete(self, buffer, idle_s):
        body = buffer.lstrip(TERMINATORS)
        if b"\n" in body:
            return True
        return (
            body.startswith(self.prefix)
            and len(body) >= self.min_length
            and idle_s >= self.quiet_s
        )

    def __repr__(self):
        return f"NewlineOrPrefix({self.prefix!r}, {self.min_length})"


class FramingEngine:
    """
    Runs one request/response exchange at a time over a Transport.

    The EBB has no request IDs, so a late reply from a previous command
    would be taken as the answer to the next one. Every exchange therefore
    starts by draining whatever is still sitting in the input buffer.
    """

    def __init__(self, transport: Transport, poll_interval: float = config.POLL_INTERVAL_S):
        self.transport = transport
        self.poll_interval = poll_interval

    def drain(self) -> bytes:
        stale = bytearray()
        while self.transport.available() > 0:
            byte = self.transport.read_byte()
            if byte is None:
                break
            stale.append(byte)
        if stale.strip(TERMINATORS):
            log.warning(f"Discarded {len(stale)} stale bytes before exchange: {bytes(stale)!r}")
        elif stale:
            # Line endings left over from the previous reply
            log.debug(f"Discarded trailing terminators {bytes(stale)!r}")
        return bytes(stale)

    def send(self, command: Command) -> None:
        """Transmit a command without waiting for any reply."""
        self.drain()
        line = encode_command(command).encode("ascii") + CR
        self.transport.write(line)
        log.debug(f"TX > {line!r}")

    def send_and_receive(self, command: Command, rule: FramingRule, timeout_ms: float) -> bytes:
        """
        Send a command and collect its reply according to ``rule``.

        Raises:
            ResponseTimeout: if the rule is not satisfied within ``timeout_ms``.
                The exception carries whatever was received.
        """
        self.send(command)

        buffer = bytearray()
        start = time.monotonic()
        deadline = start + timeout_ms / 1000.0
        last_byte_at = start

        while True:
            got_data = False
            while self.transport.available() > 0:
                byte = self.transport.read_byte()
                if byte is None:
                    break
                got_data = True
                buffer.append(byte)
                last_byte_at = time.monotonic()
                if rule.is_complete(bytes(buffer), 0.0):
                    log.debug(f"RX < {bytes(buffer)!r}")
                    return bytes(buffer)
                if last_byte_at >= deadline:
                    break

            now = time.monotonic()
            if not got_data and rule.is_complete(bytes(buffer), now - last_byte_at):
                log.debug(f"RX < {bytes(buffer)!r}")
                return bytes(buffer)
            if now >= deadline:
                log.debug(f"RX < (timeout) {bytes(buffer)!r}")
                raise ResponseTimeout(command.opcode, bytes(buffer), timeout_ms)
            if not got_data:
                time.sleep(self.poll_interval)
