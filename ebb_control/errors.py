# ebb_control/errors.py
"""
Exception hierarchy for the EBB driver.

Every failure the driver can report derives from EBBError, so callers that
only care whether an exchange worked can catch the base class. Response
errors keep the opcode and the offending bytes for diagnostics.
"""


class EBBError(Exception):
    """Base exception for all EBB-related errors."""
    pass


class PortUnavailable(EBBError):
    """Raised when the serial port cannot be opened or no EBB answers on it."""
    pass


class NotConnected(EBBError):
    """Raised when an operation is attempted without an open connection."""
    pass


class RangeValidationError(EBBError, ValueError):
    """Raised when an argument is outside its documented range. Nothing is sent."""

    def __init__(self, opcode, message):
        self.opcode = opcode
        super().__init__(f"{opcode}: {message}")


class ResponseTimeout(EBBError, TimeoutError):
    """Raised when the reply is not complete before the deadline."""

    def __init__(self, opcode, partial: bytes, timeout_ms: float):
        self.opcode = opcode
        self.partial = partial
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Timeout: '{opcode}' got no complete reply within {timeout_ms:g} ms "
            f"(received {partial!r})"
        )


class MalformedResponse(EBBError):
    """Raised when the reply bytes do not have the shape expected for the opcode."""

    def __init__(self, opcode, raw, reason: str):
        self.opcode = opcode
        self.raw = raw
        super().__init__(f"Malformed '{opcode}' reply {raw!r}: {reason}")


class UnexpectedStatus(EBBError):
    """Raised when a reply is readable but carries the wrong status, e.g. no OK."""

    def __init__(self, opcode, raw, reason: str = "expected OK"):
        self.opcode = opcode
        self.raw = raw
        super().__init__(f"Unexpected status for '{opcode}' {raw!r}: {reason}")
