# ebb_control/policy.py
"""
Opt-in fallbacks for callers that prefer a default value over an error.

The driver itself always raises. A UI that polls the pen state every frame
may rather show "pen up" than stop on one garbled reply; it can wrap the
call here and the substitution is logged, never silent.
"""
import functools
import logging

from .errors import MalformedResponse, ResponseTimeout, UnexpectedStatus

log = logging.getLogger(__name__)

# Communication faults only; caller misuse (RangeValidationError,
# NotConnected) still propagates.
RESPONSE_ERRORS = (ResponseTimeout, MalformedResponse, UnexpectedStatus)


def or_default(call, default, *args, errors=RESPONSE_ERRORS, **kwargs):
    """Return ``call(*args, **kwargs)``, or ``default`` if it raises one of ``errors``."""
    try:
        return call(*args, **kwargs)
    except errors as e:
        name = getattr(call, "__name__", repr(call))
        log.warning(f"{name} failed ({e}); using default {default!r}")
        return default


def with_default(default, errors=RESPONSE_ERRORS):
    """Decorator form of or_default()."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return or_default(func, default, *args, errors=errors, **kwargs)
        return wrapper
    return decorator


# Defaults matching a parked, idle machine
QUERY_DEFAULTS = {
    "is_pen_down": False,
    "is_button_pressed": False,
    "is_servo_powered": False,
    "get_layer": 0,
    "get_node_count": 0,
    "get_step_positions": (0, 0),
    "get_nickname": "",
}


class LenientEBB:
    """
    Wraps an EBB so the queries in ``defaults`` return a default on
    communication errors. Every other attribute passes straight through.
    """

    def __init__(self, ebb, defaults=None, errors=RESPONSE_ERRORS):
        self.ebb = ebb
        self.defaults = dict(QUERY_DEFAULTS if defaults is None else defaults)
        self.errors = errors

    def __getattr__(self, name):
        attr = getattr(self.ebb, name)
        if name in self.defaults and callable(attr):
            return with_default(self.defaults[name], self.errors)(attr)
        return attr
