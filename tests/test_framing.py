"""Tests for framing rules and the FramingEngine exchange loop."""

import logging
import time

import pytest

from ebb_control.commands import Command, Opcode
from ebb_control.errors import ResponseTimeout
from ebb_control.framing import (
    FixedShape,
    FramingEngine,
    FramingRule,
    NewlineOrPrefix,
    OkScan,
    QuietPeriod,
)

POLL = 0.001


# --- Rules ---

def test_ok_scan_waits_for_marker():
    rule = OkScan()
    assert not rule.is_complete(b"0,0\r\n", 0.0)
    assert not rule.is_complete(b"0,0\r\nO", 0.0)
    assert rule.is_complete(b"0,0\r\nOK", 0.0)
    assert rule.is_complete(b"0,0OK", 0.0)


def test_ok_scan_completes_on_error_line():
    rule = OkScan()
    assert not rule.is_complete(b"!8 Err: Unknown command", 0.0)
    assert rule.is_complete(b"!8 Err: Unknown command 'QE:51'\r\n", 0.0)


def test_anchored_ok_scan_ignores_ok_inside_text():
    rule = OkScan(anchored=True)
    assert not rule.is_complete(b"BOOKPLOT", 0.0)
    assert not rule.is_complete(b"BOOKPLOT\r\n", 0.0)
    assert rule.is_complete(b"BOOKPLOT\r\nOK", 0.0)
    assert rule.is_complete(b"OK", 0.0)


def test_quiet_period_needs_a_byte_first():
    rule = QuietPeriod(100)
    assert not rule.is_complete(b"", 10.0)
    assert not rule.is_complete(b"EBB", 0.05)
    assert rule.is_complete(b"EBB", 0.1)


def test_quiet_period_minimum_window():
    with pytest.raises(ValueError):
        QuietPeriod(50)


def test_fixed_shape_skips_terminators():
    rule = FixedShape(2)
    assert not rule.is_complete(b"\r\n3", 0.0)
    assert rule.is_complete(b"\r\n3E", 0.0)


def test_newline_or_prefix():
    rule = NewlineOrPrefix(b"QM,", 8, quiet_ms=100)
    assert not rule.is_complete(b"\r\n", 0.0)
    assert rule.is_complete(b"QM,0,0,0,0\n", 0.0)
    assert not rule.is_complete(b"QM,0,0,0", 0.05)
    assert rule.is_complete(b"QM,0,0,0", 0.1)
    assert not rule.is_complete(b"XX,0,0,0", 0.5)
    assert not rule.is_complete(b"QM,0", 0.5)


# --- Engine ---

def test_engine_writes_command_with_cr(transport):
    transport.queue_reply(b"OK\r\n")
    engine = FramingEngine(transport, POLL)
    raw = engine.send_and_receive(Command(Opcode.CLEAR_STEPS), OkScan(), 500)
    assert transport.writes == [b"CS\r"]
    assert raw == b"OK"


def test_engine_reassembles_fragmented_reply(transport):
    transport.queue_reply(b"-15", b"0,30", b"0\r", b"\nO", b"K\r\n")
    engine = FramingEngine(transport, POLL)
    raw = engine.send_and_receive(Command(Opcode.QUERY_STEPS), OkScan(), 500)
    assert raw == b"-150,300\r\nOK"


def test_engine_drains_stale_bytes_before_sending(transport):
    transport.preload(b"\r\nOK\r\n")
    transport.queue_reply(b"3E\r\n")
    engine = FramingEngine(transport, POLL)
    raw = engine.send_and_receive(Command(Opcode.QUERY_GENERAL), FixedShape(2), 500)
    assert raw == b"3E"


def test_engine_timeout_carries_partial_reply(transport):
    transport.queue_reply(b"12,3")
    engine = FramingEngine(transport, POLL)
    with pytest.raises(ResponseTimeout) as excinfo:
        engine.send_and_receive(Command(Opcode.QUERY_STEPS), OkScan(), 50)
    assert excinfo.value.opcode == Opcode.QUERY_STEPS
    assert excinfo.value.partial == b"12,3"


def test_engine_timeout_boundary(transport):
    engine = FramingEngine(transport, POLL)
    timeout_ms = 80
    start = time.monotonic()
    with pytest.raises(ResponseTimeout):
        engine.send_and_receive(Command(Opcode.QUERY_STEPS), OkScan(), timeout_ms)
    elapsed = time.monotonic() - start
    assert elapsed >= timeout_ms / 1000 - POLL
    # Generous upper slack for scheduler jitter on loaded CI machines
    assert elapsed < timeout_ms / 1000 + POLL + 0.05


def test_engine_quiet_period_on_silent_device_times_out(transport):
    engine = FramingEngine(transport, POLL)
    with pytest.raises(ResponseTimeout):
        engine.send_and_receive(Command(Opcode.VERSION), QuietPeriod(100), 250)


def test_engine_quiet_period_completes_after_silence(transport):
    transport.queue_reply(b"EBBv13_and_above EB Firmware Version 2.8.1\r\n")
    engine = FramingEngine(transport, POLL)
    start = time.monotonic()
    raw = engine.send_and_receive(Command(Opcode.VERSION), QuietPeriod(100), 1000)
    assert raw.endswith(b"2.8.1\r\n")
    assert time.monotonic() - start >= 0.1


def test_send_does_not_read(transport):
    transport.queue_reply(b"late bytes")
    engine = FramingEngine(transport, POLL)
    engine.send(Command(Opcode.REBOOT))
    assert transport.writes == [b"RB\r"]
    assert transport.rx == bytearray()


# --- Stray bytes and terminators ---

def test_fixed_shape_ignores_stray_ok_line():
    rule = FixedShape(2)
    assert not rule.is_complete(b"OK", 0.0)
    assert not rule.is_complete(b"OK\r\n3", 0.0)
    assert rule.is_complete(b"OK\r\n3E", 0.0)


def test_fixed_shape_completes_on_error_line():
    rule = FixedShape(2)
    assert not rule.is_complete(b"!8 Err: Unknown", 0.0)
    assert rule.is_complete(b"!8 Err: Unknown command\r\n", 0.0)


def test_engine_skips_late_ok_before_status_byte(transport):
    transport.queue_reply(b"OK", b"\r\n3E\r\n")
    engine = FramingEngine(transport, POLL)
    raw = engine.send_and_receive(Command(Opcode.QUERY_GENERAL), FixedShape(2), 500)
    assert raw == b"OK\r\n3E"


def test_trailing_terminators_are_not_warned(transport, caplog):
    transport.queue_reply(b"OK\r\n")
    transport.queue_reply(b"OK\r\n")
    engine = FramingEngine(transport, POLL)
    with caplog.at_level(logging.DEBUG, logger="ebb_control.framing"):
        engine.send_and_receive(Command(Opcode.CLEAR_STEPS), OkScan(), 500)
        engine.send_and_receive(Command(Opcode.CLEAR_STEPS), OkScan(), 500)
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]
    assert "trailing terminators" in caplog.text


def test_stale_payload_is_warned(transport, caplog):
    transport.preload(b"12,3\r\nOK\r\n")
    transport.queue_reply(b"OK\r\n")
    engine = FramingEngine(transport, POLL)
    with caplog.at_level(logging.WARNING, logger="ebb_control.framing"):
        engine.send_and_receive(Command(Opcode.CLEAR_STEPS), OkScan(), 500)
    assert "Discarded 10 stale bytes" in caplog.text


def test_rule_without_is_complete_cannot_be_built():
    class Incomplete(FramingRule):
        pass

    with pytest.raises(TypeError):
        Incomplete()
