"""Tests for the command encoder and argument validation."""

import pytest

from ebb_control.commands import (
    Arg,
    Command,
    FlagArg,
    IntArg,
    Opcode,
    PortArg,
    StepMode,
    TextArg,
    check_args,
    encode_command,
)
from ebb_control.errors import RangeValidationError
from ebb_control.protocol import PROTOCOL, lookup


def test_encode_no_arguments():
    assert encode_command(Command(Opcode.QUERY_STEPS)) == "QS"


def test_encode_fields_joined_with_commas():
    assert encode_command(Command(Opcode.HOME_MOVE, (2000, 0, 0))) == "HM,2000,0,0"


def test_encode_negative_and_enum_values():
    command = Command(Opcode.ENABLE_MOTORS, (StepMode.DIV16, StepMode.DISABLED))
    assert encode_command(command) == "EM,1,0"
    assert encode_command(Command(Opcode.STEPPER_MOVE, (1000, -150, 300))) == "SM,1000,-150,300"


def test_encode_booleans_as_digits():
    assert encode_command(Command(Opcode.ANALOG_CONFIGURE, (15, True))) == "AC,15,1"
    assert encode_command(Command(Opcode.PULSE_GO, (False,))) == "PG,0"


def test_encode_plain_string_opcode():
    assert encode_command(Command("QU", ("1",))) == "QU,1"


def test_command_is_immutable():
    command = Command(Opcode.CLEAR_STEPS)
    with pytest.raises(AttributeError):
        command.opcode = Opcode.RESET


def test_opcode_str_is_mnemonic():
    assert str(Opcode.QUERY_GENERAL) == "QG"
    assert f"{Opcode.SERVO_OUTPUT}" == "S2"


def test_every_opcode_has_a_table_entry():
    assert set(PROTOCOL) == set(Opcode)
    assert lookup("QS") is PROTOCOL[Opcode.QUERY_STEPS]


def test_int_arg_bounds():
    spec = (IntArg("channel", 0, 15),)
    assert check_args("AC", spec, (15,)) == (15,)
    with pytest.raises(RangeValidationError):
        check_args("AC", spec, (16,))
    with pytest.raises(RangeValidationError):
        check_args("AC", spec, (-1,))


def test_int_arg_rejects_bool_and_float():
    spec = (IntArg("layer", 0, 127),)
    with pytest.raises(RangeValidationError):
        check_args("SL", spec, (True,))
    with pytest.raises(RangeValidationError):
        check_args("SL", spec, (1.5,))


def test_flag_arg_accepts_bool_and_zero_one():
    spec = (FlagArg("enable"),)
    assert check_args("PG", spec, (1,)) == (True,)
    assert check_args("PG", spec, (False,)) == (False,)
    with pytest.raises(RangeValidationError):
        check_args("PG", spec, (2,))


def test_port_arg_normalizes_case():
    spec = (PortArg("port"),)
    assert check_args("PI", spec, ("b",)) == ("B",)
    with pytest.raises(RangeValidationError):
        check_args("PI", spec, ("F",))


def test_text_arg_rejects_commas_and_long_names():
    spec = (TextArg("nickname", 16),)
    assert check_args("ST", spec, ("plotter-1",)) == ("plotter-1",)
    with pytest.raises(RangeValidationError):
        check_args("ST", spec, ("a,b",))
    with pytest.raises(RangeValidationError):
        check_args("ST", spec, ("x" * 17,))


def test_trailing_optionals_are_dropped():
    spec = lookup(Opcode.SET_PEN).args
    assert check_args("SP", spec, (1,)) == (1,)
    assert check_args("SP", spec, (0, 500, None)) == (0, 500)


def test_optional_gap_is_rejected():
    spec = lookup(Opcode.SET_PEN).args
    with pytest.raises(RangeValidationError, match="omitted"):
        check_args("SP", spec, (0, None, 3))


def test_missing_required_and_too_many_arguments():
    spec = lookup(Opcode.MEMORY_WRITE).args
    with pytest.raises(RangeValidationError, match="required"):
        check_args("MW", spec, (10,))
    with pytest.raises(RangeValidationError, match="at most"):
        check_args("MW", spec, (10, 1, 2))


def test_range_error_is_value_error():
    with pytest.raises(ValueError):
        check_args("MR", lookup(Opcode.MEMORY_READ).args, (4096,))


def test_arg_without_check_cannot_be_built():
    class Unchecked(Arg):
        pass

    with pytest.raises(TypeError):
        Unchecked("value")
