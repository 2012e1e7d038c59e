"""
Command-line tests.  Uses the run_cli fixture from conftest.py.
"""

import logging

import pytest

from bytecode import Opcode as O

pytestmark = pytest.mark.cli


def test_demo_is_default(run_cli):
    code, out, err = run_cli()
    assert code == 0
    assert err == ""
    lines = out.splitlines()
    assert lines[0] == "0000: push\t[2]\t[]"
    assert "5" in lines and "10" in lines and "88" in lines
    assert lines[-11] == "DATA:"
    assert lines[-10] == "0000: 88"


def test_program_cells(run_cli):
    code, out, _ = run_cli("--no-trace", O.PUSH, 2, O.PUSH, 3, O.ADD,
                           O.PRINT, O.HALT)
    assert code == 0
    assert out.splitlines() == ["5", "DATA:"] + [f"{a:04d}: 0" for a in range(10)]


def test_hex_and_negative_cells(run_cli):
    code, out, _ = run_cli("--no-trace", "--mem-size", "1",
                           "0x0", "-7", "0", "0x2", "1", "2", "3")
    assert code == 0
    assert out.splitlines()[0] == "-5"


def test_mem_size(run_cli):
    code, out, _ = run_cli("--no-trace", "--mem-size", "3", O.HALT)
    assert code == 0
    assert out.splitlines() == ["DATA:", "0000: 0", "0001: 0", "0002: 0"]


def test_listing(run_cli):
    code, out, _ = run_cli("--listing", O.PUSH, 1, O.JMPEQ, 1, 0, O.HALT)
    assert code == 0
    assert out.splitlines() == [
        "0000: push\t[1]",
        "0002: jmpeq\t[1 0]",
        "0005: halt\t[]",
    ]


def test_malformed_program(run_cli):
    code, out, err = run_cli(O.PUSH)
    assert code == 1
    assert out == ""
    assert err.startswith("MalformedProgram:")


def test_unknown_opcode(run_cli):
    code, _, err = run_cli(O.PUSH, 1, 55, O.HALT)
    assert code == 1
    assert "Unknown opcode 55" in err


def test_runtime_fault_reported(run_cli):
    code, out, err = run_cli("--no-trace", O.POP, O.HALT)
    assert code == 1
    assert "DATA:" not in out
    assert err.strip() == "StackUnderflow: Stack underflow @ 0000 (pop)"


def test_invalid_address_reported(run_cli):
    code, _, err = run_cli("--no-trace", O.LOAD, 10, O.HALT)
    assert code == 1
    assert err.startswith("InvalidMemoryAddress: Invalid memory address 10")


def test_stack_size(run_cli):
    code, _, err = run_cli("--stack-size", "1", O.PUSH, 1, O.PUSH, 2, O.HALT)
    assert code == 1
    assert err.startswith("StackOverflow:")


def test_max_steps(run_cli):
    code, _, err = run_cli("--no-trace", "--max-steps", "5", O.JMP, 0)
    assert code == 1
    assert err.startswith("StepLimitExceeded: Step limit of 5 reached")


def test_demo_with_cells_rejected(run_cli):
    code, _, err = run_cli("--demo", O.HALT)
    assert code == 2
    assert "--demo" in err


@pytest.mark.parametrize("argv", [
    ["--stack-size", "0"],
    ["--mem-size", "-2"],
    ["push"],
])
def test_bad_arguments(run_cli, argv):
    with pytest.raises(SystemExit) as exc:
        run_cli(*argv)
    assert exc.value.code == 2


def test_verbose_logs_halt(run_cli, caplog):
    with caplog.at_level(logging.DEBUG, logger="stackvm"):
        code, _, _ = run_cli("-v", "--no-trace", O.HALT)
    assert code == 0
    assert "halted after 1 steps" in caplog.text
