"""
StackVM Tracer / Memory Dumper
===============================
Text renderers for the engine's observers.  Everything here is a pure
function of the values passed in: nothing reads or touches engine state
directly, so tracing can never change how a program runs.

  format_trace  : one line per instruction, emitted before dispatch
  format_dump   : the memory bank, emitted once at HALT
  disassemble   : linear listing of a whole program
"""

from __future__ import annotations
from typing import Iterable, Iterator, Sequence

from bytecode import OPS, Opcode, UnknownOpcode, lookup


def _fmt_list(values: Iterable[int]) -> str:
    return "[" + " ".join(str(v) for v in values) + "]"


def format_trace(addr: int, op: Opcode, args: Sequence[int],
                 stack: Sequence[int]) -> str:
    """Render ``addr: mnemonic  [operands]  [stack]``."""
    return f"{addr:04d}: {OPS[op].name}\t{_fmt_list(args)}\t{_fmt_list(stack)}"


def format_dump(mem: Sequence[int]) -> list[str]:
    """Render every memory cell, ascending, under a DATA: header."""
    lines = ["DATA:"]
    for addr, value in enumerate(mem):
        lines.append(f"{addr:04d}: {value}")
    return lines


def disassemble(cells: Sequence[int]) -> Iterator[str]:
    """Walk *cells* linearly and yield one listing line per instruction.

    Cells that are not opcodes are shown as ``.word N`` and the walk
    continues with the next cell; an instruction whose operands run past
    the end is flagged ``<truncated>``.
    """
    pc = 0
    while pc < len(cells):
        try:
            info = lookup(cells[pc])
        except UnknownOpcode:
            yield f"{pc:04d}: .word {cells[pc]}"
            pc += 1
            continue
        args = cells[pc + 1:pc + 1 + info.nargs]
        line = f"{pc:04d}: {info.name}\t{_fmt_list(args)}"
        if len(args) < info.nargs:
            line += "\t<truncated>"
        yield line
        pc += 1 + info.nargs
