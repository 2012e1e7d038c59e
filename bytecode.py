"""
StackVM Bytecode
================
The instruction catalog and the program container.

A program is a flat sequence of integers: each opcode is followed by
exactly as many operand cells as its arity.  There are no separators and
no length prefixes, so the arity table below is the only thing that
tells the engine (and the listing) where one instruction ends.

Usage:
  from bytecode import Opcode, new_program
  prog = new_program([Opcode.PUSH, 2, Opcode.PUSH, 3, Opcode.ADD,
                      Opcode.PRINT, Opcode.HALT])
"""

from __future__ import annotations
from enum import IntEnum
from typing import Iterable, NamedTuple, Optional, Union

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class StackVMError(Exception):
    """Base for everything the VM and its loader raise."""
    pass


class UnknownOpcode(StackVMError):
    def __init__(self, code, message: str = "", pc: Optional[int] = None):
        self.code = code
        self.pc = pc
        if not message:
            message = f"Unknown opcode {code!r}"
            if pc is not None:
                message += f" @ {pc:04d}"
        super().__init__(message)


class MalformedProgram(StackVMError):
    def __init__(self, message: str, addr: Optional[int] = None):
        self.addr = addr
        if addr is not None:
            message = f"{message} @ {addr:04d}"
        super().__init__(message)


# ---------------------------------------------------------------------------
#  Instruction catalog
# ---------------------------------------------------------------------------

class Opcode(IntEnum):
    PUSH  = 0
    ADD   = 1
    PRINT = 2
    HALT  = 3
    JMPLT = 4
    SUB   = 5
    MUL   = 6
    STORE = 7
    LOAD  = 8
    POP   = 9
    JMP   = 10
    JMPGT = 11
    JMPEQ = 12


class OpInfo(NamedTuple):
    name: str
    nargs: int


OPS: dict[Opcode, OpInfo] = {
    Opcode.PUSH:  OpInfo("push", 1),
    Opcode.POP:   OpInfo("pop", 0),
    Opcode.ADD:   OpInfo("add", 0),
    Opcode.PRINT: OpInfo("print", 0),
    Opcode.HALT:  OpInfo("halt", 0),
    Opcode.JMP:   OpInfo("jmp", 1),
    Opcode.JMPLT: OpInfo("jmplt", 2),
    Opcode.JMPGT: OpInfo("jmpgt", 2),
    Opcode.JMPEQ: OpInfo("jmpeq", 2),
    Opcode.SUB:   OpInfo("sub", 0),
    Opcode.MUL:   OpInfo("mul", 0),
    Opcode.STORE: OpInfo("store", 1),
    Opcode.LOAD:  OpInfo("load", 1),
}


def decode_op(code) -> Opcode:
    """Map a raw cell to its Opcode, or raise UnknownOpcode."""
    # bool is an int subclass; True/False are not opcodes
    if isinstance(code, bool) or not isinstance(code, int):
        raise UnknownOpcode(code)
    try:
        return Opcode(code)
    except ValueError:
        raise UnknownOpcode(code) from None


def lookup(code) -> OpInfo:
    """Return (mnemonic, arity) for an opcode identifier."""
    return OPS[decode_op(code)]


# ---------------------------------------------------------------------------
#  Program
# ---------------------------------------------------------------------------

class Program:
    """Immutable integer sequence.  Not validated; see new_program()."""

    __slots__ = ("_cells",)

    def __init__(self, cells: Iterable[int]):
        # Opcode members are stored as plain ints
        self._cells = tuple(int(c) if isinstance(c, IntEnum) else c
                            for c in cells)

    @property
    def cells(self) -> tuple[int, ...]:
        return self._cells

    def __len__(self) -> int:
        return len(self._cells)

    def __getitem__(self, index):
        return self._cells[index]

    def __iter__(self):
        return iter(self._cells)

    def __eq__(self, other) -> bool:
        if isinstance(other, Program):
            return self._cells == other._cells
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._cells)

    def __repr__(self) -> str:
        return f"Program({list(self._cells)!r})"


def new_program(cells: Union[Program, Iterable[int]]) -> Program:
    """Validate *cells* and wrap them in a Program.

    Walks the sequence linearly: every cell in opcode position must be a
    known opcode and its operand cells must all exist.  Raises
    MalformedProgram otherwise.
    """
    cells = tuple(cells)
    if not cells:
        raise MalformedProgram("Empty program")
    for addr, cell in enumerate(cells):
        if isinstance(cell, bool) or not isinstance(cell, int):
            raise MalformedProgram(f"Non-integer cell {cell!r}", addr)

    pc = 0
    while pc < len(cells):
        try:
            info = lookup(cells[pc])
        except UnknownOpcode as e:
            raise MalformedProgram(str(e), pc) from e
        if pc + info.nargs >= len(cells):
            raise MalformedProgram(
                f"'{info.name}' needs {info.nargs} operand(s), "
                f"program ends after {len(cells) - pc - 1}", pc)
        pc += 1 + info.nargs
    return Program(cells)


# ---------------------------------------------------------------------------
#  Builder
# ---------------------------------------------------------------------------

class ProgramBuilder:
    """Fluent construction of programs with named jump targets.

        b = ProgramBuilder()
        b.push(0).label("loop").push(1).add()
        b.jmplt(10, "loop").print().halt()
        prog = b.build()

    Label references may appear before the label is defined; they are
    resolved to raw cell addresses by build().
    """

    def __init__(self):
        self._cells: list = []
        self._labels: dict[str, int] = {}

    @property
    def here(self) -> int:
        """Address the next emitted cell will occupy."""
        return len(self._cells)

    def label(self, name: str) -> "ProgramBuilder":
        if name in self._labels:
            raise MalformedProgram(f"Duplicate label {name!r}", self.here)
        self._labels[name] = self.here
        return self

    def emit(self, op: Opcode, *args) -> "ProgramBuilder":
        info = OPS[op]
        if len(args) != info.nargs:
            raise MalformedProgram(
                f"'{info.name}' takes {info.nargs} operand(s), got {len(args)}",
                self.here)
        self._cells.append(int(op))
        self._cells.extend(args)
        return self

    def push(self, value: int):          return self.emit(Opcode.PUSH, value)
    def pop(self):                       return self.emit(Opcode.POP)
    def add(self):                       return self.emit(Opcode.ADD)
    def sub(self):                       return self.emit(Opcode.SUB)
    def mul(self):                       return self.emit(Opcode.MUL)
    def print(self):                     return self.emit(Opcode.PRINT)
    def jmp(self, addr):                 return self.emit(Opcode.JMP, addr)
    def jmplt(self, value: int, addr):   return self.emit(Opcode.JMPLT, value, addr)
    def jmpgt(self, value: int, addr):   return self.emit(Opcode.JMPGT, value, addr)
    def jmpeq(self, value: int, addr):   return self.emit(Opcode.JMPEQ, value, addr)
    def load(self, addr: int):           return self.emit(Opcode.LOAD, addr)
    def store(self, addr: int):          return self.emit(Opcode.STORE, addr)
    def halt(self):                      return self.emit(Opcode.HALT)

    def build(self) -> Program:
        cells = []
        for addr, cell in enumerate(self._cells):
            if isinstance(cell, str):
                if cell not in self._labels:
                    raise MalformedProgram(f"Undefined label {cell!r}", addr)
                cell = self._labels[cell]
            cells.append(cell)
        return new_program(cells)


# ---------------------------------------------------------------------------
#  Sample program
# ---------------------------------------------------------------------------

# Prints 5, 10 and 88.  JMPLT branches once (9 < 10) back to the second
# PUSH 3 at cell 14, then falls through on 27; 88 ends up in cell 0.
DEMO_PROGRAM = new_program([
    Opcode.PUSH, 2,
    Opcode.PUSH, 3,
    Opcode.ADD,
    Opcode.PRINT,
    Opcode.PUSH, 15,
    Opcode.PUSH, 5,
    Opcode.SUB,
    Opcode.PRINT,
    Opcode.PUSH, 3,
    Opcode.PUSH, 3,
    Opcode.MUL,
    Opcode.JMPLT, 10, 14,
    Opcode.POP,
    Opcode.PUSH, 88,
    Opcode.STORE, 0,
    Opcode.PUSH, 7,
    Opcode.POP,
    Opcode.LOAD, 0,
    Opcode.PRINT,
    Opcode.HALT,
])
