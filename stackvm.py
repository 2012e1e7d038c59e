"""
StackVM Engine
==============
A fetch/decode/execute interpreter for flat integer bytecode (see
bytecode.py for the encoding).

Machine state is one program counter, one value stack of bounded
capacity and one fixed-size, zero-initialized memory bank.  Every step
decodes the instruction at PC through the catalog, emits a trace line,
advances PC past the opcode and its operands, and dispatches.  HALT
dumps memory and stops; any fault aborts the run and leaves the engine
unusable until the next load().

Usage:
  from stackvm import StackVM
  from bytecode import DEMO_PROGRAM
  vm = StackVM()
  vm.load(DEMO_PROGRAM)
  vm.run()
"""

from __future__ import annotations
import logging
import sys
from typing import Callable, Iterable, NamedTuple, Optional, TextIO, Union

from bytecode import (OPS, Opcode, Program, StackVMError, UnknownOpcode,
                      decode_op)
from tracer import format_dump, format_trace

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

DEFAULT_STACK_SIZE = 100
DEFAULT_MEM_SIZE   = 10

MASK64 = (1 << 64) - 1
SIGN64 = 1 << 63

# ---------------------------------------------------------------------------
#  Helpers
# ---------------------------------------------------------------------------

def s64(v: int) -> int:
    """Wrap to a signed 64-bit value (two's complement)."""
    v &= MASK64
    return v - (1 << 64) if v >= SIGN64 else v


def _check_positive(name: str, val, optional: bool = False):
    if optional and val is None:
        return
    if isinstance(val, bool) or not isinstance(val, int) or val <= 0:
        raise ValueError(f"{name} must be a positive integer, got {val!r}")

# ---------------------------------------------------------------------------
#  Faults
# ---------------------------------------------------------------------------

class VMFault(StackVMError):
    """Runtime fault.  Records where it happened."""

    def __init__(self, message: str, pc: Optional[int] = None,
                 opcode: Optional[Opcode] = None):
        self.pc = pc
        self.opcode = opcode
        self.detail = message
        if pc is not None:
            message += f" @ {pc:04d}"
        if opcode is not None:
            message += f" ({OPS[opcode].name})"
        super().__init__(message)


class UnexpectedEndOfProgram(VMFault):
    pass

class StackUnderflow(VMFault):
    pass

class StackOverflow(VMFault):
    pass

class InvalidOperand(VMFault):
    """Operand cell that is not an integer (unvalidated Program only)."""
    pass

class InvalidMemoryAddress(VMFault):
    def __init__(self, message: str, pc: Optional[int] = None,
                 opcode: Optional[Opcode] = None, addr: int = 0):
        self.addr = addr
        super().__init__(message, pc, opcode)

class StepLimitExceeded(VMFault):
    def __init__(self, message: str, pc: Optional[int] = None,
                 opcode: Optional[Opcode] = None, limit: int = 0):
        self.limit = limit
        super().__init__(message, pc, opcode)

class ExecutionCancelled(VMFault):
    pass


class HaltError(StackVMError):
    """Raised when stepping an engine that has halted or faulted."""
    pass


class Instruction(NamedTuple):
    addr: int
    op: Opcode
    args: tuple


# ---------------------------------------------------------------------------
#  Engine
# ---------------------------------------------------------------------------

class StackVM:
    """Stack machine interpreter.

    Output (trace lines, PRINT values, the HALT dump) goes to *out*,
    or to sys.stdout at the time of writing when *out* is None.

    PRINT values are also collected in ``output`` for inspection.  That
    list grows with every PRINT; pass keep_output=False for long-running
    programs that only need the text stream or the on_output callback.
    """

    def __init__(self, stack_size: int = DEFAULT_STACK_SIZE,
                 mem_size: int = DEFAULT_MEM_SIZE,
                 out: Optional[TextIO] = None, trace: bool = True,
                 max_steps: Optional[int] = None, keep_output: bool = True):
        _check_positive("stack_size", stack_size)
        _check_positive("mem_size", mem_size)
        _check_positive("max_steps", max_steps, optional=True)
        self.stack_size = stack_size
        self.mem_size = mem_size
        self.out = out
        self.trace = trace
        self.max_steps = max_steps
        self.keep_output = keep_output

        # Callbacks
        self.on_output: Optional[Callable[[int], None]] = None
        self.on_halt: Optional[Callable[["StackVM"], None]] = None

        self._dispatch = {
            Opcode.PUSH:  self._exec_push,
            Opcode.POP:   self._exec_pop,
            Opcode.ADD:   self._exec_add,
            Opcode.SUB:   self._exec_sub,
            Opcode.MUL:   self._exec_mul,
            Opcode.PRINT: self._exec_print,
            Opcode.JMP:   self._exec_jmp,
            Opcode.JMPLT: self._exec_jmplt,
            Opcode.JMPGT: self._exec_jmpgt,
            Opcode.JMPEQ: self._exec_jmpeq,
            Opcode.LOAD:  self._exec_load,
            Opcode.STORE: self._exec_store,
            Opcode.HALT:  self._exec_halt,
        }
        self.load(Program(()))

    # -- Lifecycle --

    def load(self, program: Union[Program, Iterable[int]]):
        """Install *program* and reset stack, memory and counters."""
        if not isinstance(program, Program):
            program = Program(program)
        self.code = program
        self._pc = 0
        self._stack: list[int] = []
        self.mem: list[int] = [0] * self.mem_size
        self.halted = False
        self.faulted = False
        self.steps = 0
        self.output: list[int] = []
        self._cur: Optional[Instruction] = None

    # -- Read-only views --

    @property
    def pc(self) -> int:
        return self._pc

    @property
    def sp(self) -> int:
        """Index of the top of stack; -1 when empty."""
        return len(self._stack) - 1

    @property
    def stack(self) -> list[int]:
        """Live stack contents, index 0 through sp."""
        return list(self._stack)

    # -- Output --

    def _emit(self, line: str):
        print(line, file=self.out if self.out is not None else sys.stdout)

    # -- Fetch / decode --

    def decode(self) -> Instruction:
        """Decode the instruction at PC without changing any state."""
        pc = self._pc
        code = self.code
        if not 0 <= pc < len(code):
            raise UnexpectedEndOfProgram(
                f"No instruction at {pc} (program is {len(code)} cells)", pc)
        try:
            op = decode_op(code[pc])
        except UnknownOpcode as e:
            raise UnknownOpcode(e.code, pc=pc) from None
        nargs = OPS[op].nargs
        if pc + nargs >= len(code):
            raise UnexpectedEndOfProgram(
                f"Operands run past end of program "
                f"(need {nargs}, have {len(code) - pc - 1})", pc, op)
        args = tuple(code[pc + 1:pc + 1 + nargs])
        for arg in args:
            if isinstance(arg, bool) or not isinstance(arg, int):
                raise InvalidOperand(f"Non-integer operand {arg!r}", pc, op)
        return Instruction(pc, op, args)

    def trace_line(self) -> str:
        """Trace line for the instruction at PC.  Pure observation."""
        ins = self.decode()
        return format_trace(ins.addr, ins.op, ins.args, self._stack)

    def dump(self) -> str:
        return "\n".join(format_dump(self.mem))

    # =====================================================================
    #  STEP / RUN
    # =====================================================================

    def _check_running(self):
        if self.halted:
            raise HaltError("VM is halted")
        if self.faulted:
            raise HaltError("VM faulted; load() a program to start over")

    def step(self):
        """Execute one instruction."""
        self._check_running()
        try:
            ins = self.decode()
            if self.trace:
                self._emit(format_trace(ins.addr, ins.op, ins.args, self._stack))
            self._cur = ins
            self._pc = ins.addr + 1 + len(ins.args)
            self._dispatch[ins.op](*ins.args)
            self.steps += 1
        except Exception as e:
            # Callback errors included: pc has already moved on
            self.faulted = True
            log.debug("fault after %d steps: %s", self.steps, e)
            raise

    def run(self, max_steps: Optional[int] = None, cancel=None) -> int:
        """Run until HALT.  Returns the number of instructions executed.

        *max_steps* (default: the engine's max_steps) bounds the run;
        *cancel* is any object with is_set(), e.g. threading.Event.
        Both are checked once per fetch.
        """
        self._check_running()
        _check_positive("max_steps", max_steps, optional=True)
        limit = max_steps if max_steps is not None else self.max_steps
        start = self.steps
        log.debug("run: %d cells, stack_size=%d mem_size=%d limit=%s",
                  len(self.code), self.stack_size, self.mem_size, limit)
        while not self.halted:
            if cancel is not None and cancel.is_set():
                self._abort(ExecutionCancelled("Run cancelled", self._pc))
            if limit is not None and self.steps - start >= limit:
                self._abort(StepLimitExceeded(f"Step limit of {limit} reached",
                                              self._pc, limit=limit))
            self.step()
        return self.steps - start

    def _abort(self, fault: VMFault):
        self.faulted = True
        log.debug("fault after %d steps: %s", self.steps, fault)
        raise fault

    # =====================================================================
    #  Stack / memory access
    # =====================================================================

    def _fault(self, cls, message: str, **kw) -> VMFault:
        ins = self._cur
        return cls(message, ins.addr, ins.op, **kw)

    def _push(self, val: int):
        if len(self._stack) >= self.stack_size:
            raise self._fault(StackOverflow,
                              f"Stack overflow (capacity {self.stack_size})")
        self._stack.append(s64(val))

    def _pop(self) -> int:
        if not self._stack:
            raise self._fault(StackUnderflow, "Stack underflow")
        return self._stack.pop()

    def _peek(self) -> int:
        if not self._stack:
            raise self._fault(StackUnderflow, "Stack underflow")
        return self._stack[-1]

    def _check_addr(self, addr: int):
        if not 0 <= addr < self.mem_size:
            raise self._fault(InvalidMemoryAddress,
                              f"Invalid memory address {addr} "
                              f"(bank is {self.mem_size} cells)", addr=addr)

    # =====================================================================
    #  Instruction handlers
    # =====================================================================

    def _exec_push(self, val: int):
        self._push(val)

    def _exec_pop(self):
        self._pop()

    def _exec_add(self):
        b = self._pop()
        a = self._pop()
        self._push(a + b)

    def _exec_sub(self):
        b = self._pop()
        a = self._pop()
        self._push(a - b)

    def _exec_mul(self):
        b = self._pop()
        a = self._pop()
        self._push(a * b)

    def _exec_print(self):
        val = self._pop()
        if self.keep_output:
            self.output.append(val)
        self._emit(str(val))
        if self.on_output:
            self.on_output(val)

    def _exec_jmp(self, addr: int):
        self._pc = addr

    # Conditional jumps peek: the compared value stays on the stack.
    # The literal wraps like a PUSH operand so both sides agree.
    def _exec_jmplt(self, val: int, addr: int):
        if self._peek() < s64(val):
            self._pc = addr

    def _exec_jmpgt(self, val: int, addr: int):
        if self._peek() > s64(val):
            self._pc = addr

    def _exec_jmpeq(self, val: int, addr: int):
        if self._peek() == s64(val):
            self._pc = addr

    def _exec_load(self, addr: int):
        self._check_addr(addr)
        self._push(self.mem[addr])

    def _exec_store(self, addr: int):
        self._check_addr(addr)
        self.mem[addr] = self._pop()

    def _exec_halt(self):
        self.halted = True
        for line in format_dump(self.mem):
            self._emit(line)
        log.info("halted after %d steps", self.steps + 1)
        if self.on_halt:
            self.on_halt(self)
