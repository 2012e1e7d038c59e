#!/usr/bin/env python3
"""
StackVM Command Line
====================
Run a bytecode program given as integers on the command line, or the
built-in demo program when none is given.

Usage:
  python cli.py [CELLS ...] [--demo] [--stack-size N] [--mem-size N]
                [--max-steps N] [--no-trace] [--listing] [-v]
"""

from __future__ import annotations
import argparse
import logging
import sys
from typing import Optional, Sequence

from bytecode import DEMO_PROGRAM, StackVMError, new_program
from stackvm import DEFAULT_MEM_SIZE, DEFAULT_STACK_SIZE, StackVM, VMFault
from tracer import disassemble

log = logging.getLogger(__name__)


def _parse_cell(tok: str) -> int:
    """Parse a program cell (decimal or 0x hex, optionally negative)."""
    try:
        return int(tok, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {tok!r}") from None


def _positive(tok: str) -> int:
    val = _parse_cell(tok)
    if val <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {tok!r}")
    return val


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackvm",
        description="StackVM bytecode interpreter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py --demo\n"
               "  python cli.py 0 2 0 3 1 2 3          # push 2, push 3, add, print, halt\n"
               "  python cli.py --listing --demo\n"
               "  python cli.py --no-trace --mem-size 4 0 7 7 3 3\n"
    )
    parser.add_argument("cells", nargs="*", type=_parse_cell, metavar="CELL",
                        help="Program cells: opcodes and operands as integers")
    parser.add_argument("--demo", action="store_true",
                        help="Run the built-in demo program (default when no cells given)")
    parser.add_argument("--stack-size", type=_positive, default=DEFAULT_STACK_SIZE,
                        metavar="N",
                        help=f"Value stack capacity (default: {DEFAULT_STACK_SIZE})")
    parser.add_argument("--mem-size", type=_positive, default=DEFAULT_MEM_SIZE,
                        metavar="N",
                        help=f"Memory bank size in cells (default: {DEFAULT_MEM_SIZE})")
    parser.add_argument("--max-steps", type=_positive, default=None, metavar="N",
                        help="Abort after N instructions (default: unlimited)")
    parser.add_argument("--no-trace", action="store_true",
                        help="Do not print a trace line before each instruction")
    parser.add_argument("--listing", "-l", action="store_true",
                        help="Print a program listing and exit")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable debug logging")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.demo and args.cells:
        print("error: --demo takes no program cells", file=sys.stderr)
        return 2

    try:
        program = new_program(args.cells) if args.cells else DEMO_PROGRAM
    except StackVMError as e:
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return 1

    if args.listing:
        for line in disassemble(program):
            print(line)
        return 0

    vm = StackVM(stack_size=args.stack_size, mem_size=args.mem_size,
                 trace=not args.no_trace, max_steps=args.max_steps,
                 keep_output=False)
    vm.load(program)
    try:
        vm.run()
    except VMFault as e:
        log.debug("fault detail: pc=%s opcode=%s stack=%s",
                  e.pc, e.opcode, vm.stack)
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except StackVMError as e:
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
