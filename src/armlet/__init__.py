"""
armlet - A64 Subset Assembler and Execution Engine
==================================================

This package provides a small toolchain for a subset of the 64-bit Arm
instruction set, extended with numbered host-service opcodes (console,
character framebuffer, files, timing and halt).

Main Components
---------------
- **assembler**: Two-pass assembler (armasm)
    Converts assembly source (.s) to a flat little-endian binary (.bin)

- **emulator**: Execution engine (armrun)
    Interprets binaries and serves extended opcodes through host services

- **disassembler**: Disassembler (armdisasm)
    Turns binaries back into re-assemblable text

Quick Start
-----------
Assemble and run a program:
    >>> from armlet.assembler import Assembler
    >>> from armlet.emulator import Emulator
    >>> asm = Assembler()
    >>> code = asm.assemble_file("hello.s")
    >>> emu = Emulator()
    >>> emu.load_program(code)
    >>> result = emu.run()

Or use the command-line tools:
    $ armasm hello.s -o hello.bin
    $ armrun hello.bin
    $ armdisasm hello.bin

Version History
---------------
1.0.0 - Initial release with assembler, execution engine and disassembler
"""

__version__ = "1.0.0"
__author__ = "Hugo José Pinto & Contributors"

from armlet.errors import (
    ArmletError,
    AssemblerError,
    ExecutionFault,
)

__all__ = [
    "__version__",
    "__author__",
    "ArmletError",
    "AssemblerError",
    "ExecutionFault",
]
