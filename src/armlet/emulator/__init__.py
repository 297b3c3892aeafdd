"""
A64 Subset Execution Engine
===========================

Interpreter for binaries produced by the armlet assembler, with extended
opcodes served by pluggable host services.

This package provides:

- **CPU**: Fetch-decode-execute loop with N/Z/C/V flags and a
  per-instruction hook
- **Memory**: Flat, bounds-checked memory; out-of-range accesses are
  dropped instead of faulting
- **Extended opcodes**: Console, framebuffer, file, memory, timing and
  halt services
- **Host services**: Console, file store and clock interfaces, each with
  a real and an in-memory implementation
- **Framebuffer**: Character grid with colour attributes, rendered as
  ANSI text or PNG

Quick Start
-----------

Basic usage::

    >>> from armlet.assembler import assemble
    >>> from armlet.emulator import Emulator, HostServices, BufferConsole
    >>> console = BufferConsole()
    >>> emu = Emulator(host=HostServices(console=console))
    >>> emu.load_program(assemble("mov w0, #72\\nprtc\\nhalt"))
    >>> emu.run().state
    <ExecState.HALTED: 'halted'>
    >>> console.output
    b'H'

Single-stepping::

    >>> emu.load_program(code)
    >>> while emu.step():
    ...     print(emu.disassemble_at(emu.registers["pc"], 1)[0])
"""

from armlet.emulator.config import EngineConfig
from armlet.emulator.cpu import (
    CPU,
    ExecState,
    Flags,
    RunResult,
    evaluate_condition,
)
from armlet.emulator.display import Framebuffer
from armlet.emulator.emulator import Emulator
from armlet.emulator.extended import ExecutionContext, ExtendedOpcodes
from armlet.emulator.host import (
    EOF,
    BufferConsole,
    Clock,
    Console,
    DirectoryFileStore,
    FileStore,
    HostServices,
    ManualClock,
    MemoryFileStore,
    StreamConsole,
    SystemClock,
)
from armlet.emulator.memory import Memory

__all__ = [
    # Main classes
    "Emulator",
    "EngineConfig",
    # CPU
    "CPU",
    "ExecState",
    "Flags",
    "RunResult",
    "evaluate_condition",
    # Memory and extended opcodes
    "Memory",
    "ExecutionContext",
    "ExtendedOpcodes",
    "Framebuffer",
    # Host services
    "EOF",
    "HostServices",
    "Console",
    "FileStore",
    "Clock",
    "StreamConsole",
    "BufferConsole",
    "DirectoryFileStore",
    "MemoryFileStore",
    "SystemClock",
    "ManualClock",
]
