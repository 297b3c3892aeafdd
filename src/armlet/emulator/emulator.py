"""
Execution Engine - Main Orchestrator
====================================

This module provides the `Emulator` class that wires memory, host
services, the framebuffer and the CPU together behind one high-level API.

The Emulator class:
- Builds every component from an EngineConfig and HostServices
- Loads assembled binaries (bytes or files)
- Runs to completion or steps one instruction at a time
- Renders the framebuffer to the console when a run ends
- Exposes registers and a disassembly view for debugging

Example usage:
    >>> from armlet.assembler import assemble
    >>> from armlet.emulator import Emulator, BufferConsole, HostServices
    >>> console = BufferConsole()
    >>> emu = Emulator(host=HostServices(console=console))
    >>> emu.load_program(assemble("mov x0, #7\\nprtn\\nhalt"))
    >>> emu.run().instructions
    2
    >>> console.text
    '7'

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from pathlib import Path
from typing import Callable, Optional, Union
import logging

from armlet.errors import ExecutionFault
from armlet.disassembler.a64 import A64Disassembler
from armlet.emulator.config import EngineConfig
from armlet.emulator.cpu import CPU, ExecState, RunResult
from armlet.emulator.extended import ExecutionContext
from armlet.emulator.host import HostServices
from armlet.emulator.memory import Memory


logger = logging.getLogger(__name__)


class Emulator:
    """
    Execution engine for assembled programs.

    Each call to load_program() starts a fresh run: registers, flags,
    framebuffer and the random seed are reset. The file store and console
    persist across runs.

    Attributes:
        config: The EngineConfig used to build this instance
        host: Host services used by extended opcodes
        memory: Program and data memory
        context: Per-run state (framebuffer, random seed)
        cpu: The interpreter (accessible for low-level control)
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        host: Optional[HostServices] = None,
    ):
        """
        Initialize the emulator.

        Args:
            config: Engine configuration; defaults if None
            host: Host services; in-memory implementations if None
        """
        self.config = config or EngineConfig()
        self.host = host or HostServices()
        self.memory = Memory(self.config.memory_size, self.config.address_base)
        self.context = ExecutionContext.from_config(self.config, self.host)
        self.cpu = CPU(self.memory, config=self.config, context=self.context)
        self._disassembler = A64Disassembler()

    # =========================================================================
    # Program Loading
    # =========================================================================

    def load_program(self, code: bytes) -> None:
        """
        Load a binary at address 0 and reset all per-run state.

        Raises:
            ValueError: If the binary does not fit in memory
        """
        self.memory.load(code)
        self.context = ExecutionContext.from_config(self.config, self.host)
        self.cpu = CPU(self.memory, config=self.config, context=self.context)
        logger.info(f"loaded program of {len(code)} bytes")

    def load_file(self, path: Union[str, Path]) -> None:
        """Load a binary file produced by the assembler."""
        self.load_program(Path(path).read_bytes())

    # =========================================================================
    # Execution Control
    # =========================================================================

    def step(self) -> bool:
        """
        Execute a single instruction.

        Returns:
            True if the program is still running afterwards
        """
        return self.cpu.step()

    def run(self, on_instruction: Optional[Callable[[int, int], bool]] = None) -> RunResult:
        """
        Run until the program halts or faults.

        If the framebuffer was used, it is written to the console with
        ANSI colours once the run stops.

        Args:
            on_instruction: Optional hook ``(pc, word) -> bool``; returning
                False stops the run before that instruction

        Returns:
            RunResult with final state, instruction count and fault
        """
        self.cpu.on_instruction = on_instruction
        try:
            result = self.cpu.run_to_halt()
        finally:
            self.cpu.on_instruction = None
        self.flush_framebuffer()
        return result

    def run_checked(self) -> RunResult:
        """
        Run like run(), but raise when the program faults.

        Raises:
            ExecutionFault: If the run ended in the Faulted state
        """
        result = self.run()
        if result.state is ExecState.FAULTED and result.fault is not None:
            raise result.fault
        return result

    def flush_framebuffer(self) -> None:
        """Write the framebuffer to the console if it is active."""
        if self.context.framebuffer.active:
            self.host.console.write(self.context.framebuffer.render_ansi())

    # =========================================================================
    # State Inspection
    # =========================================================================

    @property
    def registers(self) -> dict[str, int]:
        """
        Get current register values as a dictionary.

        Returns:
            Dictionary with keys x0-x30, sp, pc and nzcv
        """
        return self.cpu.registers

    @property
    def state(self) -> ExecState:
        return self.cpu.state

    @property
    def fault(self) -> Optional[ExecutionFault]:
        return self.cpu.fault

    @property
    def instructions_executed(self) -> int:
        return self.cpu.instructions_executed

    def render_framebuffer(self) -> str:
        """Framebuffer contents as plain text (empty if never used)."""
        return self.context.framebuffer.render_text()

    def disassemble_at(self, address: int, count: int = 10) -> list[str]:
        """
        Disassemble instructions at the given address.

        Args:
            address: Starting address
            count: Number of instructions to disassemble

        Returns:
            List of disassembly strings; stops early at the end of memory
        """
        span = self.memory.span(address, count * 4)
        data = self.memory.read(address, span - span % 4) or b""
        return [str(instr) for instr in self._disassembler.disassemble(data, address, count)]

    def __repr__(self) -> str:
        """Return string representation of emulator state."""
        return (
            f"Emulator(state={self.cpu.state.value}, "
            f"pc=0x{self.cpu.pc:04X}, "
            f"instructions={self.cpu.instructions_executed})"
        )
