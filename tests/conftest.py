"""
armlet Test Configuration
=========================

Shared fixtures for the engine tests. Every engine built here uses the
in-memory console, file store and clock, so tests never touch the real
terminal or disk.

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

import pytest

from armlet.assembler import assemble
from armlet.emulator import (
    BufferConsole,
    Emulator,
    EngineConfig,
    HostServices,
    ManualClock,
    MemoryFileStore,
)


@pytest.fixture
def host():
    """Host services with an empty console, file store and a clock at 0."""
    return HostServices(
        console=BufferConsole(),
        files=MemoryFileStore(),
        clock=ManualClock(),
    )


@pytest.fixture
def emulator(host):
    return Emulator(EngineConfig(), host)


@pytest.fixture
def run_source(host):
    """
    Assemble and run a program, returning the Emulator after the run.

    Usage:
        emu = run_source("mov x0, #1\\nhalt")
        emu = run_source(source, input_data=b"abc\\n", max_instructions=50)
    """
    def _run(source: str, input_data: bytes = b"", **config_overrides) -> Emulator:
        host.console.feed(input_data)
        emu = Emulator(EngineConfig(**config_overrides), host)
        emu.load_program(assemble(source))
        emu.run()
        return emu

    return _run
