"""
armrun - Execution Engine Command-Line Interface
================================================

Runs a binary produced by armasm. Console opcodes use the terminal, file
opcodes use an in-memory store or a directory, and the framebuffer is
printed with ANSI colours when the program stops.

Usage Examples
--------------
Run a program:
    $ armrun hello.bin

Single-step with a register display:
    $ armrun hello.bin --debug

Keep files created by the program:
    $ armrun fileio.bin --files-dir ./files

Save the framebuffer as an image (needs Pillow):
    $ armrun graphics.bin --png screen.png

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click

from armlet import __version__
from armlet.cli.errors import ExitCode, handle_cli_exception, setup_logging
from armlet.emulator import Emulator, EngineConfig, ExecState, HostServices, RunResult


# =============================================================================
# Shared Runner
# =============================================================================

def _debug_line(emu: Emulator) -> str:
    regs = emu.registers
    listing = emu.disassemble_at(regs["pc"], 1)
    text = listing[0] if listing else f"{regs['pc']:04X}: <outside memory>"
    values = "  ".join(f"x{i}={regs[f'x{i}']:#x}" for i in range(4))
    return f"{text:<44} {values}  [{emu.cpu.flags}]"


def _run_debug(emu: Emulator) -> RunResult:
    """Step on Enter, stop on 'q' or end of input."""
    click.echo("Debug mode: Enter steps, q quits", err=True)
    while emu.state is ExecState.RUNNING:
        click.echo(_debug_line(emu), err=True)
        try:
            answer = click.prompt("", default="", show_default=False, prompt_suffix="", err=True)
        except click.Abort:
            break
        if answer.strip().lower() == "q":
            break
        emu.step()
    emu.flush_framebuffer()
    return RunResult(emu.state, emu.instructions_executed, emu.fault)


def run_program(
    code: bytes,
    debug: bool = False,
    max_instructions: Optional[int] = None,
    files_dir: Optional[Path] = None,
    png: Optional[Path] = None,
) -> RunResult:
    """
    Run a binary against the real terminal and report the outcome.

    Prints ``Executed N instructions`` on completion, and the fault on
    stderr when the run faults.
    """
    config = EngineConfig.from_env()
    if max_instructions is not None:
        config = replace(config, max_instructions=max_instructions)

    emu = Emulator(config, HostServices.system(files_dir))
    emu.load_program(code)

    result = _run_debug(emu) if debug else emu.run()

    if png is not None:
        image = emu.context.framebuffer.render_image()
        if image is None:
            click.echo("Warning: no framebuffer image (unused framebuffer or Pillow missing)", err=True)
        else:
            png.write_bytes(image)

    if result.state is ExecState.FAULTED and result.fault is not None:
        click.echo(f"Fault: {result.fault}", err=True)
    click.echo(f"Executed {result.instructions} instructions")
    return result


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.argument(
    "input_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-d", "--debug",
    is_flag=True,
    help="Single-step: Enter executes one instruction, q quits",
)
@click.option(
    "-m", "--max-instructions",
    type=click.IntRange(min=1),
    default=None,
    help="Instruction ceiling (default: 10000 or ARMLET_MAX_INSTRUCTIONS)",
)
@click.option(
    "-f", "--files-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory backing the file opcodes (default: in-memory)",
)
@click.option(
    "--png",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Save the framebuffer as a PNG image after the run",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
@click.version_option(version=__version__, prog_name="armrun")
def main(
    input_file: Path,
    debug: bool,
    max_instructions: Optional[int],
    files_dir: Optional[Path],
    png: Optional[Path],
    verbose: bool,
) -> None:
    """
    Run an armlet binary.

    INPUT_FILE is a flat binary produced by armasm.

    \b
    Examples:
        armrun hello.bin
        armrun hello.bin --debug
        armrun fileio.bin --files-dir ./files
    """
    setup_logging(verbose)
    try:
        code = input_file.read_bytes()
        if verbose:
            click.echo(f"Loaded {len(code)} bytes from {input_file}", err=True)
        result = run_program(code, debug, max_instructions, files_dir, png)
    except Exception as e:
        handle_cli_exception(e, verbose=verbose, error_type="Run")

    if result.state is ExecState.FAULTED:
        sys.exit(ExitCode.BUILD_ERROR)


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
