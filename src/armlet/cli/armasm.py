"""
armasm - A64 Subset Assembler Command-Line Interface
====================================================

Assembles a source file into a flat little-endian binary and, on
request, runs it straight away.

Usage Examples
--------------
Basic assembly:
    $ armasm hello.s

With output file:
    $ armasm hello.s -o hello.bin

Generate listing and symbol files:
    $ armasm hello.s -o hello.bin -l hello.lst -s hello.sym

Assemble and run:
    $ armasm hello.s --run

Verbose mode:
    $ armasm -v hello.s
"""

import sys
from pathlib import Path
from typing import Optional

import click

from armlet import __version__
from armlet.assembler import Assembler
from armlet.cli.armrun import run_program
from armlet.cli.errors import ExitCode, handle_cli_exception, setup_logging
from armlet.emulator import ExecState


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.argument(
    "input_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-o", "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Output binary file (default: input.bin)",
)
@click.option(
    "-l", "--listing",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Generate listing file",
)
@click.option(
    "-s", "--symbols",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Generate symbol file",
)
@click.option(
    "-r", "--run",
    is_flag=True,
    help="Run the program after assembling it",
)
@click.option(
    "-d", "--debug",
    is_flag=True,
    help="Run in single-step mode (implies --run)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
@click.version_option(version=__version__, prog_name="armasm")
def main(
    input_file: Path,
    output: Optional[Path],
    listing: Optional[Path],
    symbols: Optional[Path],
    run: bool,
    debug: bool,
    verbose: bool,
) -> None:
    """
    Assemble A64 subset source code.

    INPUT_FILE is the assembly source file (.s) to assemble.

    The output is a headerless binary loaded at address 0 by armrun.

    \b
    Examples:
        armasm hello.s               # Outputs hello.bin
        armasm hello.s -o out.bin    # Specify output file
        armasm hello.s --run         # Assemble and run
    """
    setup_logging(verbose)
    output_file = output if output is not None else input_file.with_suffix(".bin")
    asm = Assembler()

    try:
        if verbose:
            click.echo(f"Assembling {input_file}...")

        code = asm.assemble_file(input_file)
        asm.write_binary(output_file)
        if verbose:
            click.echo(f"Wrote {len(code)} bytes to {output_file}")

        if listing:
            asm.write_listing(listing)
            if verbose:
                click.echo(f"Wrote listing to {listing}")

        if symbols:
            asm.write_symbols(symbols)
            if verbose:
                click.echo(f"Wrote symbols to {symbols}")

        if verbose:
            click.echo(f"Assembly complete: {len(code)} bytes")
            click.echo(f"Defined {len(asm.get_symbols())} symbols")
    except Exception as e:
        handle_cli_exception(e, verbose=verbose, error_type="Assembly")

    if not (run or debug):
        return

    try:
        result = run_program(code, debug=debug)
    except Exception as e:
        handle_cli_exception(e, verbose=verbose, error_type="Run")

    if result.state is ExecState.FAULTED:
        sys.exit(ExitCode.BUILD_ERROR)


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
