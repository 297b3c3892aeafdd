"""
armdisasm - A64 Subset Disassembler Command-Line Interface
==========================================================

Disassembles a flat binary produced by armasm. The output can be fed back
to armasm and re-assembles to the same words.

Usage Examples
--------------
Disassemble a binary:
    $ armdisasm hello.bin

With base address:
    $ armdisasm code.bin --address 0x1000

Limit number of instructions:
    $ armdisasm code.bin --count 20

Re-assemblable output (no addresses or words):
    $ armdisasm code.bin --no-bytes -o listing.s

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from pathlib import Path
from typing import Optional

import click

from armlet import __version__
from armlet.cli.errors import handle_cli_exception, parse_address, setup_logging
from armlet.disassembler import A64Disassembler


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
    help="Output file (default: stdout)",
)
@click.option(
    "-a", "--address",
    type=str,
    default="0",
    help="Base address for disassembly (hex with 0x prefix or decimal). Default: 0",
)
@click.option(
    "-c", "--count",
    type=click.IntRange(min=0),
    default=None,
    help="Maximum number of instructions to disassemble (default: all)",
)
@click.option(
    "--no-bytes",
    is_flag=True,
    help="Print only the instruction text",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
@click.version_option(version=__version__, prog_name="armdisasm")
def main(
    input_file: Path,
    output: Optional[Path],
    address: str,
    count: Optional[int],
    no_bytes: bool,
    verbose: bool,
) -> None:
    """
    Disassemble an armlet binary.

    INPUT_FILE is the binary file to disassemble.

    \b
    Examples:
        armdisasm hello.bin
        armdisasm hello.bin --count 20 -o listing.txt
        armdisasm hello.bin --no-bytes > roundtrip.s
    """
    setup_logging(verbose)
    try:
        base_address = parse_address(address)
        data = input_file.read_bytes()

        if verbose:
            click.echo(f"Input file: {input_file} ({len(data)} bytes)", err=True)
            click.echo(f"Base address: 0x{base_address:04X}", err=True)
        if len(data) % 4:
            click.echo(f"Warning: ignoring {len(data) % 4} trailing byte(s)", err=True)

        disasm = A64Disassembler()
        output_lines = []
        if not no_bytes:
            output_lines.append(f"; Disassembly of {input_file.name}")
            output_lines.append(f"; Size: {len(data)} bytes")
            output_lines.append(f"; Base address: 0x{base_address:04X}")
            output_lines.append("")

        instructions = list(disasm.disassemble(data, start_address=base_address, count=count))
        for instr in instructions:
            output_lines.append(f"    {instr.text}" if no_bytes else str(instr))

        result = "\n".join(output_lines) + "\n"
        if output:
            output.write_text(result, encoding="utf-8")
            if verbose:
                click.echo(f"Output written to: {output}", err=True)
        else:
            click.echo(result, nl=False)

        if verbose:
            click.echo(f"Instructions disassembled: {len(instructions)}", err=True)
    except Exception as e:
        handle_cli_exception(e, verbose=verbose)


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
