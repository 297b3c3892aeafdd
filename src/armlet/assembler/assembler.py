"""
A64 Assembler - Main Interface
==============================

This module provides the main Assembler class, which is the primary interface
for assembling A64 source code. It coordinates the lexer, parser and code
generator to produce a flat binary loadable at address 0.

Example Usage
-------------
>>> from armlet.assembler import Assembler
>>>
>>> asm = Assembler()
>>> code = asm.assemble_source('''
...     mov x0, #42
...     prtn
...     halt
... ''')
>>> print(f"Generated {len(code)} bytes")
Generated 12 bytes
>>>
>>> asm.write_binary("answer.bin")

Command-Line Usage
------------------
The assembler can also be invoked from the command line:

    $ armasm answer.s -o answer.bin -l answer.lst -s answer.sym

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from pathlib import Path
import logging

from armlet.assembler.parser import NodePool, parse_source
from armlet.assembler.codegen import CodeGenerator
from armlet.errors import AssemblerError


logger = logging.getLogger(__name__)


class Assembler:
    """
    Main A64 assembler class.

    The pipeline is lexer -> parser (node pool) -> two-pass code generator.
    Assembly is all-or-nothing: the first error raises and no binary is
    kept.

    Attributes:
        capacity: Output buffer size in bytes
        max_symbols: Symbol table capacity
        pool_capacity: AST node pool capacity
    """

    def __init__(
        self,
        capacity: int = CodeGenerator.DEFAULT_CAPACITY,
        max_symbols: int = CodeGenerator.MAX_SYMBOLS,
        pool_capacity: int = NodePool.DEFAULT_CAPACITY,
    ):
        self.capacity = capacity
        self.max_symbols = max_symbols
        self.pool_capacity = pool_capacity
        self._codegen = CodeGenerator(capacity=capacity, max_symbols=max_symbols)

    # =========================================================================
    # Assembly Methods
    # =========================================================================

    def assemble_source(self, source: str, filename: str = "<input>") -> bytes:
        """
        Assemble source code from a string.

        Args:
            source: Assembly source code
            filename: Virtual filename for error messages

        Returns:
            Generated binary

        Raises:
            AssemblerError: If assembly fails
        """
        logger.debug(f"assembling {filename}")
        try:
            program = parse_source(source, filename, pool_capacity=self.pool_capacity)
            logger.debug(f"parsed {len(program.pool)} nodes")
            code = self._codegen.generate(program)
        except AssemblerError as e:
            if e.source_line is None and e.location is not None:
                lines = source.split("\n")
                if 0 < e.location.line <= len(lines):
                    e.with_source_line(lines[e.location.line - 1].rstrip("\r"))
            raise

        logger.info(f"{filename}: {len(code)} bytes, {len(self.get_symbols())} symbols")
        return code

    def assemble_file(self, filepath: str | Path) -> bytes:
        """
        Assemble source code from a file.

        Args:
            filepath: Path to assembly source file

        Returns:
            Generated binary

        Raises:
            AssemblerError: If assembly fails
            FileNotFoundError: If source file not found
        """
        filepath = Path(filepath)
        source = filepath.read_text()
        return self.assemble_source(source, str(filepath))

    # =========================================================================
    # Output Methods
    # =========================================================================

    def get_code(self) -> bytes:
        """Get the generated binary."""
        return self._codegen.get_code()

    def get_symbols(self) -> dict[str, int]:
        """
        Get the symbol table.

        Returns:
            Dictionary mapping defined symbol names to values
        """
        return self._codegen.get_symbols()

    def get_listing(self) -> str:
        """Get the assembly listing with addresses, code and source."""
        return self._codegen.get_listing()

    def write_binary(self, filepath: str | Path) -> None:
        """
        Write the raw binary (no header).

        Args:
            filepath: Output file path
        """
        code = self.get_code()
        Path(filepath).write_bytes(code)
        logger.info(f"wrote {len(code)} bytes to {filepath}")

    def write_listing(self, filepath: str | Path) -> None:
        """Write assembly listing file."""
        self._codegen.write_listing(filepath)
        logger.info(f"wrote listing to {filepath}")

    def write_symbols(self, filepath: str | Path) -> None:
        """Write symbol table file."""
        self._codegen.write_symbols(filepath)
        logger.info(f"wrote symbols to {filepath}")


# =============================================================================
# Convenience Functions
# =============================================================================

def assemble(source: str, filename: str = "<input>") -> bytes:
    """
    Convenience function to assemble source code.

    Raises:
        AssemblerError: If assembly fails
    """
    return Assembler().assemble_source(source, filename)


def assemble_file(filepath: str | Path) -> bytes:
    """Convenience function to assemble a file."""
    return Assembler().assemble_file(filepath)
