"""
Armlet Error Hierarchy
======================

This module defines the exception hierarchy for the whole toolkit.
All exceptions inherit from ArmletError, allowing callers to catch every
toolkit error with a single except clause if desired.

Exception Hierarchy
-------------------
ArmletError (base)
├── AssemblerError (assembly-time)
│   ├── AssemblySyntaxError - lexical or syntax error in source
│   ├── UndefinedSymbolError - reference to an undefined label/constant
│   ├── DuplicateSymbolError - symbol defined more than once
│   ├── SymbolTableFullError - too many symbols
│   ├── NodePoolExhaustedError - too many AST nodes
│   ├── CodeBufferOverflowError - emitted bytes exceed buffer capacity
│   ├── ImmediateRangeError - immediate or offset cannot be encoded
│   ├── BranchRangeError - branch displacement out of range or misaligned
│   ├── OperandError - wrong operands for a mnemonic
│   └── DirectiveError - bad directive arguments
└── ExecutionFault (run-time, carries the program counter)

Error messages follow this format:
    filename:line:column: error: description
        source_line_text
        ^ (pointer to error location)
    hint: suggestion for fixing (when available)

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass
from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class ArmletError(Exception):
    """
    Base exception for all toolkit errors.

        try:
            Assembler().assemble_file("program.s")
        except ArmletError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Source Location Tracking
# =============================================================================

@dataclass(frozen=True)
class SourceLocation:
    """
    Represents a location in source code for error reporting.

    Attributes:
        filename: Name of the source file (or "<input>" for string input)
        line: Line number (1-indexed)
        column: Column number (1-indexed)
    """
    filename: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.filename}:{self.line}:{self.column}"


# =============================================================================
# Assembler Exceptions
# =============================================================================

class AssemblerError(ArmletError):
    """
    Base exception for all assembly-time errors.

    Attributes:
        message: The error description
        location: Where in the source the error occurred (optional)
        hint: A suggestion for fixing the error (optional)
        source_line: The actual source text at the error location (optional)
    """

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
        source_line: Optional[str] = None,
    ):
        self.message = message
        self.location = location
        self.hint = hint
        self.source_line = source_line
        super().__init__(self._format_message())

    @property
    def line(self) -> Optional[int]:
        """Line number of the error, if known."""
        return self.location.line if self.location else None

    def with_source_line(self, source_line: str) -> "AssemblerError":
        """
        Attach the offending source text and rebuild the message.

        The code generator does not see source text, so the assembler
        facade fills it in after the fact.
        """
        self.source_line = source_line
        self.args = (self._format_message(),)
        return self

    def _format_message(self) -> str:
        """
        Format the error message with location, source context, and hint.

        Example output:
            loop.s:7:5: error: undefined symbol 'lopo'
                b.lt lopo
                ^
            hint: did you mean 'loop'?
        """
        parts = []

        if self.location:
            parts.append(f"{self.location}: error: {self.message}")
        else:
            parts.append(f"error: {self.message}")

        if self.source_line is not None and self.location is not None:
            parts.append(f"    {self.source_line}")
            if self.location.column > 0:
                padding = " " * (4 + self.location.column - 1)
                parts.append(f"{padding}^")

        if self.hint:
            parts.append(f"hint: {self.hint}")

        return "\n".join(parts)

    def __str__(self) -> str:
        return self._format_message()


class AssemblySyntaxError(AssemblerError):
    """
    Syntax error in assembly source code.

    Raised when the lexer produces an error token or the parser meets
    a token sequence outside the grammar. Parsing never recovers: the
    first error aborts assembly.

    Examples:
        - Unterminated string literal
        - Unexpected character
        - Malformed memory operand
        - Trailing tokens after a statement
    """
    pass


class UndefinedSymbolError(AssemblerError):
    """
    Reference to a symbol that was never defined.

    Raised during pass 2 when a label reference cannot be resolved.
    Similar names are offered as a hint to catch typos.
    """

    def __init__(
        self,
        symbol: str,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
        source_line: Optional[str] = None,
        similar_symbols: Optional[list[str]] = None,
    ):
        self.symbol = symbol
        self.similar_symbols = similar_symbols or []

        if not hint and self.similar_symbols:
            suggestions = ", ".join(f"'{s}'" for s in self.similar_symbols[:3])
            hint = f"did you mean {suggestions}?"

        super().__init__(
            f"undefined symbol '{symbol}'",
            location=location,
            hint=hint,
            source_line=source_line,
        )


class DuplicateSymbolError(AssemblerError):
    """Symbol defined more than once."""

    def __init__(
        self,
        symbol: str,
        location: Optional[SourceLocation] = None,
        original_location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        self.symbol = symbol
        self.original_location = original_location

        hint = None
        if original_location:
            hint = f"'{symbol}' was first defined at {original_location}"

        super().__init__(
            f"duplicate symbol '{symbol}'",
            location=location,
            hint=hint,
            source_line=source_line,
        )


class SymbolTableFullError(AssemblerError):
    """The symbol table reached its fixed capacity."""

    def __init__(
        self,
        capacity: int,
        location: Optional[SourceLocation] = None,
    ):
        self.capacity = capacity
        super().__init__(
            f"symbol table full ({capacity} symbols)",
            location=location,
        )


class NodePoolExhaustedError(AssemblerError):
    """The parser's fixed-capacity node pool ran out of slots."""

    def __init__(
        self,
        capacity: int,
        location: Optional[SourceLocation] = None,
    ):
        self.capacity = capacity
        super().__init__(
            f"program too large: node pool exhausted ({capacity} nodes)",
            location=location,
            hint="split the program or raise the node pool capacity",
        )


class CodeBufferOverflowError(AssemblerError):
    """
    Emitted code and data exceed the output buffer.

    No partial binary is produced when this is raised.
    """

    def __init__(
        self,
        capacity: int,
        location: Optional[SourceLocation] = None,
    ):
        self.capacity = capacity
        super().__init__(
            f"code buffer overflow (capacity {capacity} bytes)",
            location=location,
        )


class ImmediateRangeError(AssemblerError):
    """
    Immediate value or memory offset cannot be encoded.

    Covers arithmetic immediates outside 0-4095 (and the shifted form),
    move-wide values that fit no 16-bit window, and load/store offsets
    that are out of range or not a multiple of the access size.
    """

    def __init__(
        self,
        value: int,
        message: str = "immediate value out of range",
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
    ):
        self.value = value
        super().__init__(f"{message}: {value}", location=location, hint=hint)


class BranchRangeError(AssemblerError):
    """
    Branch target beyond the instruction's displacement range.

    B/BL reach +/-128 MiB; B.cond, CBZ and CBNZ reach +/-1 MiB.
    Displacements must also be a multiple of four bytes.
    """

    def __init__(
        self,
        target: str,
        offset: int,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
        reason: str = "out of range",
    ):
        self.target = target
        self.offset = offset
        super().__init__(
            f"branch to '{target}' {reason} (offset {offset})",
            location=location,
            source_line=source_line,
        )


class OperandError(AssemblerError):
    """
    Wrong number or kind of operands for an instruction.

    Example:
        add x0, [x1]   ; memory operand not valid for add
    """
    pass


class DirectiveError(AssemblerError):
    """Error in directive arguments (e.g. .align out of range)."""
    pass


# =============================================================================
# Run-time Exceptions
# =============================================================================

class ExecutionFault(ArmletError):
    """
    Fatal run-time condition that moves the engine to the Faulted state.

    The engine records faults rather than raising them; this exception is
    raised only by callers that want a failed run to propagate.

    Attributes:
        message: Short description of the fault
        pc: Program counter of the faulting instruction
    """

    def __init__(self, message: str, pc: int):
        self.message = message
        self.pc = pc
        super().__init__(f"pc=0x{pc:04x}: {message}")
