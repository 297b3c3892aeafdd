"""
A64 Assembly Language Lexer
===========================

This module implements a lexer (tokenizer) for the A64 subset accepted by
the assembler. It converts source text into a stream of tokens that the
parser consumes one at a time.

Token Types
-----------
- IDENTIFIER: Labels, mnemonics, register names, directive names
- NUMBER: Decimal, hex (0xFF), binary (0b1010), optionally negative
- STRING: Double-quoted strings ("hello"), escapes kept verbatim
- Punctuation: : , # [ ] ! . + -
- NEWLINE: End of line
- EOF: End of input
- ERROR: Lexical error; the token value is the diagnostic message

The lexer never raises. An unterminated string or an unrecognised
character yields an ERROR token and lexing continues, leaving it to the
parser to decide whether to abort.

Comments
--------
- Semicolon: "; comment"
- Double slash: "// comment"

Both run to the end of the line; the newline itself is still a token.

Conditional Branches
--------------------
An identifier that is exactly ``b`` followed by ``.`` absorbs the dot and
the condition letters, so ``b.eq`` lexes as the single identifier
``b.eq``.

Example
-------
>>> from armlet.assembler.lexer import Lexer
>>> lexer = Lexer("loop: b.ne loop  ; spin", "example.s")
>>> for token in lexer.tokenize():
...     print(token)
Token(IDENTIFIER, 'loop', 1:1)
Token(COLON, ':', 1:5)
Token(IDENTIFIER, 'b.ne', 1:7)
Token(IDENTIFIER, 'loop', 1:12)
Token(EOF, 1:24)

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator, Optional
import string

from armlet.errors import SourceLocation


# =============================================================================
# Token Type Enumeration
# =============================================================================

class TokenType(Enum):
    """Token categories for the A64 assembly language."""

    # Structural tokens
    NEWLINE = auto()     # End of line (statement terminator)
    EOF = auto()         # End of input

    # Values
    IDENTIFIER = auto()  # Mnemonics, registers, labels, directive names
    NUMBER = auto()      # Integer literal (value is a Python int)
    STRING = auto()      # Double-quoted string (value is the raw body)

    # Punctuation
    COLON = auto()       # :
    COMMA = auto()       # ,
    HASH = auto()        # # (immediate prefix)
    LBRACKET = auto()    # [
    RBRACKET = auto()    # ]
    BANG = auto()        # ! (pre-index writeback)
    DOT = auto()         # . (directive prefix)
    PLUS = auto()        # +
    MINUS = auto()       # -

    # Diagnostics
    ERROR = auto()       # Lexical error; value holds the message


# =============================================================================
# Token Data Class
# =============================================================================

@dataclass(frozen=True)
class Token:
    """
    A single token from the source code.

    Attributes:
        type: The TokenType classification
        value: Identifier/string text, integer value, or error message
        line: Line number in source (1-indexed)
        column: Column number in source (1-indexed)
        filename: Name of the source file
        start: Offset of the first character in the source text
        end: Offset one past the last character
    """
    type: TokenType
    value: str | int | None
    line: int
    column: int
    filename: str
    start: int = 0
    end: int = 0

    def __repr__(self) -> str:
        if self.value is not None:
            return f"Token({self.type.name}, {self.value!r}, {self.line}:{self.column})"
        return f"Token({self.type.name}, {self.line}:{self.column})"

    @property
    def location(self) -> SourceLocation:
        """Return a SourceLocation for error reporting."""
        return SourceLocation(self.filename, self.line, self.column)

    @property
    def text(self) -> str:
        """Human-readable rendering of the token for diagnostics."""
        if self.type == TokenType.NEWLINE:
            return "end of line"
        if self.type == TokenType.EOF:
            return "end of input"
        if self.value is None:
            return self.type.name.lower()
        return str(self.value)


# =============================================================================
# Lexer Implementation
# =============================================================================

class Lexer:
    """
    Tokenizes A64 assembly source code one token per call.

    Usage:
        lexer = Lexer(source_text, filename)
        token = lexer.next_token()      # consume
        token = lexer.peek_token()      # look without consuming
        tokens = list(lexer.tokenize()) # everything up to and including EOF

    Attributes:
        source: The source code being tokenized
        filename: Name of the source file (for error reporting)
    """

    IDENT_START = string.ascii_letters + "_"
    IDENT_CHARS = string.ascii_letters + string.digits + "_"

    SINGLE_CHAR_TOKENS = {
        ":": TokenType.COLON,
        ",": TokenType.COMMA,
        "#": TokenType.HASH,
        "[": TokenType.LBRACKET,
        "]": TokenType.RBRACKET,
        "!": TokenType.BANG,
        ".": TokenType.DOT,
        "+": TokenType.PLUS,
        "-": TokenType.MINUS,
    }

    def __init__(self, source: str, filename: str = "<input>", line_number: int = 1):
        """
        Initialize the lexer with source code.

        Args:
            source: The assembly source code to tokenize
            filename: Name of the source file (for error messages)
            line_number: Starting line number (default 1)
        """
        self.source = source
        self.filename = filename

        self._pos = 0
        self._line = line_number
        self._column = 1
        self._peeked: Optional[Token] = None

    # =========================================================================
    # Public Interface
    # =========================================================================

    def next_token(self) -> Token:
        """
        Consume and return the next token.

        After the end of input every call returns another EOF token.
        """
        if self._peeked is not None:
            token, self._peeked = self._peeked, None
            return token
        return self._scan_token()

    def peek_token(self) -> Token:
        """Return the next token without consuming it."""
        if self._peeked is None:
            self._peeked = self._scan_token()
        return self._peeked

    def tokenize(self) -> Iterator[Token]:
        """
        Generate tokens from the source, ending with a single EOF token.

        Yields:
            Token objects representing each lexical element
        """
        while True:
            token = self.next_token()
            yield token
            if token.type == TokenType.EOF:
                return

    def get_line_text(self, line: int) -> str:
        """Return the text of a 1-indexed source line (empty if out of range)."""
        lines = self.source.split("\n")
        if 1 <= line <= len(lines):
            return lines[line - 1].rstrip("\r")
        return ""

    # =========================================================================
    # Character Access Methods
    # =========================================================================

    def _at_end(self) -> bool:
        return self._pos >= len(self.source)

    def _peek(self, offset: int = 0) -> str:
        """
        Look at character at current position + offset without advancing.

        Returns empty string if past end of source.
        """
        pos = self._pos + offset
        if pos >= len(self.source):
            return ""
        return self.source[pos]

    def _advance(self) -> str:
        """Consume and return the current character, tracking line/column."""
        if self._at_end():
            return ""

        char = self.source[self._pos]
        self._pos += 1

        if char == "\n":
            self._line += 1
            self._column = 1
        else:
            self._column += 1

        return char

    def _make_token(
        self,
        token_type: TokenType,
        value: str | int | None,
        start_line: int,
        start_column: int,
        start_pos: int,
    ) -> Token:
        return Token(
            type=token_type,
            value=value,
            line=start_line,
            column=start_column,
            filename=self.filename,
            start=start_pos,
            end=self._pos,
        )

    # =========================================================================
    # Whitespace and Comment Handling
    # =========================================================================

    def _skip_trivia(self) -> None:
        """Skip spaces, tabs, carriage returns and comments (not newlines)."""
        while not self._at_end():
            char = self._peek()
            if char in " \t\r":
                self._advance()
            elif char == ";" or (char == "/" and self._peek(1) == "/"):
                while not self._at_end() and self._peek() != "\n":
                    self._advance()
            else:
                return

    # =========================================================================
    # Token Scanning
    # =========================================================================

    def _scan_token(self) -> Token:
        """Scan the next token from source."""
        self._skip_trivia()

        start_line = self._line
        start_column = self._column
        start_pos = self._pos

        if self._at_end():
            return self._make_token(TokenType.EOF, None, start_line, start_column, start_pos)

        char = self._peek()

        if char == "\n":
            self._advance()
            return self._make_token(TokenType.NEWLINE, None, start_line, start_column, start_pos)

        if char in self.IDENT_START:
            return self._scan_identifier(start_line, start_column, start_pos)

        if char.isdigit():
            return self._scan_number(start_line, start_column, start_pos, negative=False)

        # A minus sign directly followed by a digit is part of the literal
        if char == "-" and self._peek(1).isdigit():
            self._advance()
            return self._scan_number(start_line, start_column, start_pos, negative=True)

        if char == '"':
            return self._scan_string(start_line, start_column, start_pos)

        if char in self.SINGLE_CHAR_TOKENS:
            self._advance()
            return self._make_token(
                self.SINGLE_CHAR_TOKENS[char], char, start_line, start_column, start_pos
            )

        self._advance()
        return self._make_token(
            TokenType.ERROR,
            f"unexpected character '{char}'",
            start_line,
            start_column,
            start_pos,
        )

    def _scan_identifier(self, start_line: int, start_column: int, start_pos: int) -> Token:
        """
        Scan an identifier.

        ``b`` immediately followed by ``.`` continues through the condition
        suffix so that conditional branches form a single token.
        """
        chars = []
        while self._peek() and self._peek() in self.IDENT_CHARS:
            chars.append(self._advance())

        if len(chars) == 1 and chars[0] in "bB" and self._peek() == ".":
            chars.append(self._advance())
            while self._peek() and self._peek() in string.ascii_letters:
                chars.append(self._advance())

        return self._make_token(
            TokenType.IDENTIFIER, "".join(chars), start_line, start_column, start_pos
        )

    def _scan_number(
        self, start_line: int, start_column: int, start_pos: int, negative: bool
    ) -> Token:
        """
        Scan a decimal, 0x-hex or 0b-binary literal.

        Digits are collected first and converted afterwards, so a prefix
        with no digits is reported as an error token.
        """
        base = 10
        digits = string.digits
        if self._peek() == "0" and self._peek(1).lower() == "x":
            base, digits = 16, string.hexdigits
            self._advance()
            self._advance()
        elif self._peek() == "0" and self._peek(1).lower() == "b":
            base, digits = 2, "01"
            self._advance()
            self._advance()

        chars = []
        while self._peek() and self._peek() in digits:
            chars.append(self._advance())

        if not chars:
            kind = "hexadecimal" if base == 16 else "binary"
            return self._make_token(
                TokenType.ERROR,
                f"expected {kind} digits",
                start_line,
                start_column,
                start_pos,
            )

        value = int("".join(chars), base)
        if negative:
            value = -value
        return self._make_token(TokenType.NUMBER, value, start_line, start_column, start_pos)

    def _scan_string(self, start_line: int, start_column: int, start_pos: int) -> Token:
        """
        Scan a double-quoted string literal.

        The body is returned verbatim; escape sequences are only skipped
        over here so that an escaped quote does not end the string. The
        code generator interprets them when emitting bytes.
        """
        self._advance()  # consume opening "

        chars = []
        while not self._at_end() and self._peek() != "\n":
            char = self._advance()
            if char == '"':
                return self._make_token(
                    TokenType.STRING, "".join(chars), start_line, start_column, start_pos
                )
            chars.append(char)
            if char == "\\" and not self._at_end() and self._peek() != "\n":
                chars.append(self._advance())

        return self._make_token(
            TokenType.ERROR,
            "unterminated string literal",
            start_line,
            start_column,
            start_pos,
        )
