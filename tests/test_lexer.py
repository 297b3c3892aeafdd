# =============================================================================
# test_lexer.py - Lexer Unit Tests
# =============================================================================
# Tests for the A64 assembler lexer.
#
# Test coverage includes:
#   - Number formats: decimal, 0x hexadecimal, 0b binary, negative literals
#   - Identifiers, registers and conditional-branch mnemonics
#   - Punctuation tokens
#   - Comments (; and //) and line structure
#   - One-token lookahead (peek/next)
#   - Error tokens
# =============================================================================

import pytest
from armlet.assembler.lexer import Lexer, TokenType, Token


# =============================================================================
# Helper Function
# =============================================================================

def tokenize(source: str) -> list:
    """Tokenize and drop the trailing EOF token."""
    lexer = Lexer(source, "<test>")
    return [t for t in lexer.tokenize() if t.type != TokenType.EOF]


def types(source: str) -> list:
    return [t.type for t in tokenize(source)]


# =============================================================================
# Basic Token Recognition Tests
# =============================================================================

class TestBasicTokens:
    """Test basic token recognition for simple inputs."""

    def test_empty_source(self):
        assert tokenize("") == []

    def test_whitespace_only(self):
        assert tokenize("   \t  \r") == []

    def test_identifier(self):
        tokens = tokenize("loop_1")
        assert len(tokens) == 1
        assert tokens[0].type == TokenType.IDENTIFIER
        assert tokens[0].value == "loop_1"

    def test_instruction_line(self):
        assert types("add x0, x1, #1") == [
            TokenType.IDENTIFIER, TokenType.IDENTIFIER, TokenType.COMMA,
            TokenType.IDENTIFIER, TokenType.COMMA, TokenType.HASH, TokenType.NUMBER,
        ]

    def test_punctuation(self):
        assert types(": , # [ ] ! . + -") == [
            TokenType.COLON, TokenType.COMMA, TokenType.HASH,
            TokenType.LBRACKET, TokenType.RBRACKET, TokenType.BANG,
            TokenType.DOT, TokenType.PLUS, TokenType.MINUS,
        ]

    def test_newline_token(self):
        assert types("nop\nnop") == [
            TokenType.IDENTIFIER, TokenType.NEWLINE, TokenType.IDENTIFIER,
        ]

    def test_eof_is_last(self):
        tokens = list(Lexer("nop").tokenize())
        assert tokens[-1].type == TokenType.EOF
        assert sum(1 for t in tokens if t.type == TokenType.EOF) == 1


# =============================================================================
# Number Tests
# =============================================================================

class TestNumbers:
    """Test numeric literal formats."""

    @pytest.mark.parametrize("text,value", [
        ("0", 0),
        ("42", 42),
        ("4095", 4095),
        ("0x2A", 42),
        ("0xff", 255),
        ("0XFF", 255),
        ("0b101", 5),
        ("0B11", 3),
    ])
    def test_number_formats(self, text, value):
        tokens = tokenize(text)
        assert len(tokens) == 1
        assert tokens[0].type == TokenType.NUMBER
        assert tokens[0].value == value

    def test_negative_decimal(self):
        tokens = tokenize("-5")
        assert len(tokens) == 1
        assert tokens[0].value == -5

    def test_negative_hex(self):
        tokens = tokenize("#-0x10")
        assert [t.type for t in tokens] == [TokenType.HASH, TokenType.NUMBER]
        assert tokens[1].value == -16

    def test_minus_with_space_is_separate(self):
        assert types("- 5") == [TokenType.MINUS, TokenType.NUMBER]

    def test_hex_prefix_without_digits(self):
        tokens = tokenize("0x")
        assert tokens[0].type == TokenType.ERROR
        assert "hexadecimal" in tokens[0].value


# =============================================================================
# Identifier Tests
# =============================================================================

class TestIdentifiers:
    """Test mnemonic, register and label spellings."""

    def test_conditional_branch_is_one_token(self):
        tokens = tokenize("b.ne loop")
        assert tokens[0].type == TokenType.IDENTIFIER
        assert tokens[0].value == "b.ne"
        assert tokens[1].value == "loop"

    def test_uppercase_conditional_branch(self):
        assert tokenize("B.GE done")[0].value == "B.GE"

    def test_other_identifier_then_dot(self):
        """Only a lone 'b' absorbs a following dot."""
        assert types("bl.x") == [TokenType.IDENTIFIER, TokenType.DOT, TokenType.IDENTIFIER]

    def test_label_definition(self):
        assert types("start:") == [TokenType.IDENTIFIER, TokenType.COLON]

    def test_directive(self):
        tokens = tokenize(".word 1")
        assert tokens[0].type == TokenType.DOT
        assert tokens[1].value == "word"


# =============================================================================
# String Tests
# =============================================================================

class TestStrings:
    """Test string literals."""

    def test_simple_string(self):
        tokens = tokenize('"Hello"')
        assert tokens[0].type == TokenType.STRING
        assert tokens[0].value == "Hello"

    def test_escapes_kept_verbatim(self):
        tokens = tokenize(r'"a\nb\"c"')
        assert tokens[0].type == TokenType.STRING
        assert tokens[0].value == r'a\nb\"c'

    def test_unterminated_string(self):
        tokens = tokenize('"abc\nnop')
        assert tokens[0].type == TokenType.ERROR
        assert "unterminated" in tokens[0].value


# =============================================================================
# Comment Tests
# =============================================================================

class TestComments:
    """Test comment handling."""

    def test_semicolon_comment(self):
        assert types("nop ; trailing words") == [TokenType.IDENTIFIER]

    def test_slash_comment(self):
        assert types("nop // trailing words") == [TokenType.IDENTIFIER]

    def test_comment_keeps_newline(self):
        assert types("; only a comment\nnop") == [TokenType.NEWLINE, TokenType.IDENTIFIER]

    def test_single_slash_is_error(self):
        assert types("/")[0] == TokenType.ERROR


# =============================================================================
# Position and Lookahead Tests
# =============================================================================

class TestPositions:
    """Test line/column tracking and the peek interface."""

    def test_line_and_column(self):
        tokens = tokenize("nop\n  add x0, x0, #1")
        add = tokens[2]
        assert add.value == "add"
        assert add.line == 2
        assert add.column == 3

    def test_location(self):
        token = tokenize("  nop")[0]
        assert str(token.location) == "<test>:1:3"

    def test_peek_does_not_consume(self):
        lexer = Lexer("mov x0")
        assert lexer.peek_token().value == "mov"
        assert lexer.peek_token().value == "mov"
        assert lexer.next_token().value == "mov"
        assert lexer.next_token().value == "x0"

    def test_eof_repeats(self):
        lexer = Lexer("")
        assert lexer.next_token().type == TokenType.EOF
        assert lexer.next_token().type == TokenType.EOF

    def test_unexpected_character(self):
        tokens = tokenize("@")
        assert tokens[0].type == TokenType.ERROR
        assert "'@'" in tokens[0].value

    def test_token_text(self):
        token = Token(TokenType.NEWLINE, None, 1, 1, "<test>")
        assert token.text == "end of line"

    def test_get_line_text(self):
        lexer = Lexer("nop\r\nhalt")
        assert lexer.get_line_text(2) == "halt"
        assert lexer.get_line_text(1) == "nop"
        assert lexer.get_line_text(9) == ""
