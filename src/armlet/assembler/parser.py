"""
A64 Assembly Language Parser
============================

This module implements a parser for the A64 assembly subset. It pulls
tokens from the lexer one at a time and builds an abstract syntax tree
(AST) of statements for the code generator.

Node Pool
---------
Nodes live in a fixed-capacity arena (`NodePool`) and refer to each other
by small integer handles instead of object references. Statement lists
and operand lists are lists of handles. Running out of slots raises
NodePoolExhaustedError; nothing grows without bound.

Statement Types
---------------
1. **LabelNode**: Label definition
   ```asm
   loop:
   ```

2. **InstructionNode**: Mnemonic with operands
   ```asm
   add   x0, x0, #1
   ldr   x1, [sp, #8]
   b.ne  loop
   ```

3. **DirectiveNode**: Assembler directive
   ```asm
   .equ    COUNT, 10
   .asciz  "hello"
   ```

Operand Types
-------------
| Syntax          | Node                 |
|-----------------|----------------------|
| x0, w3, sp      | RegisterOperand      |
| #42, #-1, 7     | ImmediateOperand     |
| loop, #loop     | LabelRefOperand      |
| [x1, #8]!       | MemoryOperand        |
| lsl #16         | ShiftOperand         |
| "text"          | StringOperand        |

Memory Operands
---------------
```
[base]              offset 0
[base, #imm]        signed offset
[base, xM]          index register
[base, #imm]!       pre-index (base updated before access)
[base], #imm        post-index (base updated after access)
```

Parsing stops at the first error; there is no recovery.

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass, field
from typing import Iterator, Optional, Union

from armlet.errors import (
    AssemblySyntaxError,
    NodePoolExhaustedError,
    SourceLocation,
)
from armlet.assembler.lexer import Token, TokenType, Lexer
from armlet.assembler.opcodes import Mnemonic, lookup_mnemonic, parse_register


# =============================================================================
# AST Nodes
# =============================================================================

@dataclass
class Node:
    """
    Base class for all AST nodes.

    Every node has a source location for error reporting.
    """
    location: SourceLocation


@dataclass
class ProgramNode(Node):
    """Root node: handles of the statements in source order."""
    statements: list[int] = field(default_factory=list)


@dataclass
class LabelNode(Node):
    """Label definition (``name:``)."""
    name: str


@dataclass
class InstructionNode(Node):
    """
    Machine instruction.

    Attributes:
        mnemonic: Resolved mnemonic
        operands: Handles of operand nodes, in source order
        condition: Condition code for B_COND, None otherwise
        spelling: Mnemonic as written (for listings and messages)
    """
    mnemonic: Mnemonic
    operands: list[int] = field(default_factory=list)
    condition: Optional[int] = None
    spelling: str = ""


@dataclass
class DirectiveNode(Node):
    """
    Assembler directive.

    Attributes:
        name: Directive name without the dot, lower case
        arguments: Handles of argument nodes
    """
    name: str
    arguments: list[int] = field(default_factory=list)


@dataclass
class RegisterOperand(Node):
    """
    Register operand.

    Attributes:
        number: Register number 0-31
        is_64bit: True for x registers, sp, lr, xzr
        is_sp: True when written as ``sp`` or ``wsp``
    """
    number: int
    is_64bit: bool = True
    is_sp: bool = False

    @property
    def is_zr(self) -> bool:
        """True when written as ``xzr`` or ``wzr``."""
        return self.number == 31 and not self.is_sp


@dataclass
class ImmediateOperand(Node):
    """Signed integer operand."""
    value: int


@dataclass
class LabelRefOperand(Node):
    """Reference to a label or constant by name."""
    name: str


@dataclass
class MemoryOperand(Node):
    """
    Memory addressing operand.

    Exactly one of `index` and `offset` is meaningful: `index` is None for
    immediate-offset forms, and `offset` is 0 for register-index forms.
    `pre_index` and `post_index` are never both set.
    """
    base: int
    index: Optional[int] = None
    offset: int = 0
    pre_index: bool = False
    post_index: bool = False


@dataclass
class ShiftOperand(Node):
    """Shift modifier such as ``lsl #16``."""
    kind: str
    amount: int


@dataclass
class StringOperand(Node):
    """String literal argument; escapes are kept as written."""
    value: str


Operand = Union[
    RegisterOperand,
    ImmediateOperand,
    LabelRefOperand,
    MemoryOperand,
    ShiftOperand,
    StringOperand,
]


# =============================================================================
# Node Pool
# =============================================================================

class NodePool:
    """
    Fixed-capacity arena of AST nodes addressed by integer handles.

    Usage:
        pool = NodePool(capacity=256)
        handle = pool.add(LabelNode(location, "start"))
        node = pool[handle]
    """

    DEFAULT_CAPACITY = 4096

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.capacity = capacity
        self._nodes: list[Node] = []

    def add(self, node: Node) -> int:
        """
        Store a node and return its handle.

        Raises:
            NodePoolExhaustedError: If the pool is full
        """
        if len(self._nodes) >= self.capacity:
            raise NodePoolExhaustedError(self.capacity, node.location)
        self._nodes.append(node)
        return len(self._nodes) - 1

    def __getitem__(self, handle: int) -> Node:
        return self._nodes[handle]

    def __len__(self) -> int:
        return len(self._nodes)


@dataclass
class Program:
    """
    Parse result: the node pool plus the handle of the root ProgramNode.

    The code generator walks statements with `statements()` and looks up
    operands with `node()`.
    """
    pool: NodePool
    root: int
    source: str = ""
    filename: str = "<input>"

    def node(self, handle: int) -> Node:
        return self.pool[handle]

    def statements(self) -> Iterator[Node]:
        """Iterate over statement nodes in source order."""
        program = self.pool[self.root]
        for handle in program.statements:
            yield self.pool[handle]

    def operands(self, node: Union[InstructionNode, DirectiveNode]) -> list[Node]:
        """Resolve the operand (or argument) handles of a statement."""
        handles = node.operands if isinstance(node, InstructionNode) else node.arguments
        return [self.pool[h] for h in handles]


# =============================================================================
# Directive Names
# =============================================================================

SECTION_DIRECTIVES = frozenset({"text", "data", "bss", "section"})
SYMBOL_DIRECTIVES = frozenset({"global", "globl", "extern", "equ", "set"})
ALIGN_DIRECTIVES = frozenset({"align", "balign", "p2align"})
DATA_DIRECTIVES = frozenset({
    "byte", "hword", "word", "quad",
    "ascii", "asciz", "string",
    "space", "skip",
})

DIRECTIVES = SECTION_DIRECTIVES | SYMBOL_DIRECTIVES | ALIGN_DIRECTIVES | DATA_DIRECTIVES

SHIFT_NAMES = frozenset({"lsl", "lsr", "asr", "ror"})


# =============================================================================
# Parser Implementation
# =============================================================================

class Parser:
    """
    Parses A64 assembly source into a node pool.

    Usage:
        parser = Parser(Lexer(source, "prog.s"))
        program = parser.parse()
        for stmt in program.statements():
            ...
    """

    def __init__(self, lexer: Lexer, pool: Optional[NodePool] = None):
        """
        Initialize parser.

        Args:
            lexer: Token source
            pool: Node pool to fill (a fresh default-capacity pool if None)
        """
        self._lexer = lexer
        self._pool = pool if pool is not None else NodePool()
        self._current = lexer.next_token()

    def parse(self) -> Program:
        """
        Parse the whole input.

        Returns:
            Program holding the filled node pool

        Raises:
            AssemblySyntaxError: On the first syntax error
            NodePoolExhaustedError: If the program needs too many nodes
        """
        root = ProgramNode(SourceLocation(self._lexer.filename, 1, 1))
        root_handle = self._pool.add(root)

        while not self._check(TokenType.EOF):
            if self._match(TokenType.NEWLINE):
                continue
            for handle in self._parse_statement():
                root.statements.append(handle)
            self._expect_end_of_statement()

        return Program(
            pool=self._pool,
            root=root_handle,
            source=self._lexer.source,
            filename=self._lexer.filename,
        )

    # =========================================================================
    # Token Navigation
    # =========================================================================

    def _advance(self) -> Token:
        """Consume the current token and return it."""
        token = self._current
        if token.type != TokenType.EOF:
            self._current = self._lexer.next_token()
        return token

    def _check(self, *types: TokenType) -> bool:
        return self._current.type in types

    def _check_next(self, *types: TokenType) -> bool:
        """Check the token after the current one without consuming."""
        return self._lexer.peek_token().type in types

    def _match(self, *types: TokenType) -> Optional[Token]:
        if self._current.type in types:
            return self._advance()
        return None

    def _expect(self, token_type: TokenType, message: str) -> Token:
        if self._current.type != token_type:
            raise self._error(message)
        return self._advance()

    def _error(self, message: str, token: Optional[Token] = None) -> AssemblySyntaxError:
        """
        Build a syntax error at a token (the current one by default).

        A lexical ERROR token always wins: its own message is more useful
        than whatever the parser expected to see.
        """
        token = token or self._current
        if token.type == TokenType.ERROR:
            message = str(token.value)
        return AssemblySyntaxError(
            message,
            token.location,
            source_line=self._lexer.get_line_text(token.line),
        )

    def _expect_end_of_statement(self) -> None:
        if not self._check(TokenType.NEWLINE, TokenType.EOF):
            raise self._error(f"expected newline after statement, found '{self._current.text}'")
        self._match(TokenType.NEWLINE)

    # =========================================================================
    # Statements
    # =========================================================================

    def _parse_statement(self) -> list[int]:
        """
        Parse one statement, or a label plus the statement after it.

        Returns:
            Handles of the statement node(s) produced
        """
        if self._check(TokenType.DOT):
            return [self._parse_directive()]

        if not self._check(TokenType.IDENTIFIER):
            raise self._error(f"unexpected '{self._current.text}' at start of statement")

        if self._check_next(TokenType.COLON):
            name_token = self._advance()
            self._advance()  # consume ':'
            handles = [self._pool.add(LabelNode(name_token.location, str(name_token.value)))]
            # A label may share its line with the statement it names
            if not self._check(TokenType.NEWLINE, TokenType.EOF):
                handles.extend(self._parse_statement())
            return handles

        return [self._parse_instruction()]

    def _parse_instruction(self) -> int:
        token = self._advance()
        spelling = str(token.value)
        resolved = lookup_mnemonic(spelling)
        if resolved is None:
            raise self._error(f"unknown mnemonic '{spelling}'", token)
        mnemonic, condition = resolved

        node = InstructionNode(token.location, mnemonic, condition=condition, spelling=spelling)
        if not self._check(TokenType.NEWLINE, TokenType.EOF):
            node.operands.append(self._parse_operand())
            while self._match(TokenType.COMMA):
                node.operands.append(self._parse_operand())
        return self._pool.add(node)

    def _parse_directive(self) -> int:
        dot = self._advance()
        name_token = self._expect(TokenType.IDENTIFIER, "expected directive name after '.'")
        name = str(name_token.value).lower()
        if name not in DIRECTIVES:
            raise self._error(f"unknown directive '.{name}'", name_token)

        node = DirectiveNode(dot.location, name)
        if not self._check(TokenType.NEWLINE, TokenType.EOF):
            node.arguments.append(self._parse_directive_argument())
            while self._match(TokenType.COMMA):
                node.arguments.append(self._parse_directive_argument())
        return self._pool.add(node)

    def _parse_directive_argument(self) -> int:
        token = self._current
        if token.type == TokenType.IDENTIFIER:
            self._advance()
            return self._pool.add(LabelRefOperand(token.location, str(token.value)))
        if token.type == TokenType.STRING:
            self._advance()
            return self._pool.add(StringOperand(token.location, str(token.value)))
        if token.type == TokenType.DOT:
            # section names such as .rodata
            self._advance()
            name = self._expect(TokenType.IDENTIFIER, "expected name after '.'")
            return self._pool.add(LabelRefOperand(token.location, f".{name.value}"))
        if token.type == TokenType.HASH:
            self._advance()
        value = self._parse_signed_number("expected number, string or symbol in directive")
        return self._pool.add(ImmediateOperand(token.location, value))

    # =========================================================================
    # Operands
    # =========================================================================

    def _parse_operand(self) -> int:
        """
        Parse one instruction operand.

        Dispatch is on the first token: ``[`` memory, ``#`` immediate,
        identifier register/shift/label, bare number immediate.
        """
        token = self._current

        if token.type == TokenType.LBRACKET:
            return self._parse_memory_operand()

        if token.type == TokenType.HASH:
            self._advance()
            if self._check(TokenType.IDENTIFIER):
                name = self._advance()
                return self._pool.add(LabelRefOperand(token.location, str(name.value)))
            value = self._parse_signed_number("expected immediate value after '#'")
            return self._pool.add(ImmediateOperand(token.location, value))

        if token.type == TokenType.IDENTIFIER:
            name = str(token.value)
            register = parse_register(name)
            if register is not None:
                self._advance()
                number, is_64bit, is_sp = register
                return self._pool.add(RegisterOperand(token.location, number, is_64bit, is_sp))
            if name.lower() in SHIFT_NAMES and self._check_next(TokenType.HASH):
                self._advance()
                self._advance()  # consume '#'
                amount = self._parse_signed_number("expected shift amount")
                return self._pool.add(ShiftOperand(token.location, name.lower(), amount))
            self._advance()
            return self._pool.add(LabelRefOperand(token.location, name))

        if token.type in (TokenType.NUMBER, TokenType.MINUS):
            value = self._parse_signed_number("expected operand")
            return self._pool.add(ImmediateOperand(token.location, value))

        raise self._error(f"unexpected '{token.text}' in operand")

    def _parse_signed_number(self, message: str) -> int:
        """Parse ``NUMBER`` or ``- NUMBER``."""
        negative = self._match(TokenType.MINUS) is not None
        token = self._expect(TokenType.NUMBER, message)
        value = int(token.value)
        return -value if negative else value

    def _parse_register(self, message: str) -> RegisterOperand:
        token = self._current
        register = parse_register(str(token.value)) if token.type == TokenType.IDENTIFIER else None
        if register is None:
            raise self._error(message)
        self._advance()
        number, is_64bit, is_sp = register
        return RegisterOperand(token.location, number, is_64bit, is_sp)

    def _parse_memory_operand(self) -> int:
        """
        Parse ``[base (, #imm | , reg)?] (!)? (, #imm)?``.

        The base register is stored inline (its number) rather than as a
        separate node; the index register likewise.
        """
        open_bracket = self._advance()
        base = self._parse_register("expected base register after '['")
        if not base.is_64bit:
            raise self._error("base register must be a 64-bit register", open_bracket)
        if base.is_zr:
            # register 31 is sp as a base
            raise self._error("base register cannot be xzr (use sp)", open_bracket)

        node = MemoryOperand(open_bracket.location, base.number)

        if self._match(TokenType.COMMA):
            if self._match(TokenType.HASH):
                node.offset = self._parse_signed_number("expected offset after '#'")
            elif self._check(TokenType.IDENTIFIER):
                index = self._parse_register("expected index register or offset")
                if not index.is_64bit or index.is_sp:
                    raise self._error(
                        "index register must be x0-x30 or xzr (no extend forms)", open_bracket
                    )
                node.index = index.number
            else:
                node.offset = self._parse_signed_number("expected index register or offset")

        self._expect(TokenType.RBRACKET, "expected ']' to close memory operand")

        if self._match(TokenType.BANG):
            if node.index is not None:
                raise self._error("pre-index requires an immediate offset", open_bracket)
            node.pre_index = True

        if self._check(TokenType.COMMA) and self._check_next(TokenType.HASH):
            if node.pre_index:
                raise self._error("pre-index and post-index cannot be combined", open_bracket)
            if node.index is not None or node.offset != 0:
                raise self._error("post-index requires a bare base register", open_bracket)
            self._advance()  # ','
            self._advance()  # '#'
            node.offset = self._parse_signed_number("expected post-index offset")
            node.post_index = True

        return self._pool.add(node)


# =============================================================================
# Convenience Functions
# =============================================================================

def parse_source(
    source: str,
    filename: str = "<input>",
    pool_capacity: int = NodePool.DEFAULT_CAPACITY,
) -> Program:
    """
    Parse assembly source text.

    Args:
        source: Assembly source
        filename: Name used in error messages
        pool_capacity: Maximum number of AST nodes

    Returns:
        Parsed Program

    Raises:
        AssemblySyntaxError: On the first syntax error
    """
    parser = Parser(Lexer(source, filename), NodePool(pool_capacity))
    return parser.parse()
