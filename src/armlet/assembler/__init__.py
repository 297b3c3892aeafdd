"""
A64 Subset Assembler
====================

This package converts a subset of AArch64 assembly into a flat
little-endian binary that the armlet execution engine loads at address 0.

Main Components
---------------
- **Assembler**: Facade that runs the whole pipeline
- **Lexer**: Produces one token per call from source text
- **Parser**: Builds statements into a fixed-capacity node pool
- **CodeGenerator**: Two-pass encoder with symbol table and output buffer

Assembly Process
----------------
1. **Parsing (Lexer + Parser)**:
   - Tokenize on demand; the parser holds one token of lookahead
   - Store every statement and operand in the node pool
2. **Code Generation (CodeGenerator)** (two-pass):
   - Pass 1: Label addresses, constants, sizes
   - Pass 2: Encode instructions, resolve references, emit data

Example Usage
-------------
>>> from armlet.assembler import Assembler
>>> asm = Assembler()
>>> code = asm.assemble_source('''
... start:
...     mov x0, #5
... loop:
...     subs x0, x0, #1
...     b.ne loop
...     ret
... ''')
>>> len(code)
16

Supported Features
------------------
- Arithmetic, logical, shift, multiply and divide instructions
- Move-wide immediates (movz/movn/movk and mov aliases)
- Loads and stores with offset, pre/post-index and register index
- Branches, conditional branches, compare-and-branch
- Extended opcodes for console, framebuffer, files, memory and timing
- Labels, .equ/.set constants, data and alignment directives
- Listing file and symbol table output
"""

from armlet.assembler.assembler import Assembler, assemble, assemble_file
from armlet.assembler.lexer import Lexer, Token, TokenType
from armlet.assembler.parser import (
    Parser,
    Program,
    NodePool,
    LabelNode,
    InstructionNode,
    DirectiveNode,
    parse_source,
)
from armlet.assembler.codegen import CodeGenerator, Symbol
from armlet.assembler.opcodes import (
    Mnemonic,
    CONDITION_NAMES,
    CONDITION_CODES,
    EXTENDED_OPCODES,
)

__all__ = [
    # Main class and functions
    "Assembler",
    "assemble",
    "assemble_file",
    # Lexer
    "Lexer",
    "Token",
    "TokenType",
    # Parser
    "Parser",
    "Program",
    "NodePool",
    "LabelNode",
    "InstructionNode",
    "DirectiveNode",
    "parse_source",
    # Code generator
    "CodeGenerator",
    "Symbol",
    # Opcodes
    "Mnemonic",
    "CONDITION_NAMES",
    "CONDITION_CODES",
    "EXTENDED_OPCODES",
]
