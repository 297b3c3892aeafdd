"""
A64 Subset Disassembler Module
==============================

Turns binaries produced by the armlet assembler back into assembler text.
The output re-assembles to the same words, which makes the disassembler
useful both for debugging and for checking the code generator.

Usage:
    from armlet.disassembler import A64Disassembler, disassemble_word

    # Single word
    disassemble_word(0xD503201F)   # 'nop'

    # Whole binary
    disasm = A64Disassembler()
    for instr in disasm.disassemble(code, start_address=0):
        print(instr)
"""

from armlet.disassembler.a64 import (
    A64Disassembler,
    DisassembledInstruction,
    branch_target,
    disassemble_word,
)

__all__ = [
    "A64Disassembler",
    "DisassembledInstruction",
    "branch_target",
    "disassemble_word",
]
