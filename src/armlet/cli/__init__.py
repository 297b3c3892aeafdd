"""
armlet Command-Line Interface
=============================

This package provides command-line tools for armlet:

- **armasm**: A64 subset assembler (optionally assemble-and-run)
- **armrun**: Execution engine with single-step debug mode
- **armdisasm**: Disassembler

Each tool is implemented as a Click-based CLI application with
comprehensive help and error reporting.
"""

__all__ = ["armasm", "armrun", "armdisasm"]
