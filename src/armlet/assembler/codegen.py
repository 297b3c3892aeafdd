"""
A64 Code Generator
==================

This module turns a parsed Program into machine code. It implements the
classic two-pass scheme:

Pass 1 (Address Assignment)
---------------------------
- Walk all statements in order
- Assign each label the current address
- Advance the address by each statement's size without emitting bytes
- Bind ``.equ``/``.set`` constants (pass 1 only)

Pass 2 (Emission)
-----------------
- Walk the statements again from address 0
- Encode every instruction into its 32-bit word
- Resolve label references against the pass-1 symbol table
- Emit directive data

Every instruction is exactly four bytes, so the two passes agree on
addresses by construction.

Limits
------
- The output buffer has a fixed capacity (default 5120 bytes, the size
  of the execution engine's memory). Emitting past it raises
  CodeBufferOverflowError; no partial binary is returned.
- The symbol table holds at most 64 entries.

Output
------
The binary is a flat sequence of little-endian words (plus directive
data) loaded at address 0. There is no header.

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
import difflib
import logging
import struct

from armlet.errors import (
    AssemblerError,
    BranchRangeError,
    CodeBufferOverflowError,
    DirectiveError,
    DuplicateSymbolError,
    ImmediateRangeError,
    OperandError,
    SourceLocation,
    SymbolTableFullError,
    UndefinedSymbolError,
)
from armlet.assembler.parser import (
    DirectiveNode,
    ImmediateOperand,
    InstructionNode,
    LabelNode,
    LabelRefOperand,
    MemoryOperand,
    Node,
    Program,
    RegisterOperand,
    ShiftOperand,
    StringOperand,
)
from armlet.assembler import opcodes as op
from armlet.assembler.opcodes import Mnemonic


logger = logging.getLogger(__name__)


# =============================================================================
# Symbol Table Entry
# =============================================================================

@dataclass
class Symbol:
    """
    Symbol table entry.

    Attributes:
        name: Symbol name (case-sensitive)
        value: Address (labels) or constant value (.equ/.set)
        location: Where the symbol was defined (or first mentioned)
        is_defined: False for names only seen in .global so far
        is_global: True when named by .global/.globl
        is_constant: True for .equ/.set symbols
    """
    name: str
    value: int = 0
    location: Optional[SourceLocation] = None
    is_defined: bool = False
    is_global: bool = False
    is_constant: bool = False


@dataclass(frozen=True)
class ListingEntry:
    """One emitted statement: where it landed and what bytes it produced."""
    address: int
    data: bytes
    location: SourceLocation


# =============================================================================
# Code Generator
# =============================================================================

class CodeGenerator:
    """
    Generates A64 machine code from a parsed Program.

    The code generator maintains:
    - Symbol table with labels and constants
    - Program counter tracking
    - Output code buffer (fixed capacity)
    - Listing entries for each emitted statement

    Usage:
        codegen = CodeGenerator()
        code = codegen.generate(program)
        symbols = codegen.get_symbols()
    """

    MAX_SYMBOLS = 64
    DEFAULT_CAPACITY = 5120

    DATA_WIDTHS = {"byte": 1, "hword": 2, "word": 4, "quad": 8}

    def __init__(self, capacity: int = DEFAULT_CAPACITY, max_symbols: int = MAX_SYMBOLS):
        """
        Initialize the code generator.

        Args:
            capacity: Output buffer size in bytes
            max_symbols: Symbol table capacity
        """
        self.capacity = capacity
        self.max_symbols = max_symbols

        self._symbols: dict[str, Symbol] = {}
        self._code = bytearray()
        self._pc = 0
        self._pass = 1
        self._section = "text"
        self._listing: list[ListingEntry] = []
        self._program: Optional[Program] = None

        # Encoder dispatch keyed by mnemonic
        self._encoders: dict[Mnemonic, Callable[[InstructionNode, list[Node]], int]] = {}
        for m in (Mnemonic.ADD, Mnemonic.ADDS, Mnemonic.SUB, Mnemonic.SUBS):
            self._encoders[m] = self._encode_add_sub
        for m in (Mnemonic.CMP, Mnemonic.CMN, Mnemonic.TST):
            self._encoders[m] = self._encode_compare
        for m in op.LOGICAL_REG_OPS:
            self._encoders[m] = self._encode_logical
        for m in (Mnemonic.MVN, Mnemonic.NEG):
            self._encoders[m] = self._encode_negate
        for m in (Mnemonic.LSL, Mnemonic.LSR, Mnemonic.ASR, Mnemonic.ROR):
            self._encoders[m] = self._encode_shift
        for m in (Mnemonic.UDIV, Mnemonic.SDIV):
            self._encoders[m] = self._encode_divide
        for m in op.MOVE_WIDE_OPS:
            self._encoders[m] = self._encode_move_wide
        for m in op.LOAD_STORE_FORMS:
            self._encoders[m] = self._encode_load_store
        for m in op.UNSCALED_LOAD_STORE:
            self._encoders[m] = self._encode_load_store_unscaled
        for m in (Mnemonic.LDP, Mnemonic.STP):
            self._encoders[m] = self._encode_pair
        for m in (Mnemonic.B, Mnemonic.BL):
            self._encoders[m] = self._encode_branch
        for m in (Mnemonic.CBZ, Mnemonic.CBNZ):
            self._encoders[m] = self._encode_compare_branch
        for m in (Mnemonic.BR, Mnemonic.BLR, Mnemonic.RET):
            self._encoders[m] = self._encode_branch_register
        for m in op.HINTS:
            self._encoders[m] = self._encode_hint
        for m in op.BARRIERS:
            self._encoders[m] = self._encode_barrier
        for m in (Mnemonic.SVC, Mnemonic.HVC, Mnemonic.SMC):
            self._encoders[m] = self._encode_exception
        for m in op.EXTENDED_OPCODES:
            self._encoders[m] = self._encode_extended
        self._encoders[Mnemonic.MOV] = self._encode_mov
        self._encoders[Mnemonic.MUL] = self._encode_mul
        self._encoders[Mnemonic.B_COND] = self._encode_conditional_branch

    # =========================================================================
    # Public Interface
    # =========================================================================

    def generate(self, program: Program) -> bytes:
        """
        Run both passes and return the binary.

        Args:
            program: Parsed program

        Returns:
            Flat little-endian binary, loadable at address 0

        Raises:
            AssemblerError: On the first code-generation error
        """
        self._symbols.clear()
        self._code.clear()
        self._listing.clear()
        self._program = program

        self._pass = 1
        self._pc = 0
        self._section = "text"
        for stmt in program.statements():
            self._pass1_statement(stmt)
        logger.debug(f"pass 1 complete: {self._pc} bytes, {len(self._symbols)} symbols")

        for sym in self._symbols.values():
            if sym.is_global and not sym.is_defined:
                logger.warning(f"global symbol '{sym.name}' is never defined")

        self._pass = 2
        self._pc = 0
        self._section = "text"
        try:
            for stmt in program.statements():
                self._pass2_statement(stmt)
        except AssemblerError:
            # all-or-nothing: no partial binary survives a failed pass
            self._code.clear()
            self._listing.clear()
            raise
        logger.debug(f"pass 2 complete: emitted {len(self._code)} bytes")

        return bytes(self._code)

    def get_code(self) -> bytes:
        """Return the generated binary."""
        return bytes(self._code)

    def get_symbols(self) -> dict[str, int]:
        """Return a name -> value map of all defined symbols."""
        return {name: s.value for name, s in self._symbols.items() if s.is_defined}

    def get_symbol_table(self) -> list[Symbol]:
        """Return all symbol entries, including undefined globals."""
        return list(self._symbols.values())

    def get_listing_entries(self) -> list[ListingEntry]:
        return list(self._listing)

    def get_listing(self) -> str:
        """
        Get the assembly listing as a string.

        Returns:
            The listing showing addresses, generated bytes, and source lines,
            followed by the symbol table.
        """
        source_lines = self._program.source.split("\n") if self._program else []
        lines = []
        lines.append("A64 Assembler Listing")
        lines.append("=" * 60)
        lines.append("")
        lines.append("Addr  Code              Line  Source")
        lines.append("-" * 60)
        for entry in self._listing:
            line_no = entry.location.line
            text = source_lines[line_no - 1].rstrip() if 0 < line_no <= len(source_lines) else ""
            if len(entry.data) == 4 and entry.address % 4 == 0:
                code = f"{int.from_bytes(entry.data, 'little'):08X}"
            else:
                code = entry.data[:8].hex(" ").upper()
            lines.append(f"{entry.address:04X}  {code:16s}  {line_no:4d}  {text}")
        lines.append("")
        lines.append("Symbol Table")
        lines.append("-" * 30)
        for name, sym in sorted(self._symbols.items()):
            if sym.is_defined:
                lines.append(f"{name:20s} = 0x{sym.value:04X}")
        return "\n".join(lines)

    def write_listing(self, filepath: str | Path) -> None:
        """Write the assembly listing to a file."""
        with open(filepath, "w") as f:
            f.write(self.get_listing())

    def write_symbols(self, filepath: str | Path) -> None:
        """
        Write symbol table file.

        Format: NAME = 0xVALUE, with " global" appended for .global symbols
        """
        with open(filepath, "w") as f:
            f.write("# Symbol table\n")
            f.write("# Generated by armasm\n")
            for name, sym in sorted(self._symbols.items()):
                if not sym.is_defined:
                    continue
                suffix = " global" if sym.is_global else ""
                f.write(f"{name} = 0x{sym.value:04X}{suffix}\n")

    # =========================================================================
    # Pass 1
    # =========================================================================

    def _pass1_statement(self, stmt: Node) -> None:
        if isinstance(stmt, LabelNode):
            self._define_symbol(stmt.name, self._pc, stmt.location)
        elif isinstance(stmt, InstructionNode):
            self._advance(4, stmt.location)
        elif isinstance(stmt, DirectiveNode):
            self._process_directive(stmt)

    def _define_symbol(
        self,
        name: str,
        value: int,
        location: SourceLocation,
        is_constant: bool = False,
        redefinable: bool = False,
    ) -> None:
        """Define a label or constant in the symbol table."""
        sym = self._symbols.get(name)
        if sym is not None and sym.is_defined:
            if not (redefinable and sym.is_constant):
                raise DuplicateSymbolError(name, location=location, original_location=sym.location)
        if sym is None:
            sym = self._new_symbol(name, location)

        sym.value = value
        sym.location = location
        sym.is_defined = True
        sym.is_constant = is_constant
        logger.debug(f"define {name} = 0x{value:x}")

    def _new_symbol(self, name: str, location: SourceLocation) -> Symbol:
        if len(self._symbols) >= self.max_symbols:
            raise SymbolTableFullError(self.max_symbols, location)
        sym = Symbol(name=name, location=location)
        self._symbols[name] = sym
        return sym

    def _advance(self, size: int, location: SourceLocation) -> None:
        """Account for `size` bytes without emitting (pass 1)."""
        if self._pc + size > self.capacity:
            raise CodeBufferOverflowError(self.capacity, location)
        self._pc += size

    # =========================================================================
    # Pass 2
    # =========================================================================

    def _pass2_statement(self, stmt: Node) -> None:
        if isinstance(stmt, InstructionNode):
            word = self._encode(stmt)
            self._emit(struct.pack("<I", word), stmt.location)
        elif isinstance(stmt, DirectiveNode):
            self._process_directive(stmt)

    def _emit(self, data: bytes, location: SourceLocation) -> None:
        """Append bytes to the output (pass 2) or just count them (pass 1)."""
        if self._pass == 1:
            self._advance(len(data), location)
            return
        if self._pc + len(data) > self.capacity:
            raise CodeBufferOverflowError(self.capacity, location)
        self._listing.append(ListingEntry(self._pc, bytes(data), location))
        self._code.extend(data)
        self._pc += len(data)

    def _encode(self, inst: InstructionNode) -> int:
        operands = [self._program.node(h) for h in inst.operands] if self._program else []
        encoder = self._encoders[inst.mnemonic]
        return encoder(inst, operands) & 0xFFFFFFFF

    # =========================================================================
    # Symbol Resolution
    # =========================================================================

    def _resolve(self, name: str, location: SourceLocation) -> int:
        sym = self._symbols.get(name)
        if sym is None or not sym.is_defined:
            defined = [n for n, s in self._symbols.items() if s.is_defined]
            similar = difflib.get_close_matches(name, defined, n=3)
            raise UndefinedSymbolError(name, location=location, similar_symbols=similar)
        return sym.value

    def _value_of(self, node: Node, what: str = "value") -> int:
        """Evaluate an immediate or a symbol reference."""
        if isinstance(node, ImmediateOperand):
            return node.value
        if isinstance(node, LabelRefOperand):
            return self._resolve(node.name, node.location)
        raise OperandError(f"expected {what}", node.location)

    # =========================================================================
    # Operand Helpers
    # =========================================================================

    def _expect_operands(self, inst: InstructionNode, ops: list[Node], *counts: int) -> None:
        if len(ops) not in counts:
            expected = " or ".join(str(c) for c in counts)
            raise OperandError(
                f"'{inst.spelling or inst.mnemonic.value}' expects {expected} operands, got {len(ops)}",
                inst.location,
            )

    def _register(self, node: Node, what: str = "register") -> RegisterOperand:
        if not isinstance(node, RegisterOperand):
            raise OperandError(f"expected {what}", node.location)
        return node

    def _data_register(self, node: Node) -> RegisterOperand:
        """A register in a data-processing slot, where 31 means zero."""
        reg = self._register(node)
        if reg.is_sp:
            raise OperandError("sp is not allowed here", node.location)
        return reg

    def _sp_register(self, node: Node) -> RegisterOperand:
        """A register in a slot where 31 means sp."""
        reg = self._register(node)
        if reg.is_zr:
            raise OperandError(
                "zero register is not allowed here (register 31 is sp in this form)",
                node.location,
                hint="use 'mov' to load a constant, or the register form",
            )
        return reg

    def _same_width(self, inst: InstructionNode, *regs: RegisterOperand) -> int:
        """Return sf (1 for 64-bit) after checking all registers agree."""
        widths = {r.is_64bit for r in regs}
        if len(widths) != 1:
            raise OperandError("register width mismatch (mix of x and w registers)", inst.location)
        return 1 if regs[0].is_64bit else 0

    def _optional_shift(self, ops: list[Node], index: int) -> Optional[ShiftOperand]:
        if len(ops) > index:
            node = ops[index]
            if not isinstance(node, ShiftOperand):
                raise OperandError("expected shift (e.g. lsl #2)", node.location)
            return node
        return None

    # =========================================================================
    # Data Processing
    # =========================================================================

    def _shifted_register(
        self,
        opcode: int,
        sf: int,
        rd: int,
        rn: int,
        rm: int,
        shift: Optional[ShiftOperand],
        allow_ror: bool,
    ) -> int:
        shift_type = 0
        amount = 0
        if shift is not None:
            kinds = {"lsl": 0, "lsr": 1, "asr": 2}
            if allow_ror:
                kinds["ror"] = 3
            if shift.kind not in kinds:
                raise OperandError(f"shift '{shift.kind}' not allowed here", shift.location)
            shift_type = kinds[shift.kind]
            amount = shift.amount
            if not 0 <= amount < (64 if sf else 32):
                raise ImmediateRangeError(amount, "shift amount out of range", shift.location)
        return (
            (sf << 31) | opcode | (shift_type << 22) | (rm << 16)
            | (amount << 10) | (rn << 5) | rd
        )

    def _add_sub_immediate(
        self,
        mnemonic: Mnemonic,
        sf: int,
        rd: int,
        rn: int,
        value: int,
        shift: Optional[ShiftOperand],
        location: SourceLocation,
    ) -> int:
        """
        Encode the immediate form of add/adds/sub/subs.

        Negative values flip add and sub. Values above 4095 use the
        shifted form when they are a multiple of 4096.
        """
        if value < 0:
            flipped = {
                Mnemonic.ADD: Mnemonic.SUB, Mnemonic.SUB: Mnemonic.ADD,
                Mnemonic.ADDS: Mnemonic.SUBS, Mnemonic.SUBS: Mnemonic.ADDS,
            }
            mnemonic = flipped[mnemonic]
            value = -value

        if shift is not None:
            if shift.kind != "lsl" or shift.amount not in (0, 12):
                raise OperandError("immediate shift must be 'lsl #0' or 'lsl #12'", shift.location)
            sh = 1 if shift.amount == 12 else 0
            imm12 = value
        elif value <= op.IMM12_MAX:
            sh, imm12 = 0, value
        elif value % 4096 == 0 and (value >> 12) <= op.IMM12_MAX:
            sh, imm12 = 1, value >> 12
        else:
            raise ImmediateRangeError(
                value,
                location=location,
                hint="use 0-4095, or a multiple of 4096 up to 4095 << 12",
            )

        if imm12 > op.IMM12_MAX:
            raise ImmediateRangeError(value, location=location)

        return (
            (sf << 31) | op.ADD_SUB_IMM_OPS[mnemonic] | (sh << 22)
            | (imm12 << 10) | (rn << 5) | rd
        )

    def _encode_add_sub(self, inst: InstructionNode, ops: list[Node]) -> int:
        """
        add/adds/sub/subs in register or immediate form.

        ``add x0, x1`` means ``add x0, x0, x1``.
        """
        self._expect_operands(inst, ops, 2, 3, 4)
        rd = self._register(ops[0])
        if len(ops) == 2 or (len(ops) == 3 and isinstance(ops[2], ShiftOperand)):
            rn, source, rest = rd, ops[1], ops[2:]
        else:
            rn, source, rest = self._register(ops[1]), ops[2], ops[3:]
        shift = self._optional_shift(rest, 0)

        if isinstance(source, RegisterOperand):
            for reg in (rd, rn, source):
                if reg.is_sp:
                    raise OperandError("sp is not allowed in register form", reg.location)
            sf = self._same_width(inst, rd, rn, source)
            return self._shifted_register(
                op.ADD_SUB_REG_OPS[inst.mnemonic], sf, rd.number, rn.number, source.number,
                shift, allow_ror=False,
            )

        # immediate form: rn is sp-or-register, rd too unless flags are set
        self._sp_register(rn)
        if inst.mnemonic in (Mnemonic.ADDS, Mnemonic.SUBS):
            self._data_register(rd)
        else:
            self._sp_register(rd)
        sf = self._same_width(inst, rd, rn)
        value = self._value_of(source, "register or immediate")
        return self._add_sub_immediate(
            inst.mnemonic, sf, rd.number, rn.number, value, shift, inst.location
        )

    def _encode_compare(self, inst: InstructionNode, ops: list[Node]) -> int:
        """cmp/cmn/tst: flag-setting ops with the zero register as destination."""
        self._expect_operands(inst, ops, 2, 3)
        rn = self._register(ops[0])
        source = ops[1]
        shift = self._optional_shift(ops, 2)

        if inst.mnemonic == Mnemonic.TST:
            self._data_register(rn)
            rm = self._data_register(source)
            sf = self._same_width(inst, rn, rm)
            return self._shifted_register(
                op.LOGICAL_REG_OPS[Mnemonic.ANDS], sf, op.REG_ZR, rn.number, rm.number,
                shift, allow_ror=True,
            )

        base = Mnemonic.SUBS if inst.mnemonic == Mnemonic.CMP else Mnemonic.ADDS
        if isinstance(source, RegisterOperand):
            self._data_register(rn)
            rm = self._data_register(source)
            sf = self._same_width(inst, rn, rm)
            return self._shifted_register(
                op.ADD_SUB_REG_OPS[base], sf, op.REG_ZR, rn.number, rm.number,
                shift, allow_ror=False,
            )

        self._sp_register(rn)
        sf = 1 if rn.is_64bit else 0
        value = self._value_of(source, "register or immediate")
        return self._add_sub_immediate(base, sf, op.REG_ZR, rn.number, value, shift, inst.location)

    def _encode_logical(self, inst: InstructionNode, ops: list[Node]) -> int:
        self._expect_operands(inst, ops, 2, 3, 4)
        rd = self._data_register(ops[0])
        if len(ops) == 2 or (len(ops) == 3 and isinstance(ops[2], ShiftOperand)):
            rn, source, rest = rd, ops[1], ops[2:]
        else:
            rn, source, rest = self._data_register(ops[1]), ops[2], ops[3:]

        if not isinstance(source, RegisterOperand):
            raise OperandError(
                f"'{inst.mnemonic.value}' takes register operands only",
                source.location,
                hint="load the mask into a register first",
            )
        rm = self._data_register(source)
        sf = self._same_width(inst, rd, rn, rm)
        return self._shifted_register(
            op.LOGICAL_REG_OPS[inst.mnemonic], sf, rd.number, rn.number, rm.number,
            self._optional_shift(rest, 0), allow_ror=True,
        )

    def _encode_negate(self, inst: InstructionNode, ops: list[Node]) -> int:
        """mvn (orn from zero) and neg (sub from zero)."""
        self._expect_operands(inst, ops, 2, 3)
        rd = self._data_register(ops[0])
        rm = self._data_register(ops[1])
        sf = self._same_width(inst, rd, rm)
        if inst.mnemonic == Mnemonic.MVN:
            opcode, allow_ror = op.LOGICAL_REG_OPS[Mnemonic.ORN], True
        else:
            opcode, allow_ror = op.ADD_SUB_REG_OPS[Mnemonic.SUB], False
        return self._shifted_register(
            opcode, sf, rd.number, op.REG_ZR, rm.number,
            self._optional_shift(ops, 2), allow_ror=allow_ror,
        )

    def _encode_shift(self, inst: InstructionNode, ops: list[Node]) -> int:
        """
        lsl/lsr/asr/ror by register (two-source form) or by immediate.

        Immediate shifts are the bitfield aliases (UBFM/SBFM) and, for
        ror, EXTR with both sources equal.
        """
        self._expect_operands(inst, ops, 2, 3)
        rd = self._data_register(ops[0])
        if len(ops) == 2:
            rn, source = rd, ops[1]
        else:
            rn, source = self._data_register(ops[1]), ops[2]

        if isinstance(source, RegisterOperand):
            rm = self._data_register(source)
            sf = self._same_width(inst, rd, rn, rm)
            return (
                (sf << 31) | op.DATA_2SRC[1] | (rm.number << 16)
                | (op.DATA_2SRC_OPS[inst.mnemonic] << 10) | (rn.number << 5) | rd.number
            )

        sf = self._same_width(inst, rd, rn)
        size = 64 if sf else 32
        amount = self._value_of(source, "register or shift amount")
        if not 0 <= amount < size:
            raise ImmediateRangeError(amount, "shift amount out of range", inst.location)

        if inst.mnemonic == Mnemonic.ROR:
            return (
                (sf << 31) | op.EXTR | (sf << 22) | (rn.number << 16)
                | (amount << 10) | (rn.number << 5) | rd.number
            )
        if inst.mnemonic == Mnemonic.LSL:
            base, immr, imms = op.UBFM, (-amount) % size, size - 1 - amount
        elif inst.mnemonic == Mnemonic.LSR:
            base, immr, imms = op.UBFM, amount, size - 1
        else:
            base, immr, imms = op.SBFM, amount, size - 1
        return (
            (sf << 31) | base | (sf << 22) | (immr << 16)
            | (imms << 10) | (rn.number << 5) | rd.number
        )

    def _encode_mul(self, inst: InstructionNode, ops: list[Node]) -> int:
        """mul is madd with the zero register as accumulator."""
        self._expect_operands(inst, ops, 2, 3)
        regs = [self._data_register(o) for o in ops]
        rd, rn, rm = (regs[0], regs[0], regs[1]) if len(regs) == 2 else regs
        sf = self._same_width(inst, rd, rn, rm)
        return (
            (sf << 31) | op.MADD | (rm.number << 16) | (op.REG_ZR << 10)
            | (rn.number << 5) | rd.number
        )

    def _encode_divide(self, inst: InstructionNode, ops: list[Node]) -> int:
        self._expect_operands(inst, ops, 2, 3)
        regs = [self._data_register(o) for o in ops]
        rd, rn, rm = (regs[0], regs[0], regs[1]) if len(regs) == 2 else regs
        sf = self._same_width(inst, rd, rn, rm)
        return (
            (sf << 31) | op.DATA_2SRC[1] | (rm.number << 16)
            | (op.DATA_2SRC_OPS[inst.mnemonic] << 10) | (rn.number << 5) | rd.number
        )

    # =========================================================================
    # Moves
    # =========================================================================

    def _encode_mov(self, inst: InstructionNode, ops: list[Node]) -> int:
        """
        mov between registers, or of an immediate/constant.

        Register moves are ``orr rd, zr, rm``, except moves to or from sp
        which are ``add rd, rn, #0``.
        """
        self._expect_operands(inst, ops, 2)
        rd = self._register(ops[0])
        source = ops[1]

        if isinstance(source, RegisterOperand):
            sf = self._same_width(inst, rd, source)
            if rd.is_sp or source.is_sp:
                self._sp_register(rd)
                self._sp_register(source)
                return (sf << 31) | op.ADD_SUB_IMM_OPS[Mnemonic.ADD] | (source.number << 5) | rd.number
            return (
                (sf << 31) | op.LOGICAL_REG_OPS[Mnemonic.ORR] | (source.number << 16)
                | (op.REG_ZR << 5) | rd.number
            )

        if rd.is_sp:
            raise OperandError("cannot move an immediate into sp", rd.location)
        value = self._value_of(source, "register or immediate")
        return self.encode_move_immediate(rd.number, rd.is_64bit, value, inst.location)

    @staticmethod
    def encode_move_immediate(
        rd: int,
        is_64bit: bool,
        value: int,
        location: Optional[SourceLocation] = None,
    ) -> int:
        """
        Encode ``mov rd, #value`` as a single MOVZ or MOVN.

        The value is taken modulo the register width. MOVZ is used when the
        value occupies one 16-bit window; otherwise MOVN is used when the
        complement does. Anything else needs several instructions and is
        rejected.

        Raises:
            ImmediateRangeError: If no single move-wide instruction fits
        """
        bits = 64 if is_64bit else 32
        mask = (1 << bits) - 1
        if value < -(1 << (bits - 1)) or value > mask:
            raise ImmediateRangeError(value, f"immediate does not fit a {bits}-bit register", location)

        chosen = op.move_wide_fields(value, bits)
        if chosen is None:
            raise ImmediateRangeError(
                value,
                "value cannot be encoded in a single move instruction",
                location,
                hint="build it with movz followed by movk",
            )
        mnemonic, hw, imm16 = chosen
        sf = 1 if is_64bit else 0
        return (sf << 31) | op.MOVE_WIDE_OPS[mnemonic] | (hw << 21) | (imm16 << 5) | rd

    def _encode_move_wide(self, inst: InstructionNode, ops: list[Node]) -> int:
        """Explicit movz/movn/movk with optional ``lsl #n``."""
        self._expect_operands(inst, ops, 2, 3)
        rd = self._data_register(ops[0])
        imm16 = self._value_of(ops[1], "16-bit immediate")
        if not 0 <= imm16 <= 0xFFFF:
            raise ImmediateRangeError(imm16, "move-wide immediate must be 0-65535", inst.location)

        shift = self._optional_shift(ops, 2)
        amount = 0
        if shift is not None:
            limit = 64 if rd.is_64bit else 32
            if shift.kind != "lsl" or shift.amount % 16 or not 0 <= shift.amount < limit:
                raise OperandError("shift must be lsl by a multiple of 16", shift.location)
            amount = shift.amount

        sf = 1 if rd.is_64bit else 0
        return (
            (sf << 31) | op.MOVE_WIDE_OPS[inst.mnemonic] | ((amount // 16) << 21)
            | (imm16 << 5) | rd.number
        )

    # =========================================================================
    # Branches
    # =========================================================================

    def _branch_offset(
        self,
        target: Node,
        minimum: int,
        maximum: int,
        location: SourceLocation,
    ) -> int:
        """
        Compute a branch displacement in bytes.

        A label target is relative to this instruction; a bare immediate
        is already a relative byte offset.
        """
        if isinstance(target, LabelRefOperand):
            name = target.name
            offset = self._resolve(name, target.location) - self._pc
        elif isinstance(target, ImmediateOperand):
            name = f"#{target.value}"
            offset = target.value
        else:
            raise OperandError("expected branch target", target.location)

        if offset % 4:
            raise BranchRangeError(name, offset, location, reason="is not word aligned")
        if not minimum <= offset <= maximum:
            raise BranchRangeError(name, offset, location)
        return offset

    def _encode_branch(self, inst: InstructionNode, ops: list[Node]) -> int:
        self._expect_operands(inst, ops, 1)
        offset = self._branch_offset(ops[0], op.BRANCH26_MIN, op.BRANCH26_MAX, inst.location)
        base = op.BL if inst.mnemonic == Mnemonic.BL else op.B
        return base | ((offset >> 2) & 0x3FFFFFF)

    def _encode_conditional_branch(self, inst: InstructionNode, ops: list[Node]) -> int:
        self._expect_operands(inst, ops, 1)
        offset = self._branch_offset(ops[0], op.BRANCH19_MIN, op.BRANCH19_MAX, inst.location)
        return op.B_COND | (((offset >> 2) & 0x7FFFF) << 5) | inst.condition

    def _encode_compare_branch(self, inst: InstructionNode, ops: list[Node]) -> int:
        self._expect_operands(inst, ops, 2)
        rt = self._data_register(ops[0])
        offset = self._branch_offset(ops[1], op.BRANCH19_MIN, op.BRANCH19_MAX, inst.location)
        base = op.CBNZ if inst.mnemonic == Mnemonic.CBNZ else op.CBZ
        sf = 1 if rt.is_64bit else 0
        return (sf << 31) | base | (((offset >> 2) & 0x7FFFF) << 5) | rt.number

    def _encode_branch_register(self, inst: InstructionNode, ops: list[Node]) -> int:
        bases = {Mnemonic.BR: op.BR, Mnemonic.BLR: op.BLR, Mnemonic.RET: op.RET}
        if inst.mnemonic == Mnemonic.RET:
            self._expect_operands(inst, ops, 0, 1)
        else:
            self._expect_operands(inst, ops, 1)
        rn = self._data_register(ops[0]).number if ops else op.REG_LR
        return bases[inst.mnemonic] | (rn << 5)

    # =========================================================================
    # Loads and Stores
    # =========================================================================

    def _encode_load_store(self, inst: InstructionNode, ops: list[Node]) -> int:
        self._expect_operands(inst, ops, 2)
        rt = self._data_register(ops[0])
        forms = op.LOAD_STORE_FORMS[inst.mnemonic]
        if rt.is_64bit not in forms:
            raise OperandError(f"'{inst.mnemonic.value}' requires a 64-bit register", rt.location)
        size, opc = forms[rt.is_64bit]
        target = ops[1]

        if not isinstance(target, MemoryOperand):
            return self._encode_load_literal(inst, rt, target)

        base = target.base
        if target.index is not None:
            return (
                (size << 30) | op.LDST_REG_BASE | (opc << 22) | (target.index << 16)
                | (base << 5) | rt.number
            )

        offset = target.offset
        if target.pre_index or target.post_index:
            if not op.IMM9_MIN <= offset <= op.IMM9_MAX:
                raise ImmediateRangeError(
                    offset, "writeback offset must be -256..255", target.location
                )
            idx = op.IDX_PRE if target.pre_index else op.IDX_POST
            return (
                (size << 30) | op.LDST_IMM9_BASE | (opc << 22) | ((offset & 0x1FF) << 12)
                | (idx << 10) | (base << 5) | rt.number
            )

        scale = 1 << size
        unscaled = op.UNSCALED_BY_SCALED[inst.mnemonic].value
        if offset % scale:
            raise ImmediateRangeError(
                offset,
                f"offset must be a multiple of {scale}",
                target.location,
                hint=f"use '{unscaled}' for an unscaled offset in -256..255",
            )
        if not 0 <= offset >> size <= op.IMM12_MAX:
            raise ImmediateRangeError(
                offset,
                f"memory offset out of range (0..{op.IMM12_MAX * scale})",
                target.location,
                hint=f"use '{unscaled}' for a negative offset in -256..255" if offset < 0 else None,
            )
        return (
            (size << 30) | op.LDST_UNSIGNED_BASE | (opc << 22) | ((offset >> size) << 10)
            | (base << 5) | rt.number
        )

    def _encode_load_store_unscaled(self, inst: InstructionNode, ops: list[Node]) -> int:
        """ldur/stur family: ``[base, #imm9]`` with a byte offset."""
        self._expect_operands(inst, ops, 2)
        rt = self._data_register(ops[0])
        scaled = op.UNSCALED_LOAD_STORE[inst.mnemonic]
        forms = op.LOAD_STORE_FORMS[scaled]
        if rt.is_64bit not in forms:
            raise OperandError(f"'{inst.mnemonic.value}' requires a 64-bit register", rt.location)
        size, opc = forms[rt.is_64bit]

        target = ops[1]
        if (
            not isinstance(target, MemoryOperand)
            or target.index is not None
            or target.pre_index
            or target.post_index
        ):
            raise OperandError("expected [base, #offset] memory operand", target.location)
        offset = target.offset
        if not op.IMM9_MIN <= offset <= op.IMM9_MAX:
            raise ImmediateRangeError(
                offset, "unscaled offset must be -256..255", target.location
            )
        return (
            (size << 30) | op.LDST_IMM9_BASE | (opc << 22) | ((offset & 0x1FF) << 12)
            | (op.IDX_UNSCALED << 10) | (target.base << 5) | rt.number
        )

    def _encode_load_literal(self, inst: InstructionNode, rt: RegisterOperand, target: Node) -> int:
        """PC-relative ``ldr rt, label`` (also ldrsw)."""
        if inst.mnemonic == Mnemonic.LDR:
            opc = 1 if rt.is_64bit else 0
        elif inst.mnemonic == Mnemonic.LDRSW:
            opc = 2
        else:
            raise OperandError(
                f"'{inst.mnemonic.value}' needs a memory operand", target.location
            )
        offset = self._branch_offset(target, op.BRANCH19_MIN, op.BRANCH19_MAX, inst.location)
        return (opc << 30) | op.LDR_LITERAL_BASE | (((offset >> 2) & 0x7FFFF) << 5) | rt.number

    def _encode_pair(self, inst: InstructionNode, ops: list[Node]) -> int:
        self._expect_operands(inst, ops, 3)
        rt = self._data_register(ops[0])
        rt2 = self._data_register(ops[1])
        sf = self._same_width(inst, rt, rt2)
        target = ops[2]
        if not isinstance(target, MemoryOperand) or target.index is not None:
            raise OperandError("expected [base, #offset] memory operand", target.location)

        scale = 8 if sf else 4
        if target.offset % scale:
            raise ImmediateRangeError(
                target.offset, f"pair offset must be a multiple of {scale}", target.location
            )
        imm7 = target.offset // scale
        if not op.IMM7_MIN <= imm7 <= op.IMM7_MAX:
            raise ImmediateRangeError(target.offset, "pair offset out of range", target.location)

        if target.post_index:
            mode = op.LDST_PAIR_POST
        elif target.pre_index:
            mode = op.LDST_PAIR_PRE
        else:
            mode = op.LDST_PAIR_OFFSET
        opc = 2 if sf else 0
        load = 1 if inst.mnemonic == Mnemonic.LDP else 0
        return (
            (opc << 30) | mode | (load << 22) | ((imm7 & 0x7F) << 15)
            | (rt2.number << 10) | (target.base << 5) | rt.number
        )

    # =========================================================================
    # System
    # =========================================================================

    def _encode_hint(self, inst: InstructionNode, ops: list[Node]) -> int:
        self._expect_operands(inst, ops, 0)
        return op.HINTS[inst.mnemonic]

    def _encode_barrier(self, inst: InstructionNode, ops: list[Node]) -> int:
        self._expect_operands(inst, ops, 0, 1)
        option = 15
        if ops:
            arg = ops[0]
            if isinstance(arg, LabelRefOperand) and arg.name.lower() in op.BARRIER_OPTIONS:
                option = op.BARRIER_OPTIONS[arg.name.lower()]
            elif isinstance(arg, ImmediateOperand) and 0 <= arg.value <= 15:
                option = arg.value
            else:
                raise OperandError("expected barrier option (sy, ish, ... or #0-15)", arg.location)
        return op.BARRIERS[inst.mnemonic] | (option << 8)

    def _encode_exception(self, inst: InstructionNode, ops: list[Node]) -> int:
        self._expect_operands(inst, ops, 1)
        imm16 = self._value_of(ops[0], "immediate")
        if not 0 <= imm16 <= 0xFFFF:
            raise ImmediateRangeError(imm16, "call number must be 0-65535", inst.location)
        bases = {Mnemonic.SVC: op.SVC, Mnemonic.HVC: op.HVC, Mnemonic.SMC: op.SMC}
        return bases[inst.mnemonic] | (imm16 << 5)

    def _encode_extended(self, inst: InstructionNode, ops: list[Node]) -> int:
        self._expect_operands(inst, ops, 0)
        return op.SVC | (op.EXTENDED_OPCODES[inst.mnemonic] << 5)

    # =========================================================================
    # Directives
    # =========================================================================

    def _process_directive(self, directive: DirectiveNode) -> None:
        """Handle a directive; runs in both passes."""
        name = directive.name
        args = [self._program.node(h) for h in directive.arguments]
        location = directive.location

        if name in ("text", "data", "bss"):
            self._section = name
        elif name == "section":
            if not args or not isinstance(args[0], LabelRefOperand):
                raise DirectiveError(".section needs a name", location)
            self._section = args[0].name.lstrip(".")
        elif name in ("global", "globl"):
            if self._pass == 1:
                self._declare_globals(args, location)
        elif name == "extern":
            pass
        elif name in ("equ", "set"):
            if self._pass == 1:
                self._define_constant(name, args, location)
        elif name in ("align", "p2align", "balign"):
            self._align(name, args, location)
        elif name in self.DATA_WIDTHS:
            self._emit_values(self.DATA_WIDTHS[name], args, location)
        elif name in ("ascii", "asciz", "string"):
            self._emit_strings(args, terminate=name != "ascii", location=location)
        elif name in ("space", "skip"):
            self._emit_space(args, location)
        else:
            raise DirectiveError(f"unsupported directive '.{name}'", location)

    def _declare_globals(self, args: list[Node], location: SourceLocation) -> None:
        if not args:
            raise DirectiveError(".global needs at least one symbol", location)
        for arg in args:
            if not isinstance(arg, LabelRefOperand):
                raise DirectiveError("expected symbol name", arg.location)
            sym = self._symbols.get(arg.name) or self._new_symbol(arg.name, arg.location)
            sym.is_global = True

    def _define_constant(self, name: str, args: list[Node], location: SourceLocation) -> None:
        if len(args) != 2 or not isinstance(args[0], LabelRefOperand):
            raise DirectiveError(f".{name} expects NAME, value", location)
        value = self._value_of(args[1], "constant value")
        self._define_symbol(
            args[0].name, value, location, is_constant=True, redefinable=name == "set"
        )

    def _constant_argument(self, node: Node, what: str) -> int:
        """Directive argument that must be known in pass 1."""
        if isinstance(node, ImmediateOperand):
            return node.value
        if isinstance(node, LabelRefOperand):
            sym = self._symbols.get(node.name)
            if sym is not None and sym.is_defined and sym.is_constant:
                return sym.value
        raise DirectiveError(f"{what} must be a constant", node.location)

    def _align(self, name: str, args: list[Node], location: SourceLocation) -> None:
        if not args or len(args) > 2:
            raise DirectiveError(f".{name} expects an alignment and optional fill", location)
        amount = self._constant_argument(args[0], "alignment")
        if name == "balign":
            if amount <= 0 or amount & (amount - 1):
                raise DirectiveError(".balign needs a power of two", location)
            boundary = amount
        else:
            if not 0 <= amount <= 12:
                raise DirectiveError(f".{name} power must be 0-12", location)
            boundary = 1 << amount
        fill = self._constant_argument(args[1], "fill") & 0xFF if len(args) == 2 else 0
        padding = (-self._pc) % boundary
        if padding:
            self._emit(bytes([fill]) * padding, location)

    def _emit_values(self, width: int, args: list[Node], location: SourceLocation) -> None:
        if not args:
            raise DirectiveError("data directive needs at least one value", location)
        bits = width * 8
        for arg in args:
            if self._pass == 1:
                self._emit(bytes(width), arg.location)
                continue
            value = self._value_of(arg, "number or symbol")
            if not -(1 << (bits - 1)) <= value < (1 << bits):
                raise ImmediateRangeError(value, f"value does not fit in {width} bytes", arg.location)
            self._emit((value & ((1 << bits) - 1)).to_bytes(width, "little"), arg.location)

    def _emit_strings(self, args: list[Node], terminate: bool, location: SourceLocation) -> None:
        if not args:
            raise DirectiveError("string directive needs a string", location)
        for arg in args:
            if not isinstance(arg, StringOperand):
                raise DirectiveError("expected string literal", arg.location)
            data = unescape_string(arg.value)
            if terminate:
                data += b"\0"
            self._emit(data, arg.location)

    def _emit_space(self, args: list[Node], location: SourceLocation) -> None:
        if not args or len(args) > 2:
            raise DirectiveError(".space expects a size and optional fill", location)
        count = self._constant_argument(args[0], "size")
        if count < 0:
            raise DirectiveError(".space size cannot be negative", location)
        fill = self._constant_argument(args[1], "fill") & 0xFF if len(args) == 2 else 0
        self._emit(bytes([fill]) * count, location)


# =============================================================================
# String Escapes
# =============================================================================

_ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "0": "\0",
    "\\": "\\",
    '"': '"',
}


def unescape_string(raw: str) -> bytes:
    r"""
    Convert a string literal body to bytes.

    Handles \n \r \t \0 \\ \". Any other escaped character stands for
    itself.
    """
    out = []
    chars = iter(raw)
    for char in chars:
        if char == "\\":
            escaped = next(chars, "\\")
            out.append(_ESCAPES.get(escaped, escaped))
        else:
            out.append(char)
    return "".join(out).encode("utf-8")
