"""
A64 Subset Disassembler
=======================

Turns 32-bit instruction words back into assembler syntax. This is the
inverse of the code generator: every word the generator can produce
disassembles to text that the assembler accepts and re-encodes to the
same word.

Alias Recognition:
    - subs/adds with the zero register as destination print as cmp/cmn
    - ands with the zero register as destination prints as tst
    - sub from the zero register prints as neg; orn from it as mvn
    - orr from the zero register, or add #0 involving sp, prints as mov
    - movz/movn print as ``mov #value`` when that is how the generator
      would encode the value
    - ubfm/sbfm/extr print as the immediate shifts lsl/lsr/asr/ror
    - madd with the zero register as accumulator prints as mul

Register 31 prints as sp where it addresses memory (and in the immediate
add/sub forms) and as xzr/wzr elsewhere. Branch displacements print as
relative byte offsets (``b #-8``). Words outside the subset print as
``.word 0x????????``.

Usage:
    disasm = A64Disassembler()
    for instr in disasm.disassemble(code):
        print(instr)

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass
from typing import Iterator, Optional
import struct

from armlet.assembler import opcodes as op
from armlet.assembler.opcodes import (
    CONDITION_NAMES,
    EXTENDED_BY_ID,
    Mnemonic,
    field,
    sign_extend,
)


# =============================================================================
# Data Structures
# =============================================================================

@dataclass
class DisassembledInstruction:
    """
    One disassembled word.

    Attributes:
        address: Address of the word
        word: The 32-bit instruction word
        text: Assembler text
        comment: Optional annotation (branch target address)
    """
    address: int
    word: int
    text: str
    comment: str = ""

    def __str__(self) -> str:
        """Format as listing line: ADDRESS: WORD  TEXT"""
        line = f"{self.address:04X}: {self.word:08X}  {self.text}"
        if self.comment:
            return f"{line:<44} ; {self.comment}"
        return line

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "address": f"0x{self.address:04X}",
            "address_int": self.address,
            "word": f"0x{self.word:08X}",
            "text": self.text,
            "comment": self.comment,
        }


# =============================================================================
# Formatting Helpers
# =============================================================================

def _reg(number: int, sf: int, sp: bool = False) -> str:
    if number == 31:
        if sp:
            return "sp" if sf else "wsp"
        return "xzr" if sf else "wzr"
    return f"{'x' if sf else 'w'}{number}"


def _imm(value: int) -> str:
    if -10 < value < 10:
        return f"#{value}"
    if value < 0:
        return f"#-0x{-value:x}"
    return f"#0x{value:x}"


def _shift(kind: int, amount: int) -> str:
    if kind == 0 and amount == 0:
        return ""
    return f", {('lsl', 'lsr', 'asr', 'ror')[kind]} #{amount}"


def _word(word: int) -> str:
    return f".word 0x{word:08x}"


def _memory(base: int, offset: int) -> str:
    if offset == 0:
        return f"[{_reg(base, 1, sp=True)}]"
    return f"[{_reg(base, 1, sp=True)}, {_imm(offset)}]"


# =============================================================================
# Word Decoder
# =============================================================================

_HINT_NAMES = {word: m.value for m, word in op.HINTS.items()}
_BARRIER_NAMES = {word: m for m, word in op.BARRIERS.items()}
_BRANCH_REG_NAMES = {op.BR: "br", op.BLR: "blr", op.RET: "ret"}
_EXCEPTION_NAMES = {op.SVC: "svc", op.HVC: "hvc", op.SMC: "smc"}
_ADD_SUB_NAMES = ("add", "adds", "sub", "subs")
_LOGICAL_NAMES = {(0, 0): "and", (0, 1): "bic", (1, 0): "orr", (1, 1): "orn", (2, 0): "eor", (3, 0): "ands"}
_DATA_2SRC_NAMES = {code: m.value for m, code in op.DATA_2SRC_OPS.items()}


def disassemble_word(word: int) -> str:
    """
    Disassemble one instruction word.

    Args:
        word: 32-bit instruction word

    Returns:
        Assembler text, or ``.word 0x????????`` for words outside the subset

    Example:
        >>> disassemble_word(0xD2800540)
        'mov x0, #0x2a'
        >>> disassemble_word(0xD65F03C0)
        'ret'
    """
    word &= 0xFFFFFFFF

    if word in _HINT_NAMES:
        return _HINT_NAMES[word]
    if word & op.BARRIER_MASK in _BARRIER_NAMES:
        return _barrier(word)
    if word & op.BRANCH_REG_MASK in _BRANCH_REG_NAMES:
        rn = field(word, 5, 5)
        name = _BRANCH_REG_NAMES[word & op.BRANCH_REG_MASK]
        if name == "ret" and rn == op.REG_LR:
            return "ret"
        return f"{name} {_reg(rn, 1)}"
    if word & op.EXCEPTION_MASK in _EXCEPTION_NAMES:
        imm16 = field(word, 5, 16)
        kind = word & op.EXCEPTION_MASK
        if kind == op.SVC and imm16 in EXTENDED_BY_ID:
            return EXTENDED_BY_ID[imm16].value
        return f"{_EXCEPTION_NAMES[kind]} {_imm(imm16)}"

    for family, decoder in _FAMILIES:
        if op.matches(word, family):
            return decoder(word) or _word(word)
    return _word(word)


def _barrier(word: int) -> str:
    mnemonic = _BARRIER_NAMES[word & op.BARRIER_MASK]
    option = field(word, 8, 4)
    if mnemonic == Mnemonic.ISB:
        return "isb" if option == 15 else f"isb #{option}"
    name = op.BARRIER_OPTION_NAMES.get(option)
    return f"{mnemonic.value} {name}" if name else f"{mnemonic.value} #{option}"


def _add_sub_immediate(word: int) -> Optional[str]:
    sf = word >> 31
    opcode = field(word, 29, 2)
    shifted = field(word, 22, 2)
    if shifted > 1:
        return None
    imm12 = field(word, 10, 12)
    rn, rd = field(word, 5, 5), word & 0x1F
    sets_flags = opcode & 1
    suffix = ", lsl #12" if shifted else ""

    if opcode == 0 and not shifted and imm12 == 0 and (rn == 31 or rd == 31):
        return f"mov {_reg(rd, sf, sp=True)}, {_reg(rn, sf, sp=True)}"
    if sets_flags and rd == 31:
        name = "cmp" if opcode == 3 else "cmn"
        return f"{name} {_reg(rn, sf, sp=True)}, {_imm(imm12)}{suffix}"
    rd_text = _reg(rd, sf, sp=not sets_flags)
    return f"{_ADD_SUB_NAMES[opcode]} {rd_text}, {_reg(rn, sf, sp=True)}, {_imm(imm12)}{suffix}"


def _add_sub_register(word: int) -> Optional[str]:
    sf = word >> 31
    opcode = field(word, 29, 2)
    kind, amount = field(word, 22, 2), field(word, 10, 6)
    if kind == 3 or (not sf and amount > 31):
        return None
    rm, rn, rd = field(word, 16, 5), field(word, 5, 5), word & 0x1F
    shift = _shift(kind, amount)

    if opcode & 1 and rd == 31:
        name = "cmp" if opcode == 3 else "cmn"
        return f"{name} {_reg(rn, sf)}, {_reg(rm, sf)}{shift}"
    if opcode == 2 and rn == 31:
        return f"neg {_reg(rd, sf)}, {_reg(rm, sf)}{shift}"
    return f"{_ADD_SUB_NAMES[opcode]} {_reg(rd, sf)}, {_reg(rn, sf)}, {_reg(rm, sf)}{shift}"


def _logical(word: int) -> Optional[str]:
    sf = word >> 31
    name = _LOGICAL_NAMES.get((field(word, 29, 2), field(word, 21, 1)))
    kind, amount = field(word, 22, 2), field(word, 10, 6)
    if name is None or (not sf and amount > 31):
        return None
    rm, rn, rd = field(word, 16, 5), field(word, 5, 5), word & 0x1F
    shift = _shift(kind, amount)

    if name == "orr" and rn == 31 and not shift:
        return f"mov {_reg(rd, sf)}, {_reg(rm, sf)}"
    if name == "orn" and rn == 31:
        return f"mvn {_reg(rd, sf)}, {_reg(rm, sf)}{shift}"
    if name == "ands" and rd == 31:
        return f"tst {_reg(rn, sf)}, {_reg(rm, sf)}{shift}"
    return f"{name} {_reg(rd, sf)}, {_reg(rn, sf)}, {_reg(rm, sf)}{shift}"


def _move_wide(word: int) -> Optional[str]:
    sf = word >> 31
    bits = 64 if sf else 32
    opcode = field(word, 29, 2)
    hw = field(word, 21, 2)
    if opcode == 1 or (not sf and hw > 1):
        return None
    imm16 = field(word, 5, 16)
    rd = _reg(word & 0x1F, sf)
    shift = f", lsl #{hw * 16}" if hw else ""

    if opcode == 3:
        return f"movk {rd}, {_imm(imm16)}{shift}"

    mnemonic = Mnemonic.MOVZ if opcode == 2 else Mnemonic.MOVN
    value = imm16 << (hw * 16)
    if mnemonic == Mnemonic.MOVN:
        value = ~value & ((1 << bits) - 1)
    if op.move_wide_fields(value, bits) == (mnemonic, hw, imm16):
        return f"mov {rd}, {_imm(sign_extend(value, bits) if mnemonic == Mnemonic.MOVN else value)}"
    return f"{mnemonic.value} {rd}, {_imm(imm16)}{shift}"


def _bitfield(word: int) -> Optional[str]:
    sf = word >> 31
    bits = 64 if sf else 32
    opcode = field(word, 29, 2)
    immr, imms = field(word, 16, 6), field(word, 10, 6)
    if field(word, 22, 1) != sf or immr >= bits or imms >= bits:
        return None
    operands = f"{_reg(word & 0x1F, sf)}, {_reg(field(word, 5, 5), sf)}"

    if opcode == 2 and imms == bits - 1:
        return f"lsr {operands}, #{immr}"
    if opcode == 2 and imms + 1 == immr:
        return f"lsl {operands}, #{bits - 1 - imms}"
    if opcode == 0 and imms == bits - 1:
        return f"asr {operands}, #{immr}"
    return None


def _extract(word: int) -> Optional[str]:
    sf = word >> 31
    lsb = field(word, 10, 6)
    rm, rn = field(word, 16, 5), field(word, 5, 5)
    if field(word, 22, 1) != sf or rm != rn or lsb >= (64 if sf else 32):
        return None
    return f"ror {_reg(word & 0x1F, sf)}, {_reg(rn, sf)}, #{lsb}"


def _data_2src(word: int) -> Optional[str]:
    sf = word >> 31
    name = _DATA_2SRC_NAMES.get(field(word, 10, 6))
    if name is None:
        return None
    rm, rn, rd = field(word, 16, 5), field(word, 5, 5), word & 0x1F
    return f"{name} {_reg(rd, sf)}, {_reg(rn, sf)}, {_reg(rm, sf)}"


def _multiply_add(word: int) -> Optional[str]:
    sf = word >> 31
    if word & (1 << 15) or field(word, 10, 5) != 31:
        return None
    rm, rn, rd = field(word, 16, 5), field(word, 5, 5), word & 0x1F
    return f"mul {_reg(rd, sf)}, {_reg(rn, sf)}, {_reg(rm, sf)}"


def _branch_immediate(word: int) -> str:
    name = "bl" if word >> 31 else "b"
    return f"{name} {_imm(sign_extend(word, 26) * 4)}"


def _conditional_branch(word: int) -> str:
    offset = sign_extend(field(word, 5, 19), 19) * 4
    return f"b.{CONDITION_NAMES[word & 0xF]} {_imm(offset)}"


def _compare_branch(word: int) -> str:
    name = "cbnz" if word & (1 << 24) else "cbz"
    offset = sign_extend(field(word, 5, 19), 19) * 4
    return f"{name} {_reg(word & 0x1F, word >> 31)}, {_imm(offset)}"


def _transfer_register(size: int, opc: int) -> Optional[tuple[str, int]]:
    """Mnemonic and register width (sf) for a load/store (size, opc)."""
    mnemonic = op.LOAD_STORE_BY_FORM.get((size, opc))
    if mnemonic is None:
        return None
    if mnemonic in (Mnemonic.LDR, Mnemonic.STR):
        return mnemonic.value, 1 if size == 3 else 0
    if opc == 2:
        return mnemonic.value, 1
    return mnemonic.value, 0


def _load_store_unsigned(word: int) -> Optional[str]:
    size = word >> 30
    form = _transfer_register(size, field(word, 22, 2))
    if form is None:
        return None
    name, sf = form
    offset = field(word, 10, 12) << size
    return f"{name} {_reg(word & 0x1F, sf)}, {_memory(field(word, 5, 5), offset)}"


def _load_store_imm9(word: int) -> Optional[str]:
    size = word >> 30
    form = _transfer_register(size, field(word, 22, 2))
    mode = field(word, 10, 2)
    if form is None or mode == 2:
        return None
    name, sf = form
    base = field(word, 5, 5)
    offset = sign_extend(field(word, 12, 9), 9)
    rt = _reg(word & 0x1F, sf)

    if mode == op.IDX_POST:
        return f"{name} {rt}, [{_reg(base, 1, sp=True)}], {_imm(offset)}"
    if mode == op.IDX_PRE:
        return f"{name} {rt}, [{_reg(base, 1, sp=True)}, {_imm(offset)}]!"
    unscaled = op.UNSCALED_BY_SCALED[Mnemonic(name)].value
    return f"{unscaled} {rt}, {_memory(base, offset)}"


def _load_store_register(word: int) -> Optional[str]:
    size = word >> 30
    form = _transfer_register(size, field(word, 22, 2))
    if form is None or field(word, 13, 3) != 0b011 or word & (1 << 12):
        return None
    name, sf = form
    base, index = field(word, 5, 5), field(word, 16, 5)
    return f"{name} {_reg(word & 0x1F, sf)}, [{_reg(base, 1, sp=True)}, {_reg(index, 1)}]"


def _load_literal(word: int) -> Optional[str]:
    offset = _imm(sign_extend(field(word, 5, 19), 19) * 4)
    rt = word & 0x1F
    match word >> 30:
        case 0:
            return f"ldr {_reg(rt, 0)}, {offset}"
        case 1:
            return f"ldr {_reg(rt, 1)}, {offset}"
        case 2:
            return f"ldrsw {_reg(rt, 1)}, {offset}"
        case _:
            return None


def _load_store_pair(word: int) -> Optional[str]:
    opc = word >> 30
    mode = field(word, 23, 2)
    if opc not in (0, 2) or word & (1 << 26) or mode == 0:
        return None
    sf = 1 if opc == 2 else 0
    name = "ldp" if word & (1 << 22) else "stp"
    offset = sign_extend(field(word, 15, 7), 7) * (8 if sf else 4)
    base = _reg(field(word, 5, 5), 1, sp=True)
    regs = f"{_reg(word & 0x1F, sf)}, {_reg(field(word, 10, 5), sf)}"

    if mode == 1:
        return f"{name} {regs}, [{base}], {_imm(offset)}"
    if mode == 3:
        return f"{name} {regs}, [{base}, {_imm(offset)}]!"
    return f"{name} {regs}, {_memory(field(word, 5, 5), offset)}"


# Checked in order after the special-case words.
_FAMILIES = (
    (op.ADD_SUB_IMM, _add_sub_immediate),
    (op.ADD_SUB_REG, _add_sub_register),
    (op.LOGICAL_REG, _logical),
    (op.MOVE_WIDE, _move_wide),
    (op.BITFIELD, _bitfield),
    (op.EXTRACT, _extract),
    (op.DATA_2SRC, _data_2src),
    (op.MULTIPLY_ADD, _multiply_add),
    (op.BRANCH_IMM, _branch_immediate),
    (op.COND_BRANCH, _conditional_branch),
    (op.COMPARE_BRANCH, _compare_branch),
    (op.LDST_UNSIGNED, _load_store_unsigned),
    (op.LDST_REG, _load_store_register),
    (op.LDST_IMM9, _load_store_imm9),
    (op.LDR_LITERAL, _load_literal),
    (op.LDST_PAIR, _load_store_pair),
)


def branch_target(word: int, address: int) -> Optional[int]:
    """Absolute target of a pc-relative branch or literal load, else None."""
    if op.matches(word, op.BRANCH_IMM):
        return address + sign_extend(word, 26) * 4
    if (
        op.matches(word, op.COND_BRANCH)
        or op.matches(word, op.COMPARE_BRANCH)
        or op.matches(word, op.LDR_LITERAL)
    ):
        return address + sign_extend(field(word, 5, 19), 19) * 4
    return None


# =============================================================================
# A64 Disassembler
# =============================================================================

class A64Disassembler:
    """
    Disassembler for flat A64 binaries.

    Attributes:
        _symbol_table: Optional map of addresses to names, used to
            annotate branch targets
    """

    def __init__(self, symbol_table: Optional[dict[int, str]] = None):
        self._symbol_table = symbol_table or {}

    def disassemble_one(self, data: bytes, address: int = 0, offset: int = 0) -> DisassembledInstruction:
        """
        Disassemble the word at `offset` in data.

        Raises:
            ValueError: If fewer than four bytes remain
        """
        if offset + 4 > len(data):
            raise ValueError(f"Offset {offset} leaves less than one word in {len(data)} bytes")
        (word,) = struct.unpack_from("<I", data, offset)

        comment = ""
        target = branch_target(word, address)
        if target is not None:
            name = self._symbol_table.get(target)
            comment = f"-> 0x{target:04X}" + (f" ({name})" if name else "")
        return DisassembledInstruction(address, word, disassemble_word(word), comment)

    def disassemble(
        self,
        data: bytes,
        start_address: int = 0,
        count: Optional[int] = None,
    ) -> Iterator[DisassembledInstruction]:
        """
        Disassemble consecutive words.

        A trailing partial word is ignored.

        Args:
            data: Binary image
            start_address: Address of the first byte
            count: Maximum number of instructions (None = all)

        Yields:
            DisassembledInstruction per word
        """
        offset = 0
        produced = 0
        while offset + 4 <= len(data):
            if count is not None and produced >= count:
                break
            yield self.disassemble_one(data, start_address + offset, offset)
            offset += 4
            produced += 1

    def disassemble_to_text(self, data: bytes, start_address: int = 0, count: Optional[int] = None) -> str:
        """Disassemble and return a multi-line listing."""
        return "\n".join(str(instr) for instr in self.disassemble(data, start_address, count))

    def add_symbols(self, symbols: dict[str, int]) -> None:
        """Annotate branch targets with names from an assembler symbol map."""
        for name, address in symbols.items():
            self._symbol_table.setdefault(address, name)
