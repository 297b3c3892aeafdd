"""
A64 Subset Instruction Set Definition
=====================================

This module defines the instruction subset understood by the toolkit:
the mnemonic enumeration the parser produces, condition codes, register
names, the extended opcode table, and the fixed bit patterns that the
code generator emits and the interpreter and disassembler recognise.

Instruction words are 32 bits, stored little-endian.

Encoding Families
-----------------
Each family is identified by a (mask, value) pair: a word belongs to the
family when ``word & mask == value``. The interpreter tests special-case
words (NOP, RET, BR, BLR, SVC, barriers) before the general families so
that overlapping encodings resolve the same way every time.

| Family               | Example                  |
|----------------------|--------------------------|
| Add/sub immediate    | add x0, x1, #16          |
| Add/sub register     | subs x2, x3, x4          |
| Logical register     | orr x0, xzr, x1 (mov)    |
| Move wide            | movz x0, #1, lsl #16     |
| Bitfield / extract   | lsl x0, x1, #3           |
| Two-source           | udiv, lslv               |
| Multiply-add         | mul x0, x1, x2           |
| Branches             | b, bl, b.cond, cbz, cbnz |
| Loads/stores         | ldr, strb, ldp, stp      |
| System               | nop, svc, dmb            |

Extended Opcodes
----------------
Extended opcodes are SVC words whose 16-bit immediate names a host
service (console, framebuffer, files, memory helpers, timing, halt).

Reference
---------
- Arm Architecture Reference Manual for A-profile, section C4
  (A64 instruction set encoding)

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from enum import Enum
from typing import Optional


# =============================================================================
# Mnemonics
# =============================================================================

class Mnemonic(Enum):
    """
    Every mnemonic the parser accepts.

    The value is the canonical lower-case spelling. Conditional branches
    in all spellings (``b.eq``, ``beq``) map to B_COND with the condition
    carried separately.
    """
    # Data processing
    ADD = "add"
    ADDS = "adds"
    SUB = "sub"
    SUBS = "subs"
    AND = "and"
    ANDS = "ands"
    ORR = "orr"
    EOR = "eor"
    BIC = "bic"
    ORN = "orn"
    MVN = "mvn"
    MOV = "mov"
    MOVZ = "movz"
    MOVN = "movn"
    MOVK = "movk"
    ASR = "asr"
    LSL = "lsl"
    LSR = "lsr"
    ROR = "ror"
    CMP = "cmp"
    CMN = "cmn"
    TST = "tst"
    NEG = "neg"
    MUL = "mul"
    UDIV = "udiv"
    SDIV = "sdiv"

    # Loads and stores
    LDR = "ldr"
    LDRB = "ldrb"
    LDRH = "ldrh"
    LDRSB = "ldrsb"
    LDRSH = "ldrsh"
    LDRSW = "ldrsw"
    STR = "str"
    STRB = "strb"
    STRH = "strh"
    LDUR = "ldur"
    LDURB = "ldurb"
    LDURH = "ldurh"
    LDURSB = "ldursb"
    LDURSH = "ldursh"
    LDURSW = "ldursw"
    STUR = "stur"
    STURB = "sturb"
    STURH = "sturh"
    LDP = "ldp"
    STP = "stp"

    # Branches
    B = "b"
    BL = "bl"
    BR = "br"
    BLR = "blr"
    RET = "ret"
    CBZ = "cbz"
    CBNZ = "cbnz"
    B_COND = "b.cond"

    # System
    NOP = "nop"
    WFI = "wfi"
    WFE = "wfe"
    SEV = "sev"
    SEVL = "sevl"
    SVC = "svc"
    HVC = "hvc"
    SMC = "smc"
    DMB = "dmb"
    DSB = "dsb"
    ISB = "isb"

    # Extended opcodes: console
    PRT = "prt"
    PRTC = "prtc"
    PRTN = "prtn"
    INP = "inp"
    INPS = "inps"
    PRTX = "prtx"

    # Extended opcodes: framebuffer
    CLS = "cls"
    SETC = "setc"
    PLOT = "plot"
    LINE = "line"
    BOX = "box"
    RESET = "reset"
    CANVAS = "canvas"

    # Extended opcodes: files
    FCREAT = "fcreat"
    FWRITE = "fwrite"
    FREAD = "fread"
    FDEL = "fdel"
    FCOPY = "fcopy"
    FMOVE = "fmove"
    FEXIST = "fexist"

    # Extended opcodes: memory helpers
    STRLEN = "strlen"
    MEMCPY = "memcpy"
    MEMSET = "memset"
    ABS = "abs"

    # Extended opcodes: system
    SLEEP = "sleep"
    RND = "rnd"
    TICK = "tick"
    HALT = "halt"


_MNEMONIC_BY_NAME: dict[str, Mnemonic] = {
    m.value: m for m in Mnemonic if m is not Mnemonic.B_COND
}


# =============================================================================
# Condition Codes
# =============================================================================

CONDITION_NAMES: tuple[str, ...] = (
    "eq", "ne", "cs", "cc", "mi", "pl", "vs", "vc",
    "hi", "ls", "ge", "lt", "gt", "le", "al", "nv",
)

CONDITION_CODES: dict[str, int] = {name: code for code, name in enumerate(CONDITION_NAMES)}
CONDITION_CODES["hs"] = 2
CONDITION_CODES["lo"] = 3
del CONDITION_CODES["nv"]

COND_AL = 14


def lookup_mnemonic(name: str) -> Optional[tuple[Mnemonic, Optional[int]]]:
    """
    Resolve a mnemonic spelling to (Mnemonic, condition).

    Exact mnemonics win over the conditional-branch spellings, so ``bl``
    and ``bic`` are never read as ``b`` + condition.

    Args:
        name: Mnemonic as written in source (any case)

    Returns:
        (mnemonic, condition code or None), or None if unknown

    Example:
        >>> lookup_mnemonic("B.NE")
        (<Mnemonic.B_COND: 'b.cond'>, 1)
    """
    lowered = name.lower()
    mnemonic = _MNEMONIC_BY_NAME.get(lowered)
    if mnemonic is not None:
        return mnemonic, None

    if lowered.startswith("b.") and lowered[2:] in CONDITION_CODES:
        return Mnemonic.B_COND, CONDITION_CODES[lowered[2:]]
    if lowered.startswith("b") and lowered[1:] in CONDITION_CODES:
        return Mnemonic.B_COND, CONDITION_CODES[lowered[1:]]
    return None


# =============================================================================
# Registers
# =============================================================================

REG_ZR = 31   # zero register in data-processing contexts
REG_SP = 31   # stack pointer in addressing contexts
REG_LR = 30   # link register


def parse_register(name: str) -> Optional[tuple[int, bool, bool]]:
    """
    Match the register-name grammar.

    Accepts x0-x30, w0-w30, sp, wsp, lr, xzr, wzr in any case.

    Returns:
        (number, is_64bit, is_sp) or None if the name is not a register
    """
    lowered = name.lower()
    if lowered == "sp":
        return REG_SP, True, True
    if lowered == "wsp":
        return REG_SP, False, True
    if lowered == "xzr":
        return REG_ZR, True, False
    if lowered == "wzr":
        return REG_ZR, False, False
    if lowered == "lr":
        return REG_LR, True, False

    if len(lowered) >= 2 and lowered[0] in "xw" and lowered[1:].isdigit():
        digits = lowered[1:]
        # reject leading zeros such as x01
        if len(digits) > 1 and digits[0] == "0":
            return None
        number = int(digits)
        if number <= 30:
            return number, lowered[0] == "x", False
    return None


# =============================================================================
# Extended Opcodes
# =============================================================================

EXTENDED_OPCODES: dict[Mnemonic, int] = {
    Mnemonic.PRT: 0x100,
    Mnemonic.PRTC: 0x101,
    Mnemonic.PRTN: 0x102,
    Mnemonic.INP: 0x103,
    Mnemonic.INPS: 0x104,
    Mnemonic.PRTX: 0x105,
    Mnemonic.CLS: 0x110,
    Mnemonic.SETC: 0x111,
    Mnemonic.PLOT: 0x112,
    Mnemonic.LINE: 0x113,
    Mnemonic.BOX: 0x114,
    Mnemonic.RESET: 0x115,
    Mnemonic.CANVAS: 0x116,
    Mnemonic.FCREAT: 0x120,
    Mnemonic.FWRITE: 0x121,
    Mnemonic.FREAD: 0x122,
    Mnemonic.FDEL: 0x123,
    Mnemonic.FCOPY: 0x124,
    Mnemonic.FMOVE: 0x125,
    Mnemonic.FEXIST: 0x126,
    Mnemonic.STRLEN: 0x130,
    Mnemonic.MEMCPY: 0x131,
    Mnemonic.MEMSET: 0x132,
    Mnemonic.ABS: 0x133,
    Mnemonic.SLEEP: 0x1F0,
    Mnemonic.RND: 0x1F1,
    Mnemonic.TICK: 0x1F2,
    Mnemonic.HALT: 0x1FF,
}

EXTENDED_BY_ID: dict[int, Mnemonic] = {v: k for k, v in EXTENDED_OPCODES.items()}


# =============================================================================
# Fixed Words
# =============================================================================

NOP = 0xD503201F
WFE = 0xD503205F
WFI = 0xD503207F
SEV = 0xD503209F
SEVL = 0xD50320BF

HINTS: dict[Mnemonic, int] = {
    Mnemonic.NOP: NOP,
    Mnemonic.WFE: WFE,
    Mnemonic.WFI: WFI,
    Mnemonic.SEV: SEV,
    Mnemonic.SEVL: SEVL,
}

# Barriers carry a 4-bit option in bits 11..8
BARRIER_MASK = 0xFFFFF0FF
BARRIERS: dict[Mnemonic, int] = {
    Mnemonic.DSB: 0xD503309F,
    Mnemonic.DMB: 0xD50330BF,
    Mnemonic.ISB: 0xD50330DF,
}

BARRIER_OPTIONS: dict[str, int] = {
    "oshld": 1, "oshst": 2, "osh": 3,
    "nshld": 5, "nshst": 6, "nsh": 7,
    "ishld": 9, "ishst": 10, "ish": 11,
    "ld": 13, "st": 14, "sy": 15,
}
BARRIER_OPTION_NAMES: dict[int, str] = {v: k for k, v in BARRIER_OPTIONS.items()}

# Exception generation: imm16 in bits 20..5
EXCEPTION_MASK = 0xFFE0001F
SVC = 0xD4000001
HVC = 0xD4000002
SMC = 0xD4000003

# Branch to register: Rn in bits 9..5
BRANCH_REG_MASK = 0xFFFFFC1F
BR = 0xD61F0000
BLR = 0xD63F0000
RET = 0xD65F0000


# =============================================================================
# Encoding Families (mask, value)
# =============================================================================

ADD_SUB_IMM = (0x1F800000, 0x11000000)
ADD_SUB_REG = (0x1F200000, 0x0B000000)
LOGICAL_REG = (0x1F000000, 0x0A000000)
MOVE_WIDE = (0x1F800000, 0x12800000)
BITFIELD = (0x1F800000, 0x13000000)
EXTRACT = (0x7FA00000, 0x13800000)
DATA_2SRC = (0x7FE00000, 0x1AC00000)
MULTIPLY_ADD = (0x7FE00000, 0x1B000000)
BRANCH_IMM = (0x7C000000, 0x14000000)
COND_BRANCH = (0xFF000010, 0x54000000)
COMPARE_BRANCH = (0x7E000000, 0x34000000)
LDST_UNSIGNED = (0x3F000000, 0x39000000)
LDST_IMM9 = (0x3F200000, 0x38000000)
LDST_REG = (0x3F200C00, 0x38200800)
LDR_LITERAL = (0x3F000000, 0x18000000)
LDST_PAIR = (0x3C000000, 0x28000000)


def matches(word: int, family: tuple[int, int]) -> bool:
    """Check whether a word belongs to an encoding family."""
    mask, value = family
    return word & mask == value


# Opcode bits OR'd onto (sf << 31) for each register-form mnemonic.
ADD_SUB_REG_OPS: dict[Mnemonic, int] = {
    Mnemonic.ADD: 0x0B000000,
    Mnemonic.ADDS: 0x2B000000,
    Mnemonic.SUB: 0x4B000000,
    Mnemonic.SUBS: 0x6B000000,
}

ADD_SUB_IMM_OPS: dict[Mnemonic, int] = {
    Mnemonic.ADD: 0x11000000,
    Mnemonic.ADDS: 0x31000000,
    Mnemonic.SUB: 0x51000000,
    Mnemonic.SUBS: 0x71000000,
}

LOGICAL_REG_OPS: dict[Mnemonic, int] = {
    Mnemonic.AND: 0x0A000000,
    Mnemonic.BIC: 0x0A200000,
    Mnemonic.ORR: 0x2A000000,
    Mnemonic.ORN: 0x2A200000,
    Mnemonic.EOR: 0x4A000000,
    Mnemonic.ANDS: 0x6A000000,
}

# Two-source ops: opcode field in bits 15..10
DATA_2SRC_OPS: dict[Mnemonic, int] = {
    Mnemonic.UDIV: 0x02,
    Mnemonic.SDIV: 0x03,
    Mnemonic.LSL: 0x08,
    Mnemonic.LSR: 0x09,
    Mnemonic.ASR: 0x0A,
    Mnemonic.ROR: 0x0B,
}

MOVE_WIDE_OPS: dict[Mnemonic, int] = {
    Mnemonic.MOVN: 0x12800000,
    Mnemonic.MOVZ: 0x52800000,
    Mnemonic.MOVK: 0x72800000,
}

SBFM = 0x13000000
UBFM = 0x53000000
EXTR = 0x13800000
MADD = 0x1B000000

B = 0x14000000
BL = 0x94000000
B_COND = 0x54000000
CBZ = 0x34000000
CBNZ = 0x35000000

LDST_UNSIGNED_BASE = 0x39000000
LDST_IMM9_BASE = 0x38000000
LDST_REG_BASE = 0x38206800   # option=LSL (011), S=0
LDR_LITERAL_BASE = 0x18000000

LDST_PAIR_POST = 0x28800000
LDST_PAIR_OFFSET = 0x29000000
LDST_PAIR_PRE = 0x29800000

# Index modes in bits 11..10 of the imm9 forms
IDX_UNSCALED = 0
IDX_POST = 1
IDX_PRE = 3

# (size, opc) per load/store mnemonic; keyed by register width where it matters.
# size: log2 of access bytes. opc: 0 store, 1 load, 2 signed load to 64-bit,
# 3 signed load to 32-bit.
LOAD_STORE_FORMS: dict[Mnemonic, dict[bool, tuple[int, int]]] = {
    Mnemonic.LDR: {True: (3, 1), False: (2, 1)},
    Mnemonic.STR: {True: (3, 0), False: (2, 0)},
    Mnemonic.LDRB: {True: (0, 1), False: (0, 1)},
    Mnemonic.STRB: {True: (0, 0), False: (0, 0)},
    Mnemonic.LDRH: {True: (1, 1), False: (1, 1)},
    Mnemonic.STRH: {True: (1, 0), False: (1, 0)},
    Mnemonic.LDRSB: {True: (0, 2), False: (0, 3)},
    Mnemonic.LDRSH: {True: (1, 2), False: (1, 3)},
    Mnemonic.LDRSW: {True: (2, 2)},
}

# Reverse lookup used when decoding: (size, opc) -> mnemonic
LOAD_STORE_BY_FORM: dict[tuple[int, int], Mnemonic] = {
    (3, 1): Mnemonic.LDR, (2, 1): Mnemonic.LDR,
    (3, 0): Mnemonic.STR, (2, 0): Mnemonic.STR,
    (0, 1): Mnemonic.LDRB, (0, 0): Mnemonic.STRB,
    (1, 1): Mnemonic.LDRH, (1, 0): Mnemonic.STRH,
    (0, 2): Mnemonic.LDRSB, (0, 3): Mnemonic.LDRSB,
    (1, 2): Mnemonic.LDRSH, (1, 3): Mnemonic.LDRSH,
    (2, 2): Mnemonic.LDRSW,
}

# Unscaled signed-offset spellings and the scaled mnemonic sharing their forms
UNSCALED_LOAD_STORE: dict[Mnemonic, Mnemonic] = {
    Mnemonic.LDUR: Mnemonic.LDR,
    Mnemonic.LDURB: Mnemonic.LDRB,
    Mnemonic.LDURH: Mnemonic.LDRH,
    Mnemonic.LDURSB: Mnemonic.LDRSB,
    Mnemonic.LDURSH: Mnemonic.LDRSH,
    Mnemonic.LDURSW: Mnemonic.LDRSW,
    Mnemonic.STUR: Mnemonic.STR,
    Mnemonic.STURB: Mnemonic.STRB,
    Mnemonic.STURH: Mnemonic.STRH,
}

UNSCALED_BY_SCALED: dict[Mnemonic, Mnemonic] = {
    scaled: unscaled for unscaled, scaled in UNSCALED_LOAD_STORE.items()
}


# =============================================================================
# Range Limits
# =============================================================================

IMM12_MAX = 4095
BRANCH26_MIN = -(1 << 27)          # -128 MiB
BRANCH26_MAX = (1 << 27) - 4
BRANCH19_MIN = -(1 << 20)          # -1 MiB
BRANCH19_MAX = (1 << 20) - 4
IMM9_MIN = -256
IMM9_MAX = 255
IMM7_MIN = -64
IMM7_MAX = 63


# =============================================================================
# Bit Helpers
# =============================================================================

def sign_extend(value: int, bits: int) -> int:
    """Interpret the low `bits` bits of value as a two's-complement number."""
    value &= (1 << bits) - 1
    if value & (1 << (bits - 1)):
        value -= 1 << bits
    return value


def field(word: int, low: int, width: int) -> int:
    """Extract an unsigned bit field."""
    return (word >> low) & ((1 << width) - 1)


def move_wide_fields(value: int, bits: int) -> Optional[tuple[Mnemonic, int, int]]:
    """
    Choose the single move-wide instruction that loads `value`.

    MOVZ is preferred; MOVN is used when the complement fits one 16-bit
    window. The lowest matching window wins.

    Args:
        value: Value as an unsigned `bits`-wide integer
        bits: Register width (32 or 64)

    Returns:
        (MOVZ or MOVN, hw, imm16), or None if no single instruction fits

    Example:
        >>> move_wide_fields(0x10000, 64)
        (<Mnemonic.MOVZ: 'movz'>, 1, 1)
        >>> move_wide_fields(0xFFFFFFFE, 32)
        (<Mnemonic.MOVN: 'movn'>, 0, 1)
    """
    mask = (1 << bits) - 1
    value &= mask
    for mnemonic, candidate in ((Mnemonic.MOVZ, value), (Mnemonic.MOVN, ~value & mask)):
        for hw in range(bits // 16):
            shift = 16 * hw
            if candidate & ~(0xFFFF << shift) & mask == 0:
                return mnemonic, hw, (candidate >> shift) & 0xFFFF
    return None
