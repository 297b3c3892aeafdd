"""
Disassembler Tests
==================

Tests for the A64 disassembler:
- Alias selection for the words the assembler produces
- Fallback for words outside the subset
- Branch target annotation and listing format
- Assemble, disassemble and reassemble round trip

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

import itertools

import pytest
from armlet.assembler import Assembler, assemble
from armlet.disassembler import (
    A64Disassembler,
    DisassembledInstruction,
    branch_target,
    disassemble_word,
)
from armlet.errors import AssemblerError


def word_of(source: str) -> int:
    """The single instruction word assembled from source."""
    code = assemble(source)
    assert len(code) == 4
    return int.from_bytes(code, "little")


ROUND_TRIP_PROGRAM = """
start:
    mov x0, #0
    mov x1, #-5
    mov w2, #0x1234
    movk x2, #0xbeef, lsl #16
    add x3, x0, #12
    sub sp, sp, #32
    mov x4, sp
    adds x5, x3, x1, lsl #2
    cmp x5, #1
    neg x6, x5
    and x7, x5, x6
    orr w8, w7, w6
    mvn x9, x8
    tst x9, x8
    lsl x10, x9, #3
    asr x11, x10, x1
    ror w12, w11, #7
    mul x13, x12, x11
    sdiv x14, x13, x12
    str x14, [sp, #8]
    ldrb w15, [sp, #3]
    ldur x16, [sp, #-8]
    stp x29, x30, [sp, #-16]!
    ldp x29, x30, [sp], #16
    ldr x17, [x0, x1]
    ldrsw x18, value
    cbz x0, start
    b.ne start
    bl start
    blr x3
    ret
    dmb ish
    nop
    prtn
    halt
value:
    .quad 0x1122334455667788
"""

# {d}, {n}, {m} take x1/sp/xzr (or w1/wsp/wzr); {b} is a base register
REGISTER_TEMPLATES = [
    "add {d}, {n}, #5",
    "adds {d}, {n}, #5",
    "sub {d}, {n}, #5",
    "subs {d}, {n}, #5",
    "cmp {n}, #5",
    "cmn {n}, #5",
    "add {d}, {n}, {m}",
    "subs {d}, {n}, {m}",
    "cmp {n}, {m}",
    "neg {d}, {m}",
    "and {d}, {n}, {m}",
    "orr {d}, {n}, {m}",
    "orn {d}, {n}, {m}",
    "ands {d}, {n}, {m}",
    "tst {n}, {m}",
    "mvn {d}, {m}",
    "mov {d}, {m}",
    "lsl {d}, {n}, #3",
    "asr {d}, {n}, {m}",
    "ror {d}, {n}, #3",
    "mul {d}, {n}, {m}",
    "udiv {d}, {n}, {m}",
    "movk {d}, #7",
    "ldr {d}, [{b}, #8]",
    "str {d}, [{b}], #8",
    "ldur {d}, [{b}, #-4]",
    "stp {d}, {m}, [{b}, #16]",
    "cbz {d}, #8",
]

BASES = ["x2", "sp"]


# =============================================================================
# Word Decoding
# =============================================================================

class TestDisassembleWord:
    """Text produced for individual words."""

    @pytest.mark.parametrize("source,expected", [
        ("mov x0, #42", "mov x0, #0x2a"),
        ("mov x0, #-1", "mov x0, #-1"),
        ("mov w3, #0x10000", "mov w3, #0x10000"),
        ("movk x0, #7, lsl #32", "movk x0, #7, lsl #32"),
        ("mov x0, x1", "mov x0, x1"),
        ("mov sp, x29", "mov sp, x29"),
        ("add x0, x1, #4", "add x0, x1, #4"),
        ("cmp x1, #5", "cmp x1, #5"),
        ("cmn w1, w2", "cmn w1, w2"),
        ("neg x0, x1", "neg x0, x1"),
        ("mvn w2, w3", "mvn w2, w3"),
        ("tst x0, x1, lsl #3", "tst x0, x1, lsl #3"),
        ("eor x0, x1, x2, ror #8", "eor x0, x1, x2, ror #8"),
        ("lsl x0, x1, #4", "lsl x0, x1, #4"),
        ("lsr w0, w1, #31", "lsr w0, w1, #31"),
        ("asr x0, x1, #2", "asr x0, x1, #2"),
        ("ror x0, x1, #9", "ror x0, x1, #9"),
        ("lsl x0, x1, x2", "lsl x0, x1, x2"),
        ("mul x0, x1, x2", "mul x0, x1, x2"),
        ("udiv w0, w1, w2", "udiv w0, w1, w2"),
        ("ldr x0, [sp, #16]", "ldr x0, [sp, #0x10]"),
        ("ldrsh x0, [x1]", "ldrsh x0, [x1]"),
        ("str w1, [x2, #-4]!", "str w1, [x2, #-4]!"),
        ("ldr x1, [x2], #8", "ldr x1, [x2], #8"),
        ("strb w0, [x1, x2]", "strb w0, [x1, x2]"),
        ("stp x29, x30, [sp, #-16]!", "stp x29, x30, [sp, #-0x10]!"),
        ("ldp w0, w1, [x2, #8]", "ldp w0, w1, [x2, #8]"),
        ("ret", "ret"),
        ("ret x5", "ret x5"),
        ("br x1", "br x1"),
        ("svc #3", "svc #3"),
        ("hvc #0x10", "hvc #0x10"),
        ("dmb ish", "dmb ish"),
        ("dsb sy", "dsb sy"),
        ("isb", "isb"),
        ("wfi", "wfi"),
        ("prtc", "prtc"),
        ("fcopy", "fcopy"),
        ("halt", "halt"),
    ])
    def test_text(self, source, expected):
        assert disassemble_word(word_of(source)) == expected

    def test_branch_offsets(self):
        code = assemble("loop: nop\nb.lt loop\ncbnz w0, loop\nb loop")
        words = [int.from_bytes(code[i:i + 4], "little") for i in range(0, len(code), 4)]
        assert [disassemble_word(w) for w in words] == [
            "nop", "b.lt #-4", "cbnz w0, #-8", "b #-0xc",
        ]

    @pytest.mark.parametrize("word", [0x00000000, 0xF9800020])
    def test_unsupported_word(self, word):
        assert disassemble_word(word) == f".word 0x{word:08x}"

    def test_branch_target(self):
        assert branch_target(word_of("b #8"), 0x100) == 0x108
        assert branch_target(word_of("nop"), 0x100) is None


# =============================================================================
# Disassembler Class
# =============================================================================

class TestA64Disassembler:
    """Listing output and annotations."""

    def test_listing_line(self):
        instr = DisassembledInstruction(0x10, 0xD503201F, "nop")
        assert str(instr) == "0010: D503201F  nop"

    def test_branch_comment(self):
        disasm = A64Disassembler()
        instr = disasm.disassemble_one(assemble("b #8"), address=0x100)
        assert instr.comment == "-> 0x0108"
        assert str(instr).endswith("; -> 0x0108")

    def test_symbol_annotation(self):
        asm = Assembler()
        code = asm.assemble_source("start: nop\nloop: b loop")
        disasm = A64Disassembler()
        disasm.add_symbols(asm.get_symbols())
        lines = list(disasm.disassemble(code))
        assert lines[1].comment == "-> 0x0004 (loop)"

    def test_count_and_partial_word(self):
        code = assemble("nop\nnop\nnop") + b"\x01\x02"
        disasm = A64Disassembler()
        assert len(list(disasm.disassemble(code))) == 3
        assert len(list(disasm.disassemble(code, count=2))) == 2

    def test_start_address(self):
        lines = list(A64Disassembler().disassemble(assemble("nop\nnop"), start_address=0x200))
        assert [i.address for i in lines] == [0x200, 0x204]

    def test_short_data(self):
        with pytest.raises(ValueError):
            A64Disassembler().disassemble_one(b"\x1f\x20\x03")

    def test_to_dict(self):
        instr = A64Disassembler().disassemble_one(assemble("nop"))
        assert instr.to_dict() == {
            "address": "0x0000",
            "address_int": 0,
            "word": "0xD503201F",
            "text": "nop",
            "comment": "",
        }

    def test_to_text(self):
        text = A64Disassembler().disassemble_to_text(assemble("nop\nhalt"))
        assert text.splitlines()[1].endswith("halt")


# =============================================================================
# Round Trip
# =============================================================================

class TestRoundTrip:
    """Disassembled text reassembles to the same words."""

    def test_program_round_trip(self):
        code = assemble(ROUND_TRIP_PROGRAM)
        text = "\n".join(i.text for i in A64Disassembler().disassemble(code))
        assert assemble(text) == code

    @pytest.mark.parametrize("width", ["x", "w"])
    @pytest.mark.parametrize("template", REGISTER_TEMPLATES)
    def test_register_31_in_every_slot(self, template, width):
        choices = [f"{width}1", "sp" if width == "x" else "wsp", f"{width}zr"]
        sources = {
            template.format(d=d, n=n, m=m, b=b)
            for d, n, m, b in itertools.product(choices, choices, choices, BASES)
        }
        accepted = 0
        for source in sorted(sources):
            try:
                code = assemble(source)
            except AssemblerError:
                continue
            accepted += 1
            text = disassemble_word(int.from_bytes(code, "little"))
            assert assemble(text) == code, f"{source!r} -> {text!r}"
        assert accepted

    def test_add_from_wsp(self):
        # add w0, wsp, #5
        text = disassemble_word(0x110017E0)
        assert text == "add w0, wsp, #5"
        assert assemble(text) == (0x110017E0).to_bytes(4, "little")
