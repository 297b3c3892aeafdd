"""
Code Generator Unit Tests
=========================

Tests for instruction encoding and the two-pass code generator:
- Data processing, moves, shifts, multiply/divide
- Branches with forward and backward label references
- Loads and stores in every addressing form
- Directives and constants
- Symbol table, listing and error reporting

Expected words were checked against a reference AArch64 assembler.

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

import struct

import pytest
from armlet.assembler import Assembler, assemble
from armlet.assembler.codegen import CodeGenerator, unescape_string
from armlet.assembler.opcodes import Mnemonic, move_wide_fields
from armlet.errors import (
    AssemblerError,
    BranchRangeError,
    CodeBufferOverflowError,
    DirectiveError,
    DuplicateSymbolError,
    ImmediateRangeError,
    OperandError,
    SymbolTableFullError,
    UndefinedSymbolError,
)


# =============================================================================
# Helpers
# =============================================================================

def words(source: str) -> list[int]:
    """Assemble and split the binary into little-endian words."""
    code = assemble(source)
    return list(struct.unpack(f"<{len(code) // 4}I", code))


def word(source: str) -> int:
    (w,) = words(source)
    return w


# =============================================================================
# Data Processing
# =============================================================================

class TestDataProcessing:
    """Arithmetic, logical and shift encodings."""

    @pytest.mark.parametrize("source,expected", [
        ("add x0, x1, x2", 0x8B020020),
        ("add x0, x1, #1", 0x91000420),
        ("add x0, x0, #-1", 0xD1000400),
        ("sub sp, sp, #16", 0xD10043FF),
        ("add x0, x1, #0x1000", 0x91400420),
        ("add x0, x1, #1, lsl #12", 0x91400420),
        ("adds w0, w1, w2", 0x2B020020),
        ("subs x0, x0, #1", 0xF1000400),
        ("add x0, x1, x2, lsl #3", 0x8B020C20),
        ("add x0, x1", 0x8B010000),
    ])
    def test_add_sub(self, source, expected):
        assert word(source) == expected

    @pytest.mark.parametrize("source,expected", [
        ("cmp x0, #10", 0xF100281F),
        ("cmp x1, x2", 0xEB02003F),
        ("cmp w1, #0", 0x7100003F),
        ("cmn x0, #1", 0xB100041F),
        ("tst x0, x1", 0xEA01001F),
        ("neg x0, x1", 0xCB0103E0),
        ("mvn x0, x1", 0xAA2103E0),
    ])
    def test_aliases(self, source, expected):
        assert word(source) == expected

    @pytest.mark.parametrize("source,expected", [
        ("and x0, x1, x2", 0x8A020020),
        ("orr x0, x1, x2, lsl #4", 0xAA021020),
        ("eor w0, w1, w2", 0x4A020020),
        ("bic x0, x1, x2", 0x8A220020),
        ("ands x0, x1, x2", 0xEA020020),
    ])
    def test_logical(self, source, expected):
        assert word(source) == expected

    @pytest.mark.parametrize("source,expected", [
        ("lsl x0, x1, #4", 0xD37CEC20),
        ("lsr x0, x1, #4", 0xD344FC20),
        ("asr w0, w1, #3", 0x13037C20),
        ("ror x0, x1, #8", 0x93C12020),
        ("lsl x0, x1, x2", 0x9AC22020),
        ("lsr x0, x1, x2", 0x9AC22420),
    ])
    def test_shifts(self, source, expected):
        assert word(source) == expected

    @pytest.mark.parametrize("source,expected", [
        ("mul x0, x1, x2", 0x9B027C20),
        ("udiv x0, x1, x2", 0x9AC20820),
        ("sdiv x0, x1, x2", 0x9AC20C20),
        ("mul w3, w3", 0x1B037C63),
    ])
    def test_multiply_divide(self, source, expected):
        assert word(source) == expected


class TestRegister31:
    """Register 31 is sp in some operand slots and zero in others."""

    @pytest.mark.parametrize("source,expected", [
        ("add sp, x1, #4", 0x9100103F),
        ("add w0, wsp, #5", 0x110017E0),
        ("adds xzr, x1, #4", 0xB100103F),
        ("cmp sp, #16", 0xF10043FF),
        ("add x0, xzr, x1", 0x8B0103E0),
        ("mov wsp, w3", 0x1100007F),
    ])
    def test_accepted(self, source, expected):
        assert word(source) == expected

    @pytest.mark.parametrize("source", [
        "add x0, xzr, #5",
        "add xzr, x0, #5",
        "sub w0, wzr, #1",
        "adds x0, xzr, #1",
        "cmp xzr, #1",
        "cmn wzr, #1",
        "mov sp, xzr",
        "mov xzr, sp",
    ])
    def test_zero_register_in_sp_slot(self, source):
        with pytest.raises(OperandError, match="register 31 is sp"):
            assemble(source)

    @pytest.mark.parametrize("source", [
        "adds sp, x0, #1",
        "cmp sp, x1",
        "tst sp, x1",
        "add x0, sp, x1",
    ])
    def test_sp_in_zero_register_slot(self, source):
        with pytest.raises(OperandError, match="sp is not allowed"):
            assemble(source)


# =============================================================================
# Moves
# =============================================================================

class TestMoves:
    """Register moves and immediate loading."""

    @pytest.mark.parametrize("source,expected", [
        ("mov x0, #42", 0xD2800540),
        ("mov w0, #1", 0x52800020),
        ("mov x0, #0", 0xD2800000),
        ("mov x0, #0x10000", 0xD2A00020),
        ("mov x0, #-1", 0x92800000),
        ("mov w0, #-2", 0x12800020),
        ("mov x0, x1", 0xAA0103E0),
        ("mov x29, sp", 0x910003FD),
        ("mov sp, x1", 0x9100003F),
        ("movk x0, #0x1234, lsl #16", 0xF2A24680),
        ("movz w1, #5", 0x528000A1),
        ("movn x2, #0", 0x92800002),
    ])
    def test_encodings(self, source, expected):
        assert word(source) == expected

    def test_mov_prefers_movz(self):
        assert move_wide_fields(0xFFFF, 64) == (Mnemonic.MOVZ, 0, 0xFFFF)

    def test_mov_lowest_window(self):
        assert move_wide_fields(0, 64) == (Mnemonic.MOVZ, 0, 0)

    def test_mov_movn_window(self):
        assert move_wide_fields(0xFFFFFFFFFFFF0000, 64) == (Mnemonic.MOVN, 0, 0xFFFF)

    def test_mov_unencodable(self):
        assert move_wide_fields(0x12345, 64) is None
        with pytest.raises(ImmediateRangeError, match="single move"):
            assemble("mov x0, #0x12345")

    def test_mov_too_wide_for_w(self):
        with pytest.raises(ImmediateRangeError, match="32-bit"):
            assemble("mov w0, #0x100000000")

    def test_mov_immediate_to_sp(self):
        with pytest.raises(OperandError, match="sp"):
            assemble("mov sp, #1")

    def test_movz_range(self):
        with pytest.raises(ImmediateRangeError):
            assemble("movz x0, #0x10000")

    def test_movk_bad_shift(self):
        with pytest.raises(OperandError, match="multiple of 16"):
            assemble("movk x0, #1, lsl #8")

    def test_mov_constant(self):
        assert words(".equ LIMIT, 10\nmov x0, #LIMIT") == [0xD2800140]


# =============================================================================
# Branches
# =============================================================================

class TestBranches:
    """Branch displacement and label resolution."""

    def test_forward_branch(self):
        assert words("b skip\nnop\nskip: halt")[0] == 0x14000002

    def test_backward_branch(self):
        assert words("loop: nop\nb loop")[1] == 0x17FFFFFF

    def test_branch_to_self(self):
        assert word("loop: b loop") == 0x14000000

    def test_branch_link(self):
        assert words("bl func\nhalt\nfunc: ret")[0] == 0x94000002

    def test_conditional_backward(self):
        assert words("loop: nop\nb.ne loop")[1] == 0x54FFFFE1

    def test_conditional_spellings(self):
        assert words("x: b.hs x\nbcs x\nb.lo x")[0] & 0xF == 2
        assert words("x: b.hs x\nbcs x\nb.lo x")[1] & 0xF == 2
        assert words("x: b.hs x\nbcs x\nb.lo x")[2] & 0xF == 3

    def test_compare_branch(self):
        code = words("cbz x0, done\ncbnz w1, done\ndone: halt")
        assert code[0] == 0xB4000040
        assert code[1] == 0x35000021

    def test_register_branches(self):
        assert words("ret\nret x1\nbr x1\nblr x2") == [
            0xD65F03C0, 0xD65F0020, 0xD61F0020, 0xD63F0040,
        ]

    def test_immediate_offset(self):
        assert word("b #-8") == 0x17FFFFFE

    def test_misaligned_offset(self):
        with pytest.raises(BranchRangeError, match="not word aligned"):
            assemble("b #6")

    def test_conditional_out_of_range(self):
        with pytest.raises(BranchRangeError, match="out of range"):
            assemble("b.eq #0x200000")

    def test_undefined_label(self):
        with pytest.raises(UndefinedSymbolError) as exc_info:
            assemble("loop: nop\nb.lt lopo")
        assert exc_info.value.symbol == "lopo"
        assert "did you mean 'loop'?" in str(exc_info.value)


# =============================================================================
# Loads and Stores
# =============================================================================

class TestLoadStore:
    """Addressing-mode encodings."""

    @pytest.mark.parametrize("source,expected", [
        ("ldr x0, [x1, #8]", 0xF9400420),
        ("ldr w0, [x1, #4]", 0xB9400420),
        ("ldrb w0, [x1, #1]", 0x39400420),
        ("strb w0, [x1]", 0x39000020),
        ("ldrh w0, [x1, #2]", 0x79400420),
        ("ldrsw x0, [x1]", 0xB9800020),
        ("ldrsb w0, [x1]", 0x39C00020),
        ("str x0, [sp, #-16]!", 0xF81F0FE0),
        ("ldr x0, [sp], #16", 0xF84107E0),
        ("ldur x0, [x1, #-8]", 0xF85F8020),
        ("ldur x0, [x1, #3]", 0xF8403020),
        ("ldr x0, [x1, x2]", 0xF8626820),
        ("stp x29, x30, [sp, #-16]!", 0xA9BF7BFD),
        ("ldp x29, x30, [sp], #16", 0xA8C17BFD),
        ("stp w0, w1, [x2, #8]", 0x29010440),
    ])
    def test_encodings(self, source, expected):
        assert word(source) == expected

    def test_literal_load(self):
        code = words("ldr x0, value\nhalt\nvalue: .quad 5")
        assert code[0] == 0x58000040

    def test_offset_out_of_range(self):
        with pytest.raises(ImmediateRangeError, match="out of range"):
            assemble("ldr x0, [x1, #40000]")

    @pytest.mark.parametrize("source,message", [
        ("ldr x0, [x1, #4]", "multiple of 8"),
        ("ldrh w0, [x1, #1]", "multiple of 2"),
        ("str w0, [x1, #6]", "multiple of 4"),
        ("ldr x0, [x1, #-8]", "out of range"),
        ("strb w0, [x1, #-1]", "out of range"),
    ])
    def test_scaled_offset_rejected(self, source, message):
        with pytest.raises(ImmediateRangeError, match=message) as exc_info:
            assemble(source)
        assert "ldur" in str(exc_info.value) or "stur" in str(exc_info.value)

    @pytest.mark.parametrize("source,expected", [
        ("stur w0, [x1, #-4]", 0xB81FC020),
        ("ldurb w0, [sp, #1]", 0x384013E0),
        ("ldursw x0, [x1, #-2]", 0xB89FE020),
    ])
    def test_unscaled_encodings(self, source, expected):
        assert word(source) == expected

    def test_unscaled_range(self):
        with pytest.raises(ImmediateRangeError, match="-256..255"):
            assemble("ldur x0, [x1, #256]")

    def test_unscaled_rejects_writeback(self):
        with pytest.raises(OperandError, match="memory operand"):
            assemble("ldur x0, [x1, #8]!")

    def test_writeback_range(self):
        with pytest.raises(ImmediateRangeError, match="-256..255"):
            assemble("ldr x0, [x1, #256]!")

    def test_pair_alignment(self):
        with pytest.raises(ImmediateRangeError, match="multiple of 8"):
            assemble("stp x0, x1, [sp, #4]")

    def test_ldrsw_needs_x_register(self):
        with pytest.raises(OperandError, match="64-bit"):
            assemble("ldrsw w0, [x1]")

    def test_store_without_memory_operand(self):
        with pytest.raises(OperandError, match="memory operand"):
            assemble("str x0, label\nlabel: nop")


# =============================================================================
# System Instructions
# =============================================================================

class TestSystem:
    """Hints, barriers and exception-generating words."""

    @pytest.mark.parametrize("source,expected", [
        ("nop", 0xD503201F),
        ("wfi", 0xD503207F),
        ("dmb ish", 0xD5033BBF),
        ("dsb sy", 0xD5033F9F),
        ("isb", 0xD5033FDF),
        ("dmb #3", 0xD50333BF),
        ("svc #0", 0xD4000001),
        ("hvc #1", 0xD4000022),
    ])
    def test_encodings(self, source, expected):
        assert word(source) == expected

    @pytest.mark.parametrize("source,expected", [
        ("prt", 0xD4002001),
        ("prtn", 0xD4002041),
        ("cls", 0xD4002201),
        ("fcreat", 0xD4002401),
        ("strlen", 0xD4002601),
        ("sleep", 0xD4003E01),
        ("halt", 0xD4003FE1),
    ])
    def test_extended_opcodes(self, source, expected):
        assert word(source) == expected

    def test_extended_takes_no_operands(self):
        with pytest.raises(OperandError, match="expects 0 operands"):
            assemble("halt x0")

    def test_svc_range(self):
        with pytest.raises(ImmediateRangeError):
            assemble("svc #0x10000")

    def test_bad_barrier_option(self):
        with pytest.raises(OperandError, match="barrier option"):
            assemble("dmb bogus")


# =============================================================================
# Directives
# =============================================================================

class TestDirectives:
    """Data, alignment and symbol directives."""

    def test_data_widths(self):
        code = assemble(".byte 1, 2\n.hword 0x1234\n.word 0xdeadbeef\n.quad -1")
        assert code == (
            b"\x01\x02" + b"\x34\x12" + b"\xef\xbe\xad\xde" + b"\xff" * 8
        )

    def test_strings(self):
        code = assemble('.ascii "ab"\n.asciz "c\\n"\n.string "d"')
        assert code == b"abc\n\0d\0"

    def test_space_with_fill(self):
        assert assemble(".space 3, 0xff") == b"\xff\xff\xff"

    def test_align_pads_with_zero(self):
        code = assemble(".byte 1\n.align 3\n.byte 2")
        assert code == b"\x01" + b"\0" * 7 + b"\x02"

    def test_balign(self):
        assert len(assemble(".byte 1\n.balign 4")) == 4

    def test_balign_power_of_two(self):
        with pytest.raises(DirectiveError, match="power of two"):
            assemble(".balign 3")

    def test_label_in_data(self):
        code = assemble(".word target\ntarget: nop")
        assert code[:4] == b"\x04\0\0\0"

    def test_value_too_wide(self):
        with pytest.raises(ImmediateRangeError, match="1 bytes"):
            assemble(".byte 256")

    def test_set_redefines(self):
        code = words(".set N, 1\n.set N, 2\nmov x0, #N")
        assert code == [0xD2800040]

    def test_equ_duplicate(self):
        with pytest.raises(DuplicateSymbolError):
            assemble(".equ N, 1\n.equ N, 2")

    def test_space_needs_constant(self):
        with pytest.raises(DirectiveError, match="constant"):
            assemble(".space later\nlater: nop")

    def test_sections_accepted(self):
        assert assemble(".text\n.global main\nmain: nop\n.data\n.byte 1") == (
            b"\x1f\x20\x03\xd5\x01"
        )

    def test_unescape(self):
        assert unescape_string(r"a\tb\\c\"\q") == b'a\tb\\c"q'


# =============================================================================
# Symbols and Limits
# =============================================================================

class TestSymbols:
    """Symbol table behaviour and fixed capacities."""

    def test_label_addresses(self):
        asm = Assembler()
        asm.assemble_source("start: nop\nnext: nop\nend: halt")
        assert asm.get_symbols() == {"start": 0, "next": 4, "end": 8}

    def test_labels_case_sensitive(self):
        asm = Assembler()
        asm.assemble_source("Loop: nop\nloop: nop")
        assert asm.get_symbols() == {"Loop": 0, "loop": 4}

    def test_duplicate_label(self):
        with pytest.raises(DuplicateSymbolError) as exc_info:
            assemble("a: nop\na: nop")
        assert "first defined at <input>:1:1" in str(exc_info.value)

    def test_symbol_table_full(self):
        asm = Assembler(max_symbols=2)
        with pytest.raises(SymbolTableFullError):
            asm.assemble_source("a: nop\nb: nop\nc: nop")

    def test_default_symbol_capacity(self):
        source = "\n".join(f"l{i}: nop" for i in range(64))
        assert len(assemble(source)) == 256
        with pytest.raises(SymbolTableFullError):
            assemble(source + "\nextra: nop")

    def test_code_buffer_overflow(self):
        asm = Assembler(capacity=8)
        with pytest.raises(CodeBufferOverflowError):
            asm.assemble_source("nop\nnop\nnop")

    def test_default_capacity(self):
        assert len(assemble(".space 5120")) == 5120
        with pytest.raises(CodeBufferOverflowError):
            assemble(".space 5120\nnop")

    def test_global_undefined_is_not_a_symbol(self):
        gen_asm = Assembler()
        gen_asm.assemble_source(".global missing\nnop")
        assert gen_asm.get_symbols() == {}

    def test_codegen_reusable(self):
        from armlet.assembler.parser import parse_source
        gen = CodeGenerator()
        gen.generate(parse_source("a: nop"))
        gen.generate(parse_source("a: halt"))
        assert gen.get_symbols() == {"a": 0}


# =============================================================================
# Errors and Output Files
# =============================================================================

class TestErrorsAndOutput:
    """Error formatting and listing/symbol files."""

    def test_error_has_source_line(self):
        with pytest.raises(AssemblerError) as exc_info:
            assemble("nop\n    b nowhere", "prog.s")
        err = exc_info.value
        assert err.source_line == "    b nowhere"
        assert str(err).startswith("prog.s:2:7: error: undefined symbol 'nowhere'")

    def test_width_mismatch(self):
        with pytest.raises(OperandError, match="width mismatch"):
            assemble("add x0, w1, x2")

    def test_logical_immediate_rejected(self):
        with pytest.raises(OperandError, match="register operands only"):
            assemble("and x0, x1, #1")

    def test_memory_operand_in_add(self):
        with pytest.raises(OperandError):
            assemble("add x0, x1, [x2]")

    def test_immediate_range(self):
        with pytest.raises(ImmediateRangeError) as exc_info:
            assemble("add x0, x1, #4097")
        assert exc_info.value.value == 4097

    def test_no_partial_binary(self):
        asm = Assembler()
        asm.assemble_source("nop")
        with pytest.raises(AssemblerError):
            asm.assemble_source("nop\nb nowhere")
        assert asm.get_code() == b""

    def test_file_errors_name_the_file(self, tmp_path):
        source = tmp_path / "bad.s"
        source.write_text("nop\nldr x0, [x1, #4]\n")
        with pytest.raises(ImmediateRangeError) as exc_info:
            Assembler().assemble_file(source)
        assert exc_info.value.location.filename == str(source)
        assert str(exc_info.value).startswith(f"{source}:2:")
        assert "ldr x0, [x1, #4]" in str(exc_info.value)

    def test_write_outputs(self, tmp_path):
        asm = Assembler()
        source = tmp_path / "prog.s"
        source.write_text(".global main\nmain: mov x0, #1\nloop: b loop\n")
        code = asm.assemble_file(source)

        binary = tmp_path / "prog.bin"
        listing = tmp_path / "prog.lst"
        symbols = tmp_path / "prog.sym"
        asm.write_binary(binary)
        asm.write_listing(listing)
        asm.write_symbols(symbols)

        assert binary.read_bytes() == code
        listing_text = listing.read_text()
        assert "A64 Assembler Listing" in listing_text
        assert "0000  D2800020" in listing_text
        assert "main: mov x0, #1" in listing_text
        symbol_lines = symbols.read_text().splitlines()
        assert "main = 0x0000 global" in symbol_lines
        assert "loop = 0x0004" in symbol_lines
