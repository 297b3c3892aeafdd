"""
End-to-End Scenarios
====================

Assemble-and-run tests covering whole programs, including the sample
programs shipped in examples/.

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from pathlib import Path

import pytest
from armlet.assembler import assemble, assemble_file
from armlet.emulator import Emulator, EngineConfig, ExecState


EXAMPLES_DIR = Path(__file__).parent.parent / "examples"


def run_example(name: str, host, input_data: bytes = b"") -> Emulator:
    host.console.feed(input_data)
    emu = Emulator(EngineConfig(), host)
    emu.load_program(assemble_file(EXAMPLES_DIR / name))
    emu.run()
    return emu


# =============================================================================
# Core Scenarios
# =============================================================================

class TestCoreScenarios:

    def test_print_two_characters(self, run_source, host):
        emu = run_source("mov w0,#72\nprtc\nmov w0,#10\nprtc\nhalt")
        assert host.console.output == b"H\n"
        assert emu.state is ExecState.HALTED
        assert emu.instructions_executed == 4

    def test_add_and_print(self, run_source, host):
        run_source("mov x0,#10\nmov x1,#25\nadd x0,x0,x1\nprtn\nhalt")
        assert host.console.output == b"35"

    def test_backward_branch_displacement(self):
        code = assemble("loop:\n  add x0, x0, #1\n  cmp x0, #5\n  b.lt loop\n")
        word = int.from_bytes(code[8:12], "little")
        imm19 = (word >> 5) & 0x7FFFF
        assert imm19 - (1 << 19) == (0 - 8) // 4
        assert word == 0x54FFFFCB

    def test_forward_reference(self):
        code = assemble("b.lt skip\nnop\nskip: halt")
        assert int.from_bytes(code[:4], "little") == 0x5400004B

    def test_abs_of_negative(self, run_source):
        emu = run_source("sub x0,x0,#25\nabs\nhalt")
        assert emu.registers["x0"] == 25

    def test_nested_calls(self, run_source, host):
        emu = run_source(
            "bl outer\nhalt\n"
            "outer: stp x29, x30, [sp, #-16]!\nbl inner\nldp x29, x30, [sp], #16\nret\n"
            "inner: mov w0, #105\nprtc\nret"
        )
        assert host.console.output == b"i"
        assert emu.state is ExecState.HALTED
        assert emu.cpu.call_depth == 0


# =============================================================================
# Example Programs
# =============================================================================

class TestExamples:

    def test_all_examples_assemble(self):
        sources = sorted(EXAMPLES_DIR.glob("*.s"))
        assert sources
        for path in sources:
            assert assemble_file(path), path.name

    def test_hello(self, host):
        emu = run_example("hello.s", host)
        assert emu.state is ExecState.HALTED
        assert host.console.text == "Hello!\n10 + 30 = 40\n"

    def test_loop(self, host):
        run_example("loop.s", host)
        assert host.console.text == "12345\n12345\n12345\nDone!\n"
        assert host.clock.sleeps == [100, 100, 100]

    def test_countdown(self, host):
        run_example("countdown.s", host)
        assert host.console.text == (
            "5...\n4...\n3...\n2...\n1...\nLiftoff! elapsed 1250 ms\n"
        )

    def test_box(self, host):
        emu = run_example("box.s", host)
        fb = emu.context.framebuffer
        rows = emu.render_framebuffer().splitlines()
        assert rows[2] == " " * 5 + "+" + "-" * 18 + "+" + " " * 15
        assert rows[4][5:25] == "|    *    *    *   |"
        assert fb.get_attr_at(10, 4) == 0x43
        assert host.console.output.startswith(b"Auto!\n\x1b[")

    def test_memtest(self, host):
        emu = run_example("memtest.s", host)
        assert emu.state is ExecState.HALTED
        assert host.console.text == (
            "strlen=5\ncopy=Hello\nset=*****\nabs=25\nhex=0xff\nOK\n"
        )

    def test_fileio(self, host):
        emu = run_example("fileio.s", host, input_data=b"Ada\n36\n")
        assert emu.state is ExecState.HALTED
        assert host.console.text == "Name? Ada\nAge? 36\nSaved!\n"
        assert host.files.files == {"profile.txt": b"Name: Ada\nAge: 36\n"}

    @pytest.mark.parametrize("name", ["hello.s", "loop.s", "memtest.s"])
    def test_examples_within_instruction_budget(self, host, name):
        emu = run_example(name, host)
        assert emu.instructions_executed < EngineConfig().max_instructions
