"""
CLI Tests
=========

Tests for the armasm, armrun and armdisasm command-line tools, driven
through click's CliRunner.

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

import pytest
from armlet.assembler import assemble


HELLO = "mov w0, #72\nprtc\nmov w0, #10\nprtc\nhalt\n"


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "hello.s"
    path.write_text(HELLO)
    return path


def write_binary(tmp_path, source: str, name: str = "prog.bin"):
    path = tmp_path / name
    path.write_bytes(assemble(source))
    return path


# =============================================================================
# armasm
# =============================================================================

class TestArmasm:
    """Assembler command."""

    def test_help(self):
        from click.testing import CliRunner
        from armlet.cli.armasm import main

        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "INPUT_FILE" in result.output
        assert "--listing" in result.output

    def test_version(self):
        from click.testing import CliRunner
        from armlet.cli.armasm import main

        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "armasm" in result.output
        assert "1.0.0" in result.output

    def test_default_output(self, source_file):
        from click.testing import CliRunner
        from armlet.cli.armasm import main

        result = CliRunner().invoke(main, [str(source_file)])
        assert result.exit_code == 0, result.output
        assert source_file.with_suffix(".bin").read_bytes() == assemble(HELLO)

    def test_listing_and_symbols(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armasm import main

        src = tmp_path / "prog.s"
        src.write_text(".global start\nstart: nop\nloop: b loop\n")
        out, lst, sym = tmp_path / "out.bin", tmp_path / "out.lst", tmp_path / "out.sym"
        result = CliRunner().invoke(
            main, [str(src), "-o", str(out), "-l", str(lst), "-s", str(sym), "-v"]
        )
        assert result.exit_code == 0, result.output
        assert len(out.read_bytes()) == 8
        assert "A64 Assembler Listing" in lst.read_text()
        symbols = sym.read_text()
        assert "start = 0x0000 global" in symbols
        assert "loop = 0x0004\n" in symbols
        assert "Assembly complete: 8 bytes" in result.output
        assert "Defined 2 symbols" in result.output

    def test_syntax_error(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armasm import main

        src = tmp_path / "bad.s"
        src.write_text("nop\nfrob x0\n")
        result = CliRunner().invoke(main, [str(src)])
        assert result.exit_code == 1
        assert "Assembly error:" in result.output
        assert "unknown mnemonic 'frob'" in result.output
        assert ":2:1:" in result.output
        assert not src.with_suffix(".bin").exists()

    def test_missing_file(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armasm import main

        result = CliRunner().invoke(main, [str(tmp_path / "missing.s")])
        assert result.exit_code == 2

    def test_run(self, source_file):
        from click.testing import CliRunner
        from armlet.cli.armasm import main

        result = CliRunner().invoke(main, [str(source_file), "--run"])
        assert result.exit_code == 0, result.output
        assert "H\n" in result.output
        assert "Executed 4 instructions" in result.output

    def test_run_fault(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armasm import main

        src = tmp_path / "fault.s"
        src.write_text(".word 0\n")
        result = CliRunner().invoke(main, [str(src), "--run"])
        assert result.exit_code == 1
        assert "Fault: pc=0x0000: unknown instruction 0x00000000" in result.output


# =============================================================================
# armrun
# =============================================================================

class TestArmrun:
    """Execution command."""

    def test_run(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armrun import main

        binary = write_binary(tmp_path, HELLO)
        result = CliRunner().invoke(main, [str(binary)])
        assert result.exit_code == 0, result.output
        assert "H\n" in result.output
        assert "Executed 4 instructions" in result.output

    def test_console_input(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armrun import main

        binary = write_binary(tmp_path, "inp\nprtc\nhalt")
        result = CliRunner().invoke(main, [str(binary)], input="z")
        assert result.exit_code == 0, result.output
        assert "z" in result.output

    def test_instruction_limit(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armrun import main

        binary = write_binary(tmp_path, "loop: b loop")
        result = CliRunner().invoke(main, [str(binary), "--max-instructions", "50"])
        assert result.exit_code == 1
        assert "instruction limit exceeded (50)" in result.output
        assert "Executed 50 instructions" in result.output

    def test_files_dir(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armrun import main

        binary = write_binary(
            tmp_path,
            'mov x0, #name\nmov x1, #data\nmov x2, #3\nfwrite\nhalt\n'
            'name: .asciz "out.txt"\ndata: .ascii "abc"',
        )
        files = tmp_path / "files"
        result = CliRunner().invoke(main, [str(binary), "--files-dir", str(files)])
        assert result.exit_code == 0, result.output
        assert (files / "out.txt").read_bytes() == b"abc"

    def test_debug_steps(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armrun import main

        binary = write_binary(tmp_path, "mov x0, #1\nmov x1, #2\nhalt")
        result = CliRunner().invoke(main, [str(binary), "--debug"], input="\n" * 5)
        assert result.exit_code == 0, result.output
        assert "mov x0, #1" in result.output
        assert "Executed 2 instructions" in result.output

    def test_debug_quit(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armrun import main

        binary = write_binary(tmp_path, "mov x0, #1\nhalt")
        result = CliRunner().invoke(main, [str(binary), "-d"], input="q\n")
        assert result.exit_code == 0, result.output
        assert "Executed 0 instructions" in result.output

    def test_binary_too_large(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armrun import main

        binary = tmp_path / "big.bin"
        binary.write_bytes(bytes(6000))
        result = CliRunner().invoke(main, [str(binary)])
        assert result.exit_code == 2
        assert "exceeds" in result.output

    def test_missing_file(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armrun import main

        result = CliRunner().invoke(main, [str(tmp_path / "none.bin")])
        assert result.exit_code == 2


# =============================================================================
# armdisasm
# =============================================================================

class TestArmdisasm:
    """Disassembler command."""

    def test_listing(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armdisasm import main

        binary = write_binary(tmp_path, HELLO, "hello.bin")
        result = CliRunner().invoke(main, [str(binary)])
        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[:3] == [
            "; Disassembly of hello.bin",
            "; Size: 20 bytes",
            "; Base address: 0x0000",
        ]
        assert lines[4] == "0000: 52800900  mov w0, #0x48"
        assert lines[-1].endswith("halt")

    def test_no_bytes_reassembles(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armdisasm import main

        binary = write_binary(tmp_path, HELLO)
        result = CliRunner().invoke(main, [str(binary), "--no-bytes"])
        assert result.exit_code == 0, result.output
        assert result.output.splitlines()[0] == "    mov w0, #0x48"
        assert assemble(result.output) == binary.read_bytes()

    def test_address_and_count(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armdisasm import main

        binary = write_binary(tmp_path, HELLO)
        result = CliRunner().invoke(main, [str(binary), "-a", "0x100", "-c", "2"])
        assert result.exit_code == 0, result.output
        body = [line for line in result.output.splitlines() if line and not line.startswith(";")]
        assert len(body) == 2
        assert body[0].startswith("0100:")

    def test_output_file(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armdisasm import main

        binary = write_binary(tmp_path, "nop")
        out = tmp_path / "out.txt"
        result = CliRunner().invoke(main, [str(binary), "-o", str(out)])
        assert result.exit_code == 0, result.output
        assert out.read_text().rstrip().endswith("nop")

    def test_trailing_bytes_warning(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armdisasm import main

        binary = tmp_path / "odd.bin"
        binary.write_bytes(assemble("nop") + b"\x00")
        result = CliRunner().invoke(main, [str(binary)])
        assert result.exit_code == 0
        assert "ignoring 1 trailing byte(s)" in result.output

    def test_bad_address(self, tmp_path):
        from click.testing import CliRunner
        from armlet.cli.armdisasm import main

        binary = write_binary(tmp_path, "nop")
        result = CliRunner().invoke(main, [str(binary), "-a", "zzz"])
        assert result.exit_code == 2
