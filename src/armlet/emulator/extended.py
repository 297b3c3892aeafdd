"""
Extended Opcode Dispatcher
==========================

Extended opcodes are SVC words whose 16-bit immediate selects a host
service. Arguments are read from x0-x4 and results written to x0.

| ID          | Name    | Arguments               | Result       |
|-------------|---------|-------------------------|--------------|
| 0x100       | prt     | x0=string               |              |
| 0x101       | prtc    | x0=char                 |              |
| 0x102       | prtn    | x0=value (signed)       |              |
| 0x103       | inp     |                         | char (0=EOF) |
| 0x104       | inps    | x0=buf, x1=max          | length       |
| 0x105       | prtx    | x0=value                |              |
| 0x110-0x116 | cls setc plot line box reset canvas (framebuffer)  |
| 0x120       | fcreat  | x0=name                 | 1/0          |
| 0x121       | fwrite  | x0=name, x1=buf, x2=len | len or 0     |
| 0x122       | fread   | x0=name, x1=buf, x2=max | bytes read   |
| 0x123       | fdel    | x0=name                 | 1/0          |
| 0x124       | fcopy   | x0=src, x1=dst          | 1/0          |
| 0x125       | fmove   | x0=src, x1=dst          | 1/0          |
| 0x126       | fexist  | x0=name                 | 1/0          |
| 0x130       | strlen  | x0=string               | length       |
| 0x131       | memcpy  | x0=dst, x1=src, x2=len  |              |
| 0x132       | memset  | x0=addr, x1=byte, x2=len|              |
| 0x133       | abs     | x0=value                | abs value    |
| 0x1F0       | sleep   | x0=ms                   |              |
| 0x1F1       | rnd     | x0=max                  | 0..max-1     |
| 0x1F2       | tick    |                         | uptime ms    |
| 0x1FF       | halt    |                         |              |

Pointer arguments pass through the memory translator: out-of-range
pointers read as empty and writes to them are dropped. File-store
failures return 0 in x0. Console failures and unknown IDs are fatal.

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass, field
from typing import Callable, Protocol
import logging

from armlet.errors import ExecutionFault
from armlet.assembler.opcodes import EXTENDED_BY_ID, Mnemonic, sign_extend
from armlet.emulator.config import EngineConfig
from armlet.emulator.display import Framebuffer
from armlet.emulator.host import EOF, HostServices
from armlet.emulator.memory import Memory


logger = logging.getLogger(__name__)

MASK64 = (1 << 64) - 1


class RegisterAccess(Protocol):
    """Register file view used by the dispatcher."""

    def get_reg(self, number: int) -> int:
        ...

    def set_reg(self, number: int, value: int) -> None:
        ...


@dataclass
class ExecutionContext:
    """
    Per-run state touched by extended opcodes.

    Attributes:
        host: Console, file store and clock
        framebuffer: Character grid for the graphics opcodes
        rng_seed: Current state of the random-number generator
    """
    host: HostServices = field(default_factory=HostServices)
    framebuffer: Framebuffer = field(default_factory=Framebuffer)
    rng_seed: int = 12345

    @classmethod
    def from_config(cls, config: EngineConfig, host: HostServices) -> "ExecutionContext":
        return cls(
            host=host,
            framebuffer=Framebuffer(config.default_canvas, config.max_canvas),
            rng_seed=config.rng_seed,
        )


class ExtendedOpcodes:
    """
    Dispatches extended opcode IDs to their handlers.

    Usage:
        dispatcher = ExtendedOpcodes(memory, context)
        halt = dispatcher.dispatch(0x101, cpu)
    """

    def __init__(self, memory: Memory, context: ExecutionContext, config: EngineConfig | None = None):
        self.memory = memory
        self.context = context
        self.config = config or EngineConfig()

        handlers: dict[Mnemonic, Callable[[RegisterAccess], bool | None]] = {
            Mnemonic.PRT: self._prt,
            Mnemonic.PRTC: self._prtc,
            Mnemonic.PRTN: self._prtn,
            Mnemonic.INP: self._inp,
            Mnemonic.INPS: self._inps,
            Mnemonic.PRTX: self._prtx,
            Mnemonic.CLS: self._cls,
            Mnemonic.SETC: self._setc,
            Mnemonic.PLOT: self._plot,
            Mnemonic.LINE: self._line,
            Mnemonic.BOX: self._box,
            Mnemonic.RESET: self._reset,
            Mnemonic.CANVAS: self._canvas,
            Mnemonic.FCREAT: self._fcreat,
            Mnemonic.FWRITE: self._fwrite,
            Mnemonic.FREAD: self._fread,
            Mnemonic.FDEL: self._fdel,
            Mnemonic.FCOPY: self._fcopy,
            Mnemonic.FMOVE: self._fmove,
            Mnemonic.FEXIST: self._fexist,
            Mnemonic.STRLEN: self._strlen,
            Mnemonic.MEMCPY: self._memcpy,
            Mnemonic.MEMSET: self._memset,
            Mnemonic.ABS: self._abs,
            Mnemonic.SLEEP: self._sleep,
            Mnemonic.RND: self._rnd,
            Mnemonic.TICK: self._tick,
            Mnemonic.HALT: self._halt,
        }
        self._handlers = {
            op_id: handlers[mnemonic] for op_id, mnemonic in EXTENDED_BY_ID.items()
        }

    def is_extended(self, op_id: int) -> bool:
        return op_id in self._handlers

    def dispatch(self, op_id: int, regs: RegisterAccess) -> bool:
        """
        Run one extended opcode.

        Returns:
            True if the opcode requests a halt

        Raises:
            ExecutionFault: For unknown IDs or console failures (pc is
                filled in by the caller)
        """
        handler = self._handlers.get(op_id)
        if handler is None:
            raise ExecutionFault(f"Unknown SVC #0x{op_id:x}", 0)
        logger.debug(f"extended opcode 0x{op_id:x} ({EXTENDED_BY_ID[op_id].value})")
        return bool(handler(regs))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _write(self, data: bytes) -> None:
        try:
            self.context.host.console.write(data)
        except OSError as e:
            raise ExecutionFault(f"console write failed: {e}", 0) from e

    def _read_char(self) -> int:
        try:
            return self.context.host.console.read_char()
        except OSError as e:
            raise ExecutionFault(f"console read failed: {e}", 0) from e

    def _read_name(self, address: int) -> str:
        return self.memory.read_cstring(address, self.config.filename_limit).decode("latin-1")

    @property
    def _fb(self) -> Framebuffer:
        fb = self.context.framebuffer
        fb.ensure_active()
        return fb

    # =========================================================================
    # Console
    # =========================================================================

    def _prt(self, regs: RegisterAccess) -> None:
        self._write(self.memory.read_cstring(regs.get_reg(0)))

    def _prtc(self, regs: RegisterAccess) -> None:
        self._write(bytes([regs.get_reg(0) & 0xFF]))

    def _prtn(self, regs: RegisterAccess) -> None:
        self._write(str(sign_extend(regs.get_reg(0), 64)).encode())

    def _inp(self, regs: RegisterAccess) -> None:
        char = self._read_char()
        regs.set_reg(0, 0 if char == EOF else char)

    def _inps(self, regs: RegisterAccess) -> None:
        """
        Read an editable line into a buffer.

        Reads at most max-1 characters, echoing each; backspace (8 or 127)
        erases the previous character. CR, LF or end of input finish the
        line. The buffer is NUL-terminated and the length returned.
        """
        buf = regs.get_reg(0)
        limit = regs.get_reg(1) or self.config.inps_default_max
        limit = min(limit, self.config.inps_limit)

        length = 0
        while length < limit - 1:
            char = self._read_char()
            if char == EOF:
                break
            if char in (0x0D, 0x0A):
                self._write(b"\n")
                break
            if char in (0x08, 0x7F):
                if length > 0:
                    length -= 1
                    self._write(b"\b \b")
                continue
            self._write(bytes([char]))
            self.memory.write(buf + length, bytes([char]))
            length += 1

        self.memory.write(buf + length, b"\0")
        regs.set_reg(0, length)

    def _prtx(self, regs: RegisterAccess) -> None:
        self._write(f"0x{regs.get_reg(0) & 0xFFFFFFFF:x}".encode())

    # =========================================================================
    # Framebuffer
    # =========================================================================

    def _cls(self, regs: RegisterAccess) -> None:
        self._fb.clear()

    def _setc(self, regs: RegisterAccess) -> None:
        self._fb.set_colors(regs.get_reg(0), regs.get_reg(1))

    def _plot(self, regs: RegisterAccess) -> None:
        self._fb.plot(regs.get_reg(0) & 0xFF, regs.get_reg(1) & 0xFF, regs.get_reg(2) & 0xFF)

    def _line(self, regs: RegisterAccess) -> None:
        char = regs.get_reg(4) & 0xFF or ord("*")
        self._fb.line(
            regs.get_reg(0) & 0xFF, regs.get_reg(1) & 0xFF,
            regs.get_reg(2) & 0xFF, regs.get_reg(3) & 0xFF,
            char,
        )

    def _box(self, regs: RegisterAccess) -> None:
        self._fb.box(
            regs.get_reg(0) & 0xFF, regs.get_reg(1) & 0xFF,
            regs.get_reg(2) & 0xFF, regs.get_reg(3) & 0xFF,
        )

    def _reset(self, regs: RegisterAccess) -> None:
        self.context.framebuffer.reset_colors()

    def _canvas(self, regs: RegisterAccess) -> None:
        self.context.framebuffer.set_canvas(regs.get_reg(0), regs.get_reg(1))

    # =========================================================================
    # Files
    # =========================================================================

    def _file_op(self, regs: RegisterAccess, operation: Callable[[], int]) -> None:
        """Run a file-store operation; storage errors give 0."""
        try:
            result = operation()
        except OSError as e:
            logger.warning(f"file operation failed: {e}")
            result = 0
        regs.set_reg(0, result)

    def _fcreat(self, regs: RegisterAccess) -> None:
        name = self._read_name(regs.get_reg(0))
        files = self.context.host.files
        self._file_op(regs, lambda: int(bool(name) and files.create(name)))

    def _fwrite(self, regs: RegisterAccess) -> None:
        name = self._read_name(regs.get_reg(0))
        length = regs.get_reg(2)
        data = self.memory.read(regs.get_reg(1), length) if length else b""
        files = self.context.host.files

        def write() -> int:
            if not name or data is None:
                return 0
            files.write(name, data)
            return length

        self._file_op(regs, write)

    def _fread(self, regs: RegisterAccess) -> None:
        name = self._read_name(regs.get_reg(0))
        buf = regs.get_reg(1)
        limit = regs.get_reg(2)
        files = self.context.host.files

        def read() -> int:
            if not name or self.memory.translate(buf, limit) is None:
                return 0
            data = files.read(name)
            if data is None:
                return 0
            chunk = data[:limit]
            self.memory.write(buf, chunk)
            return len(chunk)

        self._file_op(regs, read)

    def _fdel(self, regs: RegisterAccess) -> None:
        name = self._read_name(regs.get_reg(0))
        files = self.context.host.files
        self._file_op(regs, lambda: int(bool(name) and files.delete(name)))

    def _transfer(self, regs: RegisterAccess, remove_source: bool) -> None:
        """Copy a file to a new name, optionally deleting the source."""
        src = self._read_name(regs.get_reg(0))
        dst = self._read_name(regs.get_reg(1))
        files = self.context.host.files

        def transfer() -> int:
            if not src or not dst:
                return 0
            data = files.read(src)
            if data is None or not files.create(dst):
                return 0
            files.write(dst, data)
            if remove_source:
                files.delete(src)
            return 1

        self._file_op(regs, transfer)

    def _fcopy(self, regs: RegisterAccess) -> None:
        self._transfer(regs, remove_source=False)

    def _fmove(self, regs: RegisterAccess) -> None:
        self._transfer(regs, remove_source=True)

    def _fexist(self, regs: RegisterAccess) -> None:
        name = self._read_name(regs.get_reg(0))
        files = self.context.host.files
        self._file_op(regs, lambda: int(bool(name) and files.exists(name)))

    # =========================================================================
    # Memory Helpers
    # =========================================================================

    def _strlen(self, regs: RegisterAccess) -> None:
        regs.set_reg(0, len(self.memory.read_cstring(regs.get_reg(0))))

    def _memcpy(self, regs: RegisterAccess) -> None:
        """Copy with memmove semantics, clipped to accessible memory."""
        dst, src, length = regs.get_reg(0), regs.get_reg(1), regs.get_reg(2)
        count = min(self.memory.span(dst, length), self.memory.span(src, length))
        if count:
            self.memory.write(dst, self.memory.read(src, count))

    def _memset(self, regs: RegisterAccess) -> None:
        addr, value, length = regs.get_reg(0), regs.get_reg(1) & 0xFF, regs.get_reg(2)
        count = self.memory.span(addr, length)
        if count:
            self.memory.write(addr, bytes([value]) * count)

    def _abs(self, regs: RegisterAccess) -> None:
        regs.set_reg(0, abs(sign_extend(regs.get_reg(0), 64)) & MASK64)

    # =========================================================================
    # System
    # =========================================================================

    def _sleep(self, regs: RegisterAccess) -> None:
        self.context.host.clock.sleep_ms(regs.get_reg(0) & 0xFFFF)

    def _rnd(self, regs: RegisterAccess) -> None:
        """Linear congruential generator; result in [0, max)."""
        seed = (self.context.rng_seed * 1103515245 + 12345) & 0xFFFFFFFF
        self.context.rng_seed = seed
        limit = regs.get_reg(0) & 0xFFFFFFFF or 1
        regs.set_reg(0, (seed >> 16) % limit)

    def _tick(self, regs: RegisterAccess) -> None:
        regs.set_reg(0, self.context.host.clock.uptime_ms())

    def _halt(self, regs: RegisterAccess) -> bool:
        return True
