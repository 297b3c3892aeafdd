"""
Host Services
=============

The extended opcodes reach the outside world only through three small
interfaces, bundled together as ``HostServices``:

- **Console**: write bytes, read one character (blocking)
- **FileStore**: flat store of named byte blobs
- **Clock**: blocking sleep and a monotonic millisecond counter

Each interface has a real implementation for the command-line tools and an
in-memory one for tests:

| Protocol  | Real                 | In-memory        |
|-----------|----------------------|------------------|
| Console   | StreamConsole        | BufferConsole    |
| FileStore | DirectoryFileStore   | MemoryFileStore  |
| Clock     | SystemClock          | ManualClock      |

Example:
    >>> host = HostServices(console=BufferConsole(b"y\\n"))
    >>> host.console.write(b"ok?")
    >>> host.console.read_char()
    121

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional, Protocol
import logging
import sys
import time


logger = logging.getLogger(__name__)

# read_char() result at end of input
EOF = -1


# =============================================================================
# Protocols
# =============================================================================

class Console(Protocol):
    """Character console used by the console opcodes."""

    def write(self, data: bytes) -> None:
        """Write raw bytes."""
        ...

    def read_char(self) -> int:
        """Block until one byte is available and return it, or EOF (-1)."""
        ...


class FileStore(Protocol):
    """
    Flat store of named files.

    Methods report ordinary failures (missing file, name taken) through
    their return value. Storage errors surface as OSError.
    """

    def create(self, name: str) -> bool:
        """Create an empty file; False if it already exists."""
        ...

    def write(self, name: str, data: bytes) -> None:
        """Replace a file's contents, creating it if needed."""
        ...

    def read(self, name: str) -> Optional[bytes]:
        """Return a file's contents, or None if it does not exist."""
        ...

    def delete(self, name: str) -> bool:
        """Delete a file; False if it does not exist."""
        ...

    def exists(self, name: str) -> bool:
        ...


class Clock(Protocol):
    """Time source for the sleep and tick opcodes."""

    def sleep_ms(self, ms: int) -> None:
        ...

    def uptime_ms(self) -> int:
        ...


# =============================================================================
# Consoles
# =============================================================================

class StreamConsole:
    """
    Console over binary streams (stdin/stdout by default).

    Output is flushed after every write so prompts appear before a
    blocking read.
    """

    def __init__(self, input: Optional[BinaryIO] = None, output: Optional[BinaryIO] = None):
        self._input = input if input is not None else sys.stdin.buffer
        self._output = output if output is not None else sys.stdout.buffer

    def write(self, data: bytes) -> None:
        self._output.write(data)
        self._output.flush()

    def read_char(self) -> int:
        data = self._input.read(1)
        if not data:
            return EOF
        return data[0]


class BufferConsole:
    """
    In-memory console for tests.

    Input is served from a byte buffer; output accumulates in `output`.

    Example:
        >>> console = BufferConsole(b"ab")
        >>> console.read_char(), console.read_char(), console.read_char()
        (97, 98, -1)
    """

    def __init__(self, input_data: bytes = b""):
        self._input = bytearray(input_data)
        self._output = bytearray()

    def feed(self, data: bytes) -> None:
        """Append more input."""
        self._input.extend(data)

    def write(self, data: bytes) -> None:
        self._output.extend(data)

    def read_char(self) -> int:
        if not self._input:
            return EOF
        return self._input.pop(0)

    @property
    def output(self) -> bytes:
        return bytes(self._output)

    @property
    def text(self) -> str:
        """Output decoded as latin-1 (one character per byte)."""
        return self._output.decode("latin-1")

    def clear(self) -> None:
        self._output.clear()


# =============================================================================
# File Stores
# =============================================================================

class MemoryFileStore:
    """Dictionary-backed file store."""

    def __init__(self, files: Optional[dict[str, bytes]] = None):
        self.files: dict[str, bytes] = dict(files or {})

    def create(self, name: str) -> bool:
        if name in self.files:
            return False
        self.files[name] = b""
        return True

    def write(self, name: str, data: bytes) -> None:
        self.files[name] = bytes(data)

    def read(self, name: str) -> Optional[bytes]:
        return self.files.get(name)

    def delete(self, name: str) -> bool:
        return self.files.pop(name, None) is not None

    def exists(self, name: str) -> bool:
        return name in self.files


class DirectoryFileStore:
    """
    File store backed by a directory on disk.

    Names are resolved relative to the root and must stay inside it;
    a name that escapes the root raises PermissionError.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Path:
        path = (self.root / name).resolve()
        if not path.is_relative_to(self.root) or path == self.root:
            raise PermissionError(f"file name outside store: {name!r}")
        return path

    def create(self, name: str) -> bool:
        path = self._path(name)
        try:
            path.touch(exist_ok=False)
        except FileExistsError:
            return False
        return True

    def write(self, name: str, data: bytes) -> None:
        self._path(name).write_bytes(data)

    def read(self, name: str) -> Optional[bytes]:
        path = self._path(name)
        if not path.is_file():
            return None
        return path.read_bytes()

    def delete(self, name: str) -> bool:
        path = self._path(name)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()


# =============================================================================
# Clocks
# =============================================================================

class SystemClock:
    """Wall-clock implementation using time.monotonic()."""

    def __init__(self):
        self._start = time.monotonic()

    def sleep_ms(self, ms: int) -> None:
        time.sleep(ms / 1000)

    def uptime_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)


class ManualClock:
    """
    Deterministic clock for tests: sleeping advances time instantly.

    Attributes:
        now_ms: Current uptime in milliseconds
        sleeps: Every sleep duration requested, in order
    """

    def __init__(self, start_ms: int = 0):
        self.now_ms = start_ms
        self.sleeps: list[int] = []

    def sleep_ms(self, ms: int) -> None:
        self.sleeps.append(ms)
        self.now_ms += ms

    def uptime_ms(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


# =============================================================================
# Bundle
# =============================================================================

@dataclass
class HostServices:
    """
    Everything the extended opcodes may touch outside the engine.

    The defaults are the in-memory implementations so that an engine built
    without arguments never touches the real terminal or disk.
    """
    console: Console = field(default_factory=BufferConsole)
    files: FileStore = field(default_factory=MemoryFileStore)
    clock: Clock = field(default_factory=ManualClock)

    @classmethod
    def system(cls, files_dir: Optional[str | Path] = None) -> "HostServices":
        """
        Host services for the command-line tools.

        Args:
            files_dir: Directory backing the file opcodes; in-memory if None
        """
        files: FileStore = DirectoryFileStore(files_dir) if files_dir else MemoryFileStore()
        return cls(console=StreamConsole(), files=files, clock=SystemClock())
