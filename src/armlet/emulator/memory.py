"""
Memory Subsystem for the Execution Engine
=========================================

A single flat byte array that holds the loaded program followed by free
space for data and the stack.

Address Translation:
    Every access made by loads, stores and extended-opcode pointer
    arguments goes through ``translate()``. An address is accepted when
    it lies inside the window ``[base, base + size)`` or, as a raw
    offset, below ``size``. Multi-byte accesses must fit completely.
    Anything else is rejected: reads return None and writes are dropped.
    Rejected accesses never fault.

Layout (default 5 KiB):
    0x0000-...   Program image (code then data, as assembled)
    ...-0x13FF   Free memory; the stack grows down from the top

Copyright (c) 2025 Hugo José Pinto & Contributors
"""

from typing import Optional
import logging


logger = logging.getLogger(__name__)


class Memory:
    """
    Bounds-checked little-endian memory.

    Attributes:
        size: Number of addressable bytes
        base: Address at which offset 0 is mapped
        program_size: Bytes occupied by the last loaded program

    Example:
        >>> mem = Memory(64)
        >>> mem.write_uint(8, 4, 0xDEADBEEF)
        True
        >>> hex(mem.read_uint(8, 4))
        '0xdeadbeef'
        >>> mem.read_uint(62, 4) is None
        True
    """

    def __init__(self, size: int = 5120, base: int = 0):
        """
        Initialize memory.

        Args:
            size: Memory size in bytes
            base: Base address of the window
        """
        if size <= 0:
            raise ValueError(f"memory size must be positive, got {size}")
        self.size = size
        self.base = base
        self.program_size = 0
        self._data = bytearray(size)

    # =========================================================================
    # Loading
    # =========================================================================

    def load(self, code: bytes) -> None:
        """
        Copy a program image to offset 0 and clear the rest of memory.

        Raises:
            ValueError: If the image does not fit
        """
        if len(code) > self.size:
            raise ValueError(f"program of {len(code)} bytes exceeds {self.size}-byte memory")
        self._data[:] = bytes(self.size)
        self._data[:len(code)] = code
        self.program_size = len(code)
        logger.debug(f"loaded {len(code)} bytes")

    @property
    def data(self) -> bytes:
        """Snapshot of the whole memory."""
        return bytes(self._data)

    # =========================================================================
    # Address Translation
    # =========================================================================

    def translate(self, address: int, length: int = 1) -> Optional[int]:
        """
        Map an address to an offset into memory.

        Args:
            address: Address as computed by the program
            length: Number of bytes the access covers

        Returns:
            Offset into memory, or None if the access is out of range
        """
        if self.base <= address and address - self.base + length <= self.size:
            return address - self.base
        if 0 <= address and address + length <= self.size:
            return address
        return None

    # =========================================================================
    # Byte Access
    # =========================================================================

    def read(self, address: int, length: int) -> Optional[bytes]:
        """Read `length` bytes, or None if any of them is out of range."""
        offset = self.translate(address, length)
        if offset is None:
            logger.debug(f"dropped read of {length} bytes at 0x{address:x}")
            return None
        return bytes(self._data[offset:offset + length])

    def write(self, address: int, data: bytes) -> bool:
        """Write bytes; returns False (writing nothing) if out of range."""
        offset = self.translate(address, len(data))
        if offset is None:
            logger.debug(f"dropped write of {len(data)} bytes at 0x{address:x}")
            return False
        self._data[offset:offset + len(data)] = data
        return True

    def read_uint(self, address: int, size: int) -> Optional[int]:
        """Read an unsigned little-endian integer of `size` bytes."""
        raw = self.read(address, size)
        if raw is None:
            return None
        return int.from_bytes(raw, "little")

    def write_uint(self, address: int, size: int, value: int) -> bool:
        """Write the low `size` bytes of value, little-endian."""
        mask = (1 << (size * 8)) - 1
        return self.write(address, (value & mask).to_bytes(size, "little"))

    def read_cstring(self, address: int, limit: Optional[int] = None) -> bytes:
        """
        Read bytes up to (not including) a NUL terminator.

        Stops early at `limit` bytes or at the first untranslatable
        address.
        """
        out = bytearray()
        while limit is None or len(out) < limit:
            offset = self.translate(address + len(out))
            if offset is None:
                break
            byte = self._data[offset]
            if byte == 0:
                break
            out.append(byte)
        return bytes(out)

    def span(self, address: int, length: int) -> int:
        """
        Number of bytes from `address` (at most `length`) that are
        accessible before the end of memory.
        """
        if length <= 0:
            return 0
        offset = self.translate(address)
        if offset is None:
            return 0
        return min(length, self.size - offset)
