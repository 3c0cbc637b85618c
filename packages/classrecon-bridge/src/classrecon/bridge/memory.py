"""Memory utility functions for reading the program image.

All functions accept a :class:`~classrecon.bridge.host.MemoryReader`
as their first argument.  Multi-byte values are little-endian.
"""

from __future__ import annotations

import struct
from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from .host import MemoryReader


# ---------------------------------------------------------------------------
# String reading
# ---------------------------------------------------------------------------

def read_string(memory: MemoryReader, address: int, max_length: int = 256) -> str:
    """Read a NUL-terminated C string from *address*.

    Parameters
    ----------
    memory:
        The image to read from.
    address:
        Start address of the string.
    max_length:
        Maximum number of bytes to read before giving up.

    Returns
    -------
    str
        The decoded string (stops at the first NUL byte).
    """
    # Byte-wise: the bytes past the terminator may not be mapped.
    data = bytearray()
    while len(data) < max_length:
        byte = memory.read_memory(address + len(data), 1)
        if byte == b"\x00":
            break
        data += byte
    return data.decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Pointer reading
# ---------------------------------------------------------------------------

def read_pointer(memory: MemoryReader, address: int) -> int:
    """Read a pointer-sized integer from *address*.

    The pointer size is taken from the image (4 or 8 bytes).
    """
    ptr_size = memory.pointer_size
    data = memory.read_memory(address, ptr_size)
    fmt = "<Q" if ptr_size == 8 else "<I"
    return struct.unpack(fmt, data)[0]


def read_signed_pointer(memory: MemoryReader, address: int) -> int:
    """Read a pointer-sized signed integer (``ptrdiff_t`` / ``long``)."""
    ptr_size = memory.pointer_size
    data = memory.read_memory(address, ptr_size)
    fmt = "<q" if ptr_size == 8 else "<i"
    return struct.unpack(fmt, data)[0]


def read_pointers(memory: MemoryReader, address: int, count: int) -> List[int]:
    """Read *count* consecutive pointers starting at *address*."""
    ptr_size = memory.pointer_size
    return [read_pointer(memory, address + i * ptr_size) for i in range(count)]


# ---------------------------------------------------------------------------
# Fixed-width integer reads
# ---------------------------------------------------------------------------

def read_uint8(memory: MemoryReader, address: int) -> int:
    """Read an unsigned 8-bit integer."""
    return struct.unpack("B", memory.read_memory(address, 1))[0]


def read_uint16(memory: MemoryReader, address: int) -> int:
    """Read an unsigned 16-bit little-endian integer."""
    return struct.unpack("<H", memory.read_memory(address, 2))[0]


def read_uint32(memory: MemoryReader, address: int) -> int:
    """Read an unsigned 32-bit little-endian integer."""
    return struct.unpack("<I", memory.read_memory(address, 4))[0]


def read_int32(memory: MemoryReader, address: int) -> int:
    """Read a signed 32-bit little-endian integer."""
    return struct.unpack("<i", memory.read_memory(address, 4))[0]


def read_uint64(memory: MemoryReader, address: int) -> int:
    """Read an unsigned 64-bit little-endian integer."""
    return struct.unpack("<Q", memory.read_memory(address, 8))[0]


# ---------------------------------------------------------------------------
# Packing helpers (used to lay out synthetic images)
# ---------------------------------------------------------------------------

def pack_pointer(value: int, ptr_size: int) -> bytes:
    """Encode *value* as a little-endian pointer of *ptr_size* bytes."""
    fmt = "<Q" if ptr_size == 8 else "<I"
    return struct.pack(fmt, value & ((1 << (ptr_size * 8)) - 1))


def pack_uint32(value: int) -> bytes:
    return struct.pack("<I", value & 0xFFFFFFFF)


def pack_int32(value: int) -> bytes:
    return struct.pack("<i", value)
