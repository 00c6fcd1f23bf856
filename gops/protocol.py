"""Wire protocol shared by the agent and the command-line client."""

from __future__ import annotations

from enum import IntEnum
from typing import BinaryIO

MAX_VARINT_LEN64 = 10

_UINT64_MASK = (1 << 64) - 1
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


class Signal(IntEnum):
    """Single-byte requests understood by a running agent."""

    STACK_TRACE = 0x1
    GC = 0x2
    MEM_STATS = 0x3
    VERSION = 0x4
    HEAP_PROFILE = 0x5
    CPU_PROFILE = 0x6
    STATS = 0x7
    TRACE = 0x8
    BINARY_DUMP = 0x9
    SET_GC_PERCENT = 0x10


def encode_varint(value: int) -> bytes:
    """Encode a signed 64-bit integer as a zig-zag varint."""
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"value {value} does not fit in a signed 64-bit integer")
    unsigned = (value << 1) & _UINT64_MASK
    if value < 0:
        unsigned ^= _UINT64_MASK
    out = bytearray()
    while unsigned >= 0x80:
        out.append((unsigned & 0x7F) | 0x80)
        unsigned >>= 7
    out.append(unsigned)
    return bytes(out)


def read_varint(stream: BinaryIO) -> int:
    """Read one zig-zag varint from a binary stream, consuming only its bytes."""
    unsigned = 0
    shift = 0
    for position in range(MAX_VARINT_LEN64):
        chunk = stream.read(1)
        if not chunk:
            raise EOFError("EOF" if position == 0 else "unexpected EOF")
        byte = chunk[0]
        if byte < 0x80:
            if position == MAX_VARINT_LEN64 - 1 and byte > 1:
                raise ValueError("varint overflows a 64-bit integer")
            unsigned |= byte << shift
            break
        unsigned |= (byte & 0x7F) << shift
        shift += 7
    else:
        raise ValueError("varint overflows a 64-bit integer")

    value = unsigned >> 1
    if unsigned & 1:
        value = ~value
    return value