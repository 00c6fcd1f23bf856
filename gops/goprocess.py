"""Discovery of the Go programs running on this host."""

from __future__ import annotations

import mmap
import os
import struct
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Tuple

import psutil

from .config import pid_file

DEFAULT_CONCURRENCY_LIMIT = 10

Detection = Tuple[str, str, bool]
Detector = Callable[[object], Optional[Detection]]

_SKIPPED = (psutil.Error, OSError, ValueError)

_BUILDINFO_MAGIC = b"\xff Go buildinf:"
_BUILDINFO_HEADER_SIZE = 32
_BUILDINFO_ALIGN = 16
_FLAG_BIG_ENDIAN = 0x1
_FLAG_VERSION_INLINE = 0x2
_MAX_STRING_LEN = 1 << 20

_EXECUTABLE_MAGICS = (
    b"\x7fELF",
    b"MZ",
    b"\xfe\xed\xfa\xce",
    b"\xfe\xed\xfa\xcf",
    b"\xce\xfa\xed\xfe",
    b"\xcf\xfa\xed\xfe",
    b"\xca\xfe\xba\xbe",
)

_PT_LOAD = 1


@dataclass(frozen=True)
class GoProcess:
    """A running Go program."""

    pid: int
    ppid: int = 0
    name: str = ""
    path: str = ""
    build_version: str = ""
    agent: bool = False


def _inspect(proc, detect: Detector) -> GoProcess | None:
    try:
        detection = detect(proc)
        if detection is None:
            return None
        path, version, agent = detection
        return GoProcess(
            pid=int(proc.pid),
            ppid=int(proc.ppid()),
            name=proc.name(),
            path=path,
            build_version=version,
            agent=agent,
        )
    except _SKIPPED:
        return None


def find_all(
    processes: Iterable | None = None,
    detector: Detector | None = None,
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
) -> list[GoProcess]:
    """Return the Go processes among ``processes`` (all processes by default).

    Processes that cannot be inspected are left out.
    """
    if concurrency_limit < 1:
        raise ValueError("concurrency limit must be at least 1")
    if processes is None:
        try:
            processes = list(psutil.process_iter())
        except psutil.Error:
            return []
    else:
        processes = list(processes)
    if not processes:
        return []
    detect = detector or is_go
    with ThreadPoolExecutor(max_workers=concurrency_limit) as pool:
        found = list(pool.map(lambda proc: _inspect(proc, detect), processes))
    return [proc for proc in found if proc is not None]


def find(pid: int) -> GoProcess | None:
    """Describe process ``pid`` if it is a Go program, otherwise return None."""
    proc = psutil.Process(pid)
    try:
        detection = is_go(proc)
    except _SKIPPED:
        return None
    if detection is None:
        return None
    path, version, agent = detection
    return GoProcess(
        pid=int(proc.pid),
        ppid=int(proc.ppid()),
        name=proc.name(),
        path=path,
        build_version=version,
        agent=agent,
    )


def is_go(process) -> Detection | None:
    """Return (path, Go version, agent running) for a Go process.

    Returns None for the system process; raises if the binary cannot be read
    or is not a Go executable.
    """
    if process.pid == 0:
        return None
    path = process.exe()
    version = go_version(path)
    try:
        agent = os.path.exists(pid_file(int(process.pid)))
    except OSError:
        agent = False
    return path, version, agent


def go_version(path: str) -> str:
    """Read the Go toolchain version recorded in the executable at ``path``."""
    with open(path, "rb") as handle:
        size = os.fstat(handle.fileno()).st_size
        if size < 4:
            raise ValueError("unrecognized file format")
        with mmap.mmap(handle.fileno(), 0, access=mmap.ACCESS_READ) as data:
            head = data[:4]
            if not any(head.startswith(magic) for magic in _EXECUTABLE_MAGICS):
                raise ValueError("unrecognized file format")
            return _find_build_version(data, size)


def _find_build_version(data, size: int) -> str:
    position = data.find(_BUILDINFO_MAGIC)
    while position != -1:
        if (
            position % _BUILDINFO_ALIGN == 0
            and size - position >= _BUILDINFO_HEADER_SIZE
        ):
            version = _decode_header(data, position)
            if version:
                return version
        position = data.find(_BUILDINFO_MAGIC, position + 1)
    raise ValueError("not a Go executable")


def _decode_header(data, position: int) -> str | None:
    ptr_size = data[position + 14]
    flags = data[position + 15]
    if flags & _FLAG_VERSION_INLINE:
        return _read_inline_string(data, position + _BUILDINFO_HEADER_SIZE)
    if ptr_size not in (4, 8):
        return None
    order = "big" if flags & _FLAG_BIG_ENDIAN else "little"
    start = position + 16
    address = int.from_bytes(data[start : start + ptr_size], order)
    return _read_pointer_string(data, address, ptr_size, order)


def _read_uvarint(data, offset: int) -> tuple[int, int] | None:
    value = 0
    shift = 0
    for index in range(10):
        if offset + index >= len(data):
            return None
        byte = data[offset + index]
        value |= (byte & 0x7F) << shift
        if byte < 0x80:
            return value, offset + index + 1
        shift += 7
    return None


def _read_inline_string(data, offset: int) -> str | None:
    decoded = _read_uvarint(data, offset)
    if decoded is None:
        return None
    length, start = decoded
    if length > len(data) - start:
        return None
    return data[start : start + length].decode("utf-8", errors="replace")


def _read_pointer_string(data, address: int, ptr_size: int, order: str) -> str | None:
    header_offset = _elf_offset(data, address)
    if header_offset is None or header_offset + 2 * ptr_size > len(data):
        return None
    string_address = int.from_bytes(
        data[header_offset : header_offset + ptr_size], order
    )
    length = int.from_bytes(
        data[header_offset + ptr_size : header_offset + 2 * ptr_size], order
    )
    if length == 0 or length > _MAX_STRING_LEN:
        return None
    string_offset = _elf_offset(data, string_address)
    if string_offset is None or string_offset + length > len(data):
        return None
    return data[string_offset : string_offset + length].decode(
        "utf-8", errors="replace"
    )


def _elf_offset(data, address: int) -> int | None:
    """Map a virtual address to a file offset using the ELF program headers."""
    if len(data) < 52 or data[:4] != b"\x7fELF":
        return None
    elf_class = data[4]
    endian = "<" if data[5] == 1 else ">"
    if elf_class == 2:
        (phoff,) = struct.unpack_from(endian + "Q", data, 32)
        phentsize, phnum = struct.unpack_from(endian + "HH", data, 54)
    elif elf_class == 1:
        (phoff,) = struct.unpack_from(endian + "I", data, 28)
        phentsize, phnum = struct.unpack_from(endian + "HH", data, 42)
    else:
        return None
    for number in range(phnum):
        base = phoff + number * phentsize
        if base + phentsize > len(data):
            return None
        if elf_class == 2:
            (p_type,) = struct.unpack_from(endian + "I", data, base)
            p_offset, p_vaddr = struct.unpack_from(endian + "QQ", data, base + 8)
            (p_filesz,) = struct.unpack_from(endian + "Q", data, base + 32)
        else:
            p_type, p_offset, p_vaddr = struct.unpack_from(endian + "III", data, base)
            (p_filesz,) = struct.unpack_from(endian + "I", data, base + 16)
        if p_type == _PT_LOAD and p_vaddr <= address < p_vaddr + p_filesz:
            return p_offset + (address - p_vaddr)
    return None