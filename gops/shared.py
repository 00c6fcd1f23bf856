"""Client side of the agent commands: talk to a running agent over TCP."""

from __future__ import annotations

import os
import re
import shutil
import socket
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from typing import Callable, Sequence, Tuple

from .config import get_port
from .protocol import MAX_VARINT_LEN64, Signal, encode_varint

Address = Tuple[str, int]

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


class GopsError(Exception):
    """A command against an agent failed."""


@dataclass(frozen=True)
class AgentCommand:
    """A sub-command that sends one request to an agent."""

    name: str
    short: str
    fn: Callable[[Address, Sequence[str]], None]


def _parse_port(port: str) -> int:
    if _INTEGER.fullmatch(port):
        number = int(port)
        if not 0 <= number <= 65535:
            raise ValueError(f"invalid port {port!r}")
        return number
    try:
        return socket.getservbyname(port, "tcp")
    except OSError:
        raise ValueError(f"unknown port {port!r}") from None


def _resolve(target: str) -> Address:
    host, sep, port = target.rpartition(":")
    if not sep:
        raise ValueError(f"address {target}: missing port in address")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"address {target}: too many colons in address")
    number = _parse_port(port)
    if not host:
        return "", number
    info = socket.getaddrinfo(host, number, type=socket.SOCK_STREAM)
    return info[0][4][0], number


def target_to_addr(target: str) -> Address:
    """Turn ``host:port`` or a local PID into the agent's (host, port)."""
    if ":" in target:
        try:
            return _resolve(target)
        except (ValueError, OSError) as exc:
            raise GopsError(f"couldn't parse dst address: {exc}") from exc
    if not _INTEGER.fullmatch(target):
        raise GopsError(f"couldn't parse PID: invalid integer {target!r}")
    pid = int(target)
    try:
        port = get_port(pid)
    except OSError as exc:
        raise GopsError(f"couldn't get port for PID {pid}: {exc}") from exc
    try:
        return "127.0.0.1", _parse_port(port)
    except ValueError as exc:
        raise GopsError(f"couldn't get port for PID {pid}: {exc}") from exc


def send_command(addr: Address, signal: int, params: bytes = b"") -> bytes:
    """Send one request to the agent at ``addr`` and return its whole answer."""
    host, port = addr
    try:
        conn = socket.create_connection((host or "127.0.0.1", port))
    except OSError as exc:
        raise GopsError(f"couldn't get port by PID: {exc}") from exc
    with conn:
        try:
            conn.sendall(bytes([int(signal)]) + bytes(params))
        except OSError as exc:
            raise GopsError(f"couldn't get port by PID: {exc}") from exc
        chunks = []
        while chunk := conn.recv(65536):
            chunks.append(chunk)
    return b"".join(chunks)


def _print_output(out: bytes) -> None:
    sys.stdout.write(out.decode("utf-8", errors="replace"))
    sys.stdout.flush()


def _command_with_print(addr: Address, signal: int, params: bytes = b"") -> None:
    _print_output(send_command(addr, signal, params))


def _temp_file(prefix: str) -> str:
    fd, path = tempfile.mkstemp(prefix=prefix)
    os.close(fd)
    return path


def _write(path: str, data: bytes) -> None:
    with open(path, "wb") as handle:
        handle.write(data)


def _run_go_tool(*args: str) -> None:
    completed = subprocess.run(["go", "tool", *args], env=dict(os.environ), check=False)
    if completed.returncode != 0:
        raise GopsError(f"exit status {completed.returncode}")


def stack_trace(addr: Address, params: Sequence[str]) -> None:
    """Print the stack traces of the target."""
    _command_with_print(addr, Signal.STACK_TRACE)


def gc(addr: Address, params: Sequence[str]) -> None:
    """Run the garbage collector in the target and wait for it to finish."""
    send_command(addr, Signal.GC)


def set_gc(addr: Address, params: Sequence[str]) -> None:
    """Set the target's garbage collection percentage; ``off`` disables it."""
    if len(params) != 1:
        raise GopsError("missing gc percentage")
    value = params[0]
    if value.lower() == "off":
        percent = -1
    else:
        if not _INTEGER.fullmatch(value):
            raise GopsError(f"invalid gc percentage {value!r}")
        percent = int(value)
        if not _INT64_MIN <= percent <= _INT64_MAX:
            raise GopsError(f"gc percentage {value!r} out of range")
    payload = encode_varint(percent).ljust(MAX_VARINT_LEN64, b"\0")
    _command_with_print(addr, Signal.SET_GC_PERCENT, payload)


def mem_stats(addr: Address, params: Sequence[str]) -> None:
    """Print the target's allocation and garbage collection statistics."""
    _command_with_print(addr, Signal.MEM_STATS)


def stats(addr: Address, params: Sequence[str]) -> None:
    """Print the target's runtime statistics."""
    _command_with_print(addr, Signal.STATS)


def version(addr: Address, params: Sequence[str]) -> None:
    """Print the runtime version the target was built with."""
    _command_with_print(addr, Signal.VERSION)


def trace(addr: Address, params: Sequence[str]) -> None:
    """Record a trace, save it, and open it with ``go tool trace`` if available."""
    print("Tracing now, will take 5 secs...", flush=True)
    out = send_command(addr, Signal.TRACE)
    if not out:
        raise GopsError("nothing has traced")
    path = _temp_file("trace")
    _write(path, out)
    print(f"Trace dump saved to: {path}", flush=True)
    if shutil.which("go") is None:
        return
    try:
        _run_go_tool("trace", path)
    finally:
        os.remove(path)


def _pprof(addr: Address, signal: int, prefix: str) -> None:
    dump_path = _temp_file(prefix + "_profile")
    out = send_command(addr, signal)
    if not out:
        raise GopsError("failed to read the profile")
    _write(dump_path, out)
    print(f"Profile dump saved to: {dump_path}", flush=True)
    if shutil.which("go") is None:
        return
    try:
        binary_path = _temp_file("binary")
        try:
            try:
                binary = send_command(addr, Signal.BINARY_DUMP)
            except (GopsError, OSError) as exc:
                raise GopsError(f"failed to read the binary: {exc}") from exc
            if not binary:
                raise GopsError("failed to read the binary")
            _write(binary_path, binary)
            print(f"Binary file saved to: {binary_path}", flush=True)
            _run_go_tool("pprof", binary_path, dump_path)
        finally:
            os.remove(binary_path)
    finally:
        os.remove(dump_path)


def pprof_heap(addr: Address, params: Sequence[str]) -> None:
    """Fetch the heap profile and open it with ``go tool pprof`` if available."""
    _pprof(addr, Signal.HEAP_PROFILE, "heap")


def pprof_cpu(addr: Address, params: Sequence[str]) -> None:
    """Fetch a 30 second CPU profile and open it with ``go tool pprof``."""
    print("Profiling CPU now, will take 30 secs...", flush=True)
    _pprof(addr, Signal.CPU_PROFILE, "cpu")


def agent_commands() -> list[AgentCommand]:
    """All the commands that talk to an agent, in display order."""
    return [
        AgentCommand("stack", "Prints the stack trace.", stack_trace),
        AgentCommand(
            "gc", "Runs the garbage collector and blocks until successful.", gc
        ),
        AgentCommand(
            "setgc",
            "Sets the garbage collection target percentage. "
            "To completely stop GC, set to 'off'",
            set_gc,
        ),
        AgentCommand(
            "memstats", "Prints the allocation and garbage collection stats.", mem_stats
        ),
        AgentCommand("stats", "Prints runtime stats.", stats),
        AgentCommand(
            "trace",
            'Runs the runtime tracer for 5 secs and launches "go tool trace".',
            trace,
        ),
        AgentCommand(
            "pprof-heap",
            'Reads the heap profile and launches "go tool pprof".',
            pprof_heap,
        ),
        AgentCommand(
            "pprof-cpu",
            'Reads the CPU profile and launches "go tool pprof".',
            pprof_cpu,
        ),
        AgentCommand(
            "version", "Prints the runtime version used to build the program.", version
        ),
    ]