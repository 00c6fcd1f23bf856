"""Diagnostics agent that a program starts so the client can inspect it."""

from __future__ import annotations

import errno
import gc
import os
import platform
import shutil
import signal
import socket
import sys
import threading
import time
import traceback
import tracemalloc
from collections import Counter
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator

import psutil

from .config import config_dir
from .protocol import Signal, read_varint

DEFAULT_ADDR = "127.0.0.1:0"
CPU_PROFILE_SECONDS = 30.0
TRACE_SECONDS = 5.0
SAMPLE_INTERVAL = 0.01

UNITS = (" bytes", "KB", "MB", "GB", "TB", "PB")

_ACCEPT_POLL = 0.2
_DRAIN_TIMEOUT = 1.0


@dataclass
class Options:
    """Settings for :func:`listen`."""

    addr: str = ""
    config_dir: str = ""
    shutdown_cleanup: bool = False
    reuse_socket_addr_and_port: bool = False


class _AgentState:
    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.listener: socket.socket | None = None
        self.portfile: str | None = None
        self.thread: threading.Thread | None = None
        self.stop = threading.Event()
        self.previous_handlers: dict[int, object] = {}


_state = _AgentState()


def _parse_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"address {addr}: missing port in address")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"address {addr}: invalid port") from None


def _open_listener(addr: str, reuse: bool) -> socket.socket:
    host, port = _parse_addr(addr)
    family, kind, proto, _, sockaddr = socket.getaddrinfo(
        host or None, port, socket.AF_UNSPEC, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
    )[0]
    sock = socket.socket(family, kind, proto)
    try:
        if reuse and os.name != "nt":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind(sockaddr)
        sock.listen()
    except BaseException:
        sock.close()
        raise
    return sock


def _save_config(options: Options, port: int) -> str:
    directory = options.config_dir or config_dir()
    os.makedirs(directory, mode=0o777, exist_ok=True)
    path = os.path.join(directory, str(os.getpid()))
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(str(port))
    return path


def _on_shutdown_signal(signum, _frame) -> None:
    close()
    sys.exit(0 if signum == signal.SIGTERM else 1)


def _install_shutdown_handlers() -> None:
    for name in ("SIGINT", "SIGTERM", "SIGQUIT"):
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        previous = signal.signal(signum, _on_shutdown_signal)
        _state.previous_handlers[signum] = previous


def _restore_shutdown_handlers() -> None:
    for signum, previous in _state.previous_handlers.items():
        try:
            signal.signal(signum, previous)
        except (ValueError, TypeError):
            pass
    _state.previous_handlers.clear()


def listen(options: Options | None = None) -> None:
    """Start the agent in the background.

    Any program on the host can connect to the agent's TCP endpoint.
    """
    options = options or Options()
    with _state.lock:
        if _state.listener is not None:
            host, port = _state.listener.getsockname()[:2]
            raise RuntimeError(f"gops: agent already listening at: {host}:{port}")

        listener = _open_listener(
            options.addr or DEFAULT_ADDR, options.reuse_socket_addr_and_port
        )
        _state.listener = listener
        _state.stop = threading.Event()
        try:
            port = listener.getsockname()[1]
            try:
                _state.portfile = _save_config(options, port)
            except OSError as exc:
                # Without a writable config dir the agent still works remotely.
                if exc.errno not in (errno.EROFS, errno.EPERM):
                    raise
            if options.shutdown_cleanup:
                _install_shutdown_handlers()
        except BaseException:
            _close_locked()
            raise

        listener.settimeout(_ACCEPT_POLL)
        _state.thread = threading.Thread(
            target=_serve, args=(listener, _state.stop), name="gops-agent", daemon=True
        )
        _state.thread.start()


def _close_locked() -> None:
    if _state.portfile:
        try:
            os.remove(_state.portfile)
        except OSError:
            pass
        _state.portfile = None
    _state.stop.set()
    if _state.listener is not None:
        _state.listener.close()
        _state.listener = None
    thread = _state.thread
    _state.thread = None
    if thread is not None and thread is not threading.current_thread():
        thread.join(timeout=5)
    _restore_shutdown_handlers()


def close() -> None:
    """Stop the agent and remove its port file; does nothing if not running."""
    with _state.lock:
        _close_locked()


def portfile() -> str | None:
    """Return the path of the port file the running agent wrote, if any."""
    with _state.lock:
        return _state.portfile


def _serve(listener: socket.socket, stop: threading.Event) -> None:
    while not stop.is_set():
        try:
            conn, _ = listener.accept()
        except TimeoutError:
            continue
        except OSError as exc:
            if not stop.is_set():
                print(f"gops: {exc}", file=sys.stderr)
            return
        with conn:
            try:
                _serve_connection(conn)
            except Exception as exc:  # report and keep serving
                print(f"gops: {exc}", file=sys.stderr)


def _serve_connection(conn: socket.socket) -> None:
    conn.settimeout(None)
    first = conn.recv(1)
    if not first:
        raise EOFError("EOF")
    with conn.makefile("rwb") as stream:
        handle(stream, first[0])
        stream.flush()
    # Let the client read everything before the socket goes away.
    conn.shutdown(socket.SHUT_WR)
    conn.settimeout(_DRAIN_TIMEOUT)
    try:
        while conn.recv(4096):
            pass
    except OSError:
        pass


def format_bytes(val: int) -> str:
    """Render a byte count with a binary unit, as the agent reports it."""
    if val < 0:
        raise ValueError("byte count must not be negative")
    for index, unit in enumerate(UNITS):
        target = 1 << (10 * (index + 1))
        if val < target:
            break
    if index > 0:
        return f"{val / (target / 1024):.2f}{unit} ({val} bytes)"
    return f"{val} bytes"


def _write_lines(conn: BinaryIO, pairs) -> None:
    conn.write("".join(f"{key}: {value}\n" for key, value in pairs).encode())


def _stack_trace(conn: BinaryIO) -> None:
    names = {thread.ident: thread.name for thread in threading.enumerate()}
    parts = []
    for ident, frame in sys._current_frames().items():
        parts.append(f"thread {ident} [{names.get(ident, '?')}]:\n")
        parts.append("".join(traceback.format_stack(frame)))
        parts.append("\n")
    conn.write("".join(parts).encode())


def _gc(conn: BinaryIO) -> None:
    gc.collect()
    conn.write(b"ok")


def _mem_stats(conn: BinaryIO) -> None:
    memory = psutil.Process().memory_info()
    generations = gc.get_stats()
    pairs = [
        ("rss", format_bytes(memory.rss)),
        ("vms", format_bytes(memory.vms)),
        ("allocated-blocks", sys.getallocatedblocks()),
        ("gc-objects", len(gc.get_objects())),
        ("gc-count", " ".join(str(count) for count in gc.get_count())),
        ("gc-threshold", " ".join(str(limit) for limit in gc.get_threshold())),
        ("num-gc", sum(stats["collections"] for stats in generations)),
        ("gc-collected", sum(stats["collected"] for stats in generations)),
        ("gc-uncollectable", sum(stats["uncollectable"] for stats in generations)),
        ("gc-garbage", len(gc.garbage)),
    ]
    if tracemalloc.is_tracing():
        current, peak = tracemalloc.get_traced_memory()
        pairs.append(("traced-current", format_bytes(current)))
        pairs.append(("traced-peak", format_bytes(peak)))
    pairs.append(("enable-gc", "true" if gc.isenabled() else "false"))
    pairs.append(("debug-gc", gc.get_debug()))
    _write_lines(conn, pairs)


def _version(conn: BinaryIO) -> None:
    conn.write(
        f"{platform.python_implementation()} {platform.python_version()}\n".encode()
    )


def _heap_profile(conn: BinaryIO) -> None:
    if not tracemalloc.is_tracing():
        raise RuntimeError(
            "tracemalloc is not tracing; start the program with PYTHONTRACEMALLOC=1"
        )
    statistics = tracemalloc.take_snapshot().statistics("lineno")
    conn.write("".join(f"{stat}\n" for stat in statistics).encode())


def _frame_label(frame) -> str:
    code = frame.f_code
    return f"{code.co_name} ({code.co_filename}:{code.co_firstlineno})"


def _folded_stack(frame) -> str:
    labels = []
    while frame is not None:
        labels.append(_frame_label(frame))
        frame = frame.f_back
    return ";".join(reversed(labels))


def _samples(duration: float) -> Iterator[tuple[float, int, object]]:
    """Yield (elapsed, thread ident, frame) for other threads until time is up."""
    own = threading.get_ident()
    start = time.monotonic()
    while True:
        elapsed = time.monotonic() - start
        for ident, frame in sys._current_frames().items():
            if ident != own:
                yield elapsed, ident, frame
        if elapsed >= duration:
            return
        time.sleep(SAMPLE_INTERVAL)


def _cpu_profile(conn: BinaryIO) -> None:
    counts = Counter(
        _folded_stack(frame) for _, _, frame in _samples(CPU_PROFILE_SECONDS)
    )
    conn.write(
        "".join(f"{stack} {count}\n" for stack, count in counts.most_common()).encode()
    )


def _trace(conn: BinaryIO) -> None:
    names = {thread.ident: thread.name for thread in threading.enumerate()}
    for elapsed, ident, frame in _samples(TRACE_SECONDS):
        line = f"{elapsed:.6f} {names.get(ident, ident)} {_folded_stack(frame)}\n"
        conn.write(line.encode())


def _stats(conn: BinaryIO) -> None:
    _write_lines(
        conn,
        [
            ("threads", threading.active_count()),
            ("OS threads", psutil.Process().num_threads()),
            ("switch interval", sys.getswitchinterval()),
            ("num CPU", os.cpu_count()),
        ],
    )


def _binary_dump(conn: BinaryIO) -> None:
    with open(sys.executable, "rb") as binary:
        shutil.copyfileobj(binary, conn)


def _set_gc_percent(conn: BinaryIO) -> None:
    percent = read_varint(conn)
    previous = gc.get_threshold()[0] if gc.isenabled() else -1
    if percent < 0:
        gc.disable()
    else:
        _, second, third = gc.get_threshold()
        gc.set_threshold(percent, second, third)
        gc.enable()
    conn.write(
        f"New GC percent set to {percent}. Previous value was {previous}.\n".encode()
    )


_HANDLERS: dict[int, Callable[[BinaryIO], None]] = {
    Signal.STACK_TRACE: _stack_trace,
    Signal.GC: _gc,
    Signal.MEM_STATS: _mem_stats,
    Signal.VERSION: _version,
    Signal.HEAP_PROFILE: _heap_profile,
    Signal.CPU_PROFILE: _cpu_profile,
    Signal.STATS: _stats,
    Signal.BINARY_DUMP: _binary_dump,
    Signal.TRACE: _trace,
    Signal.SET_GC_PERCENT: _set_gc_percent,
}


def handle(conn: BinaryIO, msg: int) -> None:
    """Answer one request on ``conn``; unknown requests are ignored."""
    handler = _HANDLERS.get(msg)
    if handler is not None:
        handler(conn)