"""The ``process`` command: details about one process."""

from __future__ import annotations

import math
import re
import time
from contextlib import suppress
from fractions import Fraction
from typing import Sequence

import psutil

_SECOND = 10**9
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR
_MAX_DURATION = (1 << 63) - 1

_UNITS = {
    "ns": 1,
    "us": 1000,
    "\u00b5s": 1000,
    "\u03bcs": 1000,
    "ms": 10**6,
    "s": _SECOND,
    "m": _MINUTE,
    "h": _HOUR,
}
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?(ns|us|\u00b5s|\u03bcs|ms|s|m|h)")

_ERRORS = (psutil.Error, OSError)


def _parse_duration_ns(text: str) -> int:
    invalid = ValueError(f'time: invalid duration "{text}"')
    rest = text
    negative = False
    if rest and rest[0] in "+-":
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return 0
    if not rest:
        raise invalid
    total = Fraction(0)
    position = 0
    while position < len(rest):
        match = _COMPONENT.match(rest, position)
        if match is None:
            raise invalid
        whole, fraction, unit = match.groups()
        if not whole and not fraction:
            raise invalid
        amount = Fraction(int(whole or "0"))
        if fraction:
            amount += Fraction(int(fraction), 10 ** len(fraction))
        total += amount * _UNITS[unit]
        position = match.end()
    nanoseconds = int(total)
    if nanoseconds > _MAX_DURATION:
        raise invalid
    return -nanoseconds if negative else nanoseconds


def parse_period(text: str) -> float:
    """Parse a sampling period such as ``"5s"``, ``"1m30s"`` or ``"10"`` into seconds."""
    try:
        return _parse_duration_ns(text) / _SECOND
    except ValueError:
        try:
            return float(int(text))
        except ValueError as exc:
            raise ValueError(f"error parsing the second argument: {exc}") from None


def _format_fraction(value: int, precision: int) -> str:
    whole, part = divmod(value, 10**precision)
    digits = f"{part:0{precision}d}".rstrip("0")
    return f"{whole}.{digits}" if digits else str(whole)


def _format_duration(nanoseconds: int) -> str:
    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    value = abs(nanoseconds)
    if value < _SECOND:
        if value < 1000:
            return f"{sign}{value}ns"
        if value < 10**6:
            return f"{sign}{_format_fraction(value, 3)}\u00b5s"
        return f"{sign}{_format_fraction(value, 6)}ms"
    hours, rest = divmod(value, _HOUR)
    minutes, rest = divmod(rest, _MINUTE)
    text = f"{_format_fraction(rest, 9)}s"
    if value >= _MINUTE:
        text = f"{minutes}m{text}"
    if value >= _HOUR:
        text = f"{hours}h{text}"
    return sign + text


def process_info(args: Sequence[str]) -> None:
    """Print information about the process given as ``<pid> [period]``."""
    try:
        pid = int(args[0])
    except (ValueError, IndexError) as exc:
        raise ValueError(f"error parsing the first argument: {exc}") from None
    period = parse_period(args[1]) if len(args) >= 2 else 0.0
    _print_process_info(pid, period)


def _cpu_total(times) -> float:
    return times.user + times.system + getattr(times, "iowait", 0.0)


def _lifetime_cpu_percent(proc) -> float:
    busy = _cpu_total(proc.cpu_times())
    alive = time.time() - proc.create_time()
    if alive <= 0:
        return 0.0
    return 100 * busy / alive


def _endpoint(address) -> tuple[str, int]:
    if not address:
        return "", 0
    return address.ip, address.port


def _connections(proc):
    lister = getattr(proc, "net_connections", None) or proc.connections
    return lister()


def _print_process_info(pid: int, period: float) -> None:
    period_ns = round(period * _SECOND)
    if period_ns < 0:
        raise ValueError(
            "Cannot determine CPU usage for negative duration "
            f"{_format_duration(period_ns)}"
        )
    try:
        proc = psutil.Process(pid)
    except psutil.Error as exc:
        raise RuntimeError(f"Cannot read process info: {exc}") from exc

    with suppress(*_ERRORS):
        parent = proc.parent()
        if parent is not None:
            print(f"parent PID:\t{parent.pid}")
    with suppress(*_ERRORS):
        print(f"threads:\t{proc.num_threads()}")
    with suppress(*_ERRORS):
        print(f"memory usage:\t{proc.memory_percent():.3f}%")
    with suppress(*_ERRORS):
        print(f"cpu usage:\t{_lifetime_cpu_percent(proc):.3f}%")
    if period_ns > 0:
        with suppress(*_ERRORS):
            usage = cpu_percent_within_time(proc, period)
            print(f"cpu usage ({_format_duration(period_ns)}):\t{usage:.3f}%")
    with suppress(*_ERRORS):
        print(f"username:\t{proc.username()}")
    with suppress(*_ERRORS):
        print(f"cmd+args:\t{' '.join(proc.cmdline())}")
    with suppress(*_ERRORS):
        print(f"elapsed time:\t{elapsed_time(proc)}")
    with suppress(*_ERRORS):
        for conn in _connections(proc):
            local_ip, local_port = _endpoint(conn.laddr)
            remote_ip, remote_port = _endpoint(conn.raddr)
            print(
                f"local/remote:\t{local_ip}:{local_port} <-> "
                f"{remote_ip}:{remote_port} ({conn.status})"
            )


def cpu_percent_within_time(proc, period: float) -> float:
    """Percentage of one CPU the process uses over the next ``period`` seconds."""
    if period <= 0:
        raise ValueError("period must be positive")
    before = _cpu_total(proc.cpu_times())
    time.sleep(period)
    after = _cpu_total(proc.cpu_times())
    return 100 * (after - before) / period


def elapsed_time(proc) -> str:
    """How long the process has been running, formatted like ps's etime."""
    created = int(proc.create_time())
    return fmt_etime_duration(time.time() - created)


def _trunc_div(a: int, b: int) -> int:
    quotient = abs(a) // b
    return -quotient if a < 0 else quotient


def _trunc_mod(a: int, b: int) -> int:
    remainder = abs(a) % b
    return -remainder if a < 0 else remainder


def fmt_etime_duration(seconds: float) -> str:
    """Format a duration in seconds as ``[[DD-]hh:]mm:ss``."""
    duration = round(seconds * _SECOND)
    days = _trunc_div(duration, _DAY)
    hours = _trunc_mod(duration, _DAY)
    minutes = _trunc_mod(hours, _HOUR)
    secs = math.fmod(minutes / _SECOND, 60)
    parts = []
    if days > 0:
        parts.append(f"{days:02d}-")
    if days > 0 or _trunc_div(hours, _HOUR) > 0:
        parts.append(f"{_trunc_div(hours, _HOUR):02d}:")
    parts.append(f"{_trunc_div(minutes, _MINUTE):02d}:")
    parts.append(f"{secs:02.0f}")
    return "".join(parts)