"""The default command: a table of the running Go processes."""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable

from .goprocess import GoProcess, find_all

_DEVEL = re.compile(r"devel\s+\+\w+")


def shorten_version(version: str) -> str:
    """Trim a development build version down to its commit hash."""
    if not version.startswith("devel"):
        return version
    match = _DEVEL.search(version)
    return match.group(0) if match else version


def pad(text: str, total: int) -> str:
    """Right-pad ``text`` with spaces to ``total`` characters."""
    return text.ljust(total)


def format_processes(processes: Iterable[GoProcess]) -> list[str]:
    """Lay out processes as aligned table rows; ``*`` marks a running agent."""
    rows = [
        replace(proc, build_version=shorten_version(proc.build_version))
        for proc in processes
    ]
    if not rows:
        return []
    pid_width = max(len(str(proc.pid)) for proc in rows)
    ppid_width = max(len(str(proc.ppid)) for proc in rows)
    name_width = max(len(proc.name) for proc in rows)
    version_width = max(len(proc.build_version) for proc in rows)
    return [
        " ".join(
            [
                pad(str(proc.pid), pid_width),
                pad(str(proc.ppid), ppid_width),
                pad(proc.name, name_width) + ("*" if proc.agent else " "),
                pad(proc.build_version, version_width),
                proc.path,
            ]
        )
        for proc in rows
    ]


def processes() -> None:
    """Print every Go process running on this host."""
    for line in format_processes(find_all()):
        print(line)