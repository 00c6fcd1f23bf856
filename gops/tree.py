"""The ``tree`` command: parent-child tree of the Go processes."""

from __future__ import annotations

import sys
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from .goprocess import GoProcess, find_all

_MID = "\u251c\u2500\u2500"
_END = "\u2514\u2500\u2500"
_LINK = "\u2502   "
_BLANK = "    "


@dataclass
class Tree:
    """A printable tree node."""

    value: object = "."
    meta: object | None = None
    children: list[Tree] = field(default_factory=list)

    def add_branch(self, value) -> Tree:
        """Add and return a child node."""
        child = Tree(value)
        self.children.append(child)
        return child

    def add_meta_branch(self, meta, value) -> Tree:
        """Add and return a child node shown with a ``[meta]`` tag."""
        child = Tree(value, meta)
        self.children.append(child)
        return child

    def _label(self) -> str:
        if self.meta is not None:
            return f"[{self.meta}]  {self.value}"
        return str(self.value)

    def _render_children(self, prefix: str, lines: list[str]) -> None:
        last = len(self.children) - 1
        for index, child in enumerate(self.children):
            ended = index == last
            edge = _END if ended else _MID
            lines.append(f"{prefix}{edge} {child._label()}")
            child._render_children(prefix + (_BLANK if ended else _LINK), lines)

    def render(self) -> str:
        """Draw the tree with box-drawing edges, one node per line."""
        lines = [self._label()]
        self._render_children("", lines)
        return "\n".join(lines) + "\n"

    def __str__(self) -> str:
        return self.render()


def _attach(ppid, proc, children, seen, tree) -> None:
    if ppid in seen:
        return
    seen.add(ppid)
    if ppid != proc.ppid:
        label = f"{ppid} ({proc.name}) {{{proc.build_version}}}"
        if proc.agent:
            tree = tree.add_meta_branch("*", label)
        else:
            tree = tree.add_branch(label)
    else:
        tree = tree.add_branch(ppid)
    for child in children.get(ppid, ()):
        _attach(child.pid, child, children, seen, tree)


def build_process_tree(processes: Iterable[GoProcess]) -> Tree:
    """Arrange processes under their parents, depth first."""
    ordered = sorted(processes, key=lambda proc: proc.ppid)
    children: dict[int, list[GoProcess]] = defaultdict(list)
    for proc in ordered:
        children[proc.ppid].append(proc)
    tree = Tree("...")
    seen: set[int] = set()
    for proc in ordered:
        _attach(proc.ppid, proc, children, seen, tree)
    return tree


def display_process_tree() -> str:
    """Find every Go process on this host, print their tree and return it."""
    processes = find_all() or []
    tree = build_process_tree(processes)
    text = tree.render()
    sys.stdout.write(text + "\n")
    sys.stdout.flush()
    return text