"""Command-line entry point: list and diagnose running processes."""

from __future__ import annotations

import argparse
import re
import sys
from typing import Sequence

from .process import process_info
from .root import processes
from .shared import AgentCommand, GopsError, agent_commands, target_to_addr
from .tree import display_process_tree

_INTEGER = re.compile(r"[+-]?[0-9]+")

_EXAMPLE = """examples:
  gops <cmd> <pid|addr> ...
  gops <pid> # displays process info
  gops help  # displays this help message"""

_SHELLS = ("bash", "zsh", "fish", "powershell")


def _completion_script(shell: str, names: Sequence[str]) -> str:
    words = " ".join(names)
    if shell == "bash":
        return (
            "_gops() {\n"
            '    local cur="${COMP_WORDS[COMP_CWORD]}"\n'
            "    if [ \"$COMP_CWORD\" -eq 1 ]; then\n"
            f'        COMPREPLY=( $(compgen -W "{words}" -- "$cur") )\n'
            "    fi\n"
            "}\n"
            "complete -F _gops gops\n"
        )
    if shell == "zsh":
        return f"#compdef gops\n_arguments '1: :({words})'\n"
    if shell == "fish":
        return f"complete -c gops -f -n __fish_use_subcommand -a '{words}'\n"
    quoted = ",".join(f"'{name}'" for name in names)
    return (
        "Register-ArgumentCompleter -Native -CommandName gops -ScriptBlock {\n"
        "    param($wordToComplete)\n"
        f"    {quoted} | Where-Object {{ $_ -like \"$wordToComplete*\" }}\n"
        "}\n"
    )


def _run_agent_command(command: AgentCommand, target: str | None, params) -> None:
    if not target:
        raise GopsError("missing PID or address")
    try:
        addr = target_to_addr(target)
    except GopsError as exc:
        raise GopsError(
            f"couldn't resolve addr or pid {target} to TCPAddress: {exc}"
        ) from exc
    command.fn(addr, list(params))


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser with all sub-commands."""
    parser = argparse.ArgumentParser(
        prog="gops",
        description="gops is a tool to list and diagnose Go processes.",
        epilog=_EXAMPLE,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="<command>")

    short = "Prints information about a Go process."
    proc = sub.add_parser(
        "process",
        aliases=["pid", "proc"],
        help=short,
        description=short,
        usage="gops process <pid> [period]",
    )
    proc.add_argument("pid")
    proc.add_argument("rest", nargs="*", metavar="period")
    proc.set_defaults(handler=lambda ns: process_info([ns.pid, *ns.rest]))

    short = "Display parent-child tree for Go processes."
    tree = sub.add_parser("tree", help=short, description=short)
    tree.set_defaults(handler=lambda ns: display_process_tree())

    for command in agent_commands():
        agent = sub.add_parser(
            command.name,
            help=command.short,
            description=command.short,
            usage=f"gops {command.name} <pid|addr>",
        )
        agent.add_argument("target", nargs="?", metavar="pid|addr")
        agent.add_argument("params", nargs="*")
        agent.set_defaults(
            handler=lambda ns, command=command: _run_agent_command(
                command, ns.target, ns.params
            )
        )

    short = "Generate the autocompletion script for the specified shell."
    completion = sub.add_parser("completion", help=short, description=short)
    completion.add_argument("shell", choices=_SHELLS)

    short = "Help about any command."
    helper = sub.add_parser("help", help=short, description=short)
    helper.add_argument("topic", nargs="?")

    def show_completion(ns) -> None:
        sys.stdout.write(_completion_script(ns.shell, list(sub.choices)))

    def show_help(ns) -> None:
        if ns.topic is None:
            parser.print_help()
        elif ns.topic in sub.choices:
            sub.choices[ns.topic].print_help()
        else:
            print(f'Unknown help topic "{ns.topic}"')
            parser.print_help()

    completion.set_defaults(handler=show_completion)
    helper.set_defaults(handler=show_help)
    return parser


def _report(exc: BaseException) -> int:
    print(exc, file=sys.stderr)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line and return the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)

    # A bare PID is shorthand for `gops process <pid>`.
    if args and _INTEGER.fullmatch(args[0]):
        try:
            process_info(args)
        except (GopsError, OSError, ValueError, RuntimeError) as exc:
            return _report(exc)
        return 0

    parser = build_parser()
    try:
        namespace = parser.parse_args(args)
    except SystemExit as exc:
        code = exc.code
        return code if isinstance(code, int) else (0 if code is None else 1)

    handler = getattr(namespace, "handler", None)
    try:
        if handler is None:
            processes()
        else:
            handler(namespace)
    except (GopsError, OSError, ValueError, RuntimeError, EOFError) as exc:
        return _report(exc)
    return 0


if __name__ == "__main__":
    sys.exit(main())