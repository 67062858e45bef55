"""Argument parsing and command dispatch for polctl."""

from __future__ import annotations

import logging
from argparse import ArgumentParser
from pathlib import Path
from typing import Sequence

import polctl_core.builtins  # noqa: F401  registers builtin commands
from polctl_core import __version__
from polctl_core.api import registered_commands

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog="polctl", description="Manage WebAssembly admission policies")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    subparsers.required = True
    for name, command_cls in sorted(registered_commands().items()):
        sub = subparsers.add_parser(name, help=command_cls.help, description=command_cls.help)
        command_cls.configure(sub)
    return parser


def configure_logging(verbose: bool) -> None:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)


def main(argv: Sequence[str] | None = None, start_dir: Path | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(bool(args.verbose))
    command_cls = registered_commands()[args.command]
    return command_cls(start_dir=start_dir).run(args)
