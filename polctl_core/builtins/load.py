"""Builtin load command."""

from __future__ import annotations

from argparse import ArgumentParser
from typing import Any

from polctl_core.api import polctlcommand
from polctl_core.operations import load

from .commands import _PolctlCommand


@polctlcommand(name="load")
class LoadCommand(_PolctlCommand):
    """Load policies from a tar.gz bundle."""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("--input", required=True, help="Bundle file to read")

    def execute(self, argv: Any) -> int:
        entries = load(self.store(), self._path(argv.input))
        for entry in entries:
            print(f"[polctl:load] loaded {entry.name} digest={entry.digest}")
        print(f"[polctl:load] {len(entries)} policies loaded")
        return 0
