"""Builtin rm command."""

from __future__ import annotations

from argparse import ArgumentParser
from typing import Any

from polctl_core.api import polctlcommand
from polctl_core.operations import remove

from .commands import _PolctlCommand


@polctlcommand(name="rm")
class RemoveCommand(_PolctlCommand):
    """Remove a policy from the store by URI or digest prefix."""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("uri", help="Policy URI or digest prefix")

    def execute(self, argv: Any) -> int:
        for entry in remove(self.store(), argv.uri, base_dir=self.start_dir):
            print(f"[polctl:rm] removed {entry.name} digest={entry.digest}")
        return 0
