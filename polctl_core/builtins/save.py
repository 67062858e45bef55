"""Builtin save command."""

from __future__ import annotations

from argparse import ArgumentParser
from typing import Any

from polctl_core.api import polctlcommand
from polctl_core.operations import save

from .commands import _PolctlCommand


@polctlcommand(name="save")
class SaveCommand(_PolctlCommand):
    """Save stored policies into a tar.gz bundle."""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("policies", nargs="*", help="Policies to save (default: every stored policy)")
        parser.add_argument("--output", required=True, help="Bundle file to write")

    def execute(self, argv: Any) -> int:
        output = self._path(argv.output)
        names = save(self.store(), argv.policies, output, base_dir=self.start_dir)
        print(f"[polctl:save] saved {len(names)} policies to {output}")
        return 0
