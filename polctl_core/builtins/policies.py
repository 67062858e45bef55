"""Builtin command listing stored policies."""

from __future__ import annotations

from argparse import ArgumentParser
from typing import Any

from polctl_core.api import polctlcommand
from polctl_core.operations import list_policies

from .commands import _PolctlCommand, add_format_argument


@polctlcommand(name="policies")
class PoliciesCommand(_PolctlCommand):
    """List downloaded policies."""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        add_format_argument(parser)

    def execute(self, argv: Any) -> int:
        entries = list_policies(self.store())
        lines = [
            f"{entry.name} digest={entry.digest} size={entry.size} verified={'yes' if entry.verified else 'no'}"
            + (f" pushed={entry.pushed_tag}" if entry.pushed_tag else "")
            for entry in entries
        ]
        self.emit(
            argv,
            [entry.to_record() for entry in entries],
            lines or ["no policies downloaded"],
        )
        return 0
