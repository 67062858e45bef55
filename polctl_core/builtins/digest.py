"""Builtin digest command."""

from __future__ import annotations

from argparse import ArgumentParser
from typing import Any

from polctl_core.api import polctlcommand
from polctl_core.operations import digest

from .commands import _PolctlCommand, add_source_arguments


@polctlcommand(name="digest")
class DigestCommand(_PolctlCommand):
    """Fetch the manifest digest of a registry policy."""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("uri", help="Policy URI, registry:// only")
        add_source_arguments(parser)

    def execute(self, argv: Any) -> int:
        value = digest(self.collaborators(argv), argv.uri)
        print(f"{argv.uri}@{value}")
        return 0
