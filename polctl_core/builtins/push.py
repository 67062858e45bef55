"""Builtin push command."""

from __future__ import annotations

from argparse import ArgumentParser
from typing import Any

from polctl_core.api import polctlcommand
from polctl_core.operations import push

from .commands import _PolctlCommand, add_format_argument, add_source_arguments


@polctlcommand(name="push")
class PushCommand(_PolctlCommand):
    """Push a stored or local policy to an OCI registry."""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("policy", help="Stored policy URI or path to a local Wasm file")
        parser.add_argument("uri", help="Destination, registry://<host>/<repository>:<tag>")
        parser.add_argument("--force", "-f", action="store_true", help="Push a policy without embedded metadata")
        add_source_arguments(parser)
        add_format_argument(parser)

    def execute(self, argv: Any) -> int:
        result = push(
            self.store(),
            self.collaborators(argv),
            argv.policy,
            argv.uri,
            force=bool(getattr(argv, "force", False)),
        )
        self.emit(
            argv,
            {"immutable_ref": result.immutable_ref, "digest": result.digest},
            [f"pushed {argv.policy}", f"ref={result.immutable_ref}", f"digest={result.digest}"],
        )
        return 0
