"""Builtin pull command."""

from __future__ import annotations

from argparse import ArgumentParser
from typing import Any

from polctl_core.api import polctlcommand
from polctl_core.operations import pull

from .commands import _PolctlCommand, add_format_argument, add_source_arguments, add_verification_arguments


@polctlcommand(name="pull")
class PullCommand(_PolctlCommand):
    """Pull a policy into the local store, optionally verifying it first."""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("uri", help="Policy URI: registry://, https://, file:// or a local path")
        parser.add_argument("--output-path", help="Write the policy to this file instead of the store")
        add_source_arguments(parser)
        add_verification_arguments(parser)
        add_format_argument(parser)

    def execute(self, argv: Any) -> int:
        result = pull(
            self.store(),
            self.collaborators(argv),
            argv.uri,
            self.verification_inputs(argv),
            output_path=self._path(getattr(argv, "output_path", None)),
        )
        lines = [f"pulled {result.reference.name}", f"digest={result.digest}"]
        if result.output_path is not None:
            lines.append(f"path={result.output_path}")
        elif result.entry is not None:
            lines.append(f"path={result.entry.local_path}")
        if result.verification is not None:
            lines.append("verified=yes")
        self.emit(
            argv,
            {
                "name": result.reference.name,
                "digest": result.digest,
                "path": str(result.output_path or (result.entry.local_path if result.entry else "")),
                "verified": result.verification is not None,
            },
            lines,
        )
        return 0
