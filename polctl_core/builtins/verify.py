"""Builtin verify command."""

from __future__ import annotations

from argparse import ArgumentParser
from typing import Any

from polctl_core.api import polctlcommand
from polctl_core.operations import verify

from .commands import _PolctlCommand, add_format_argument, add_source_arguments, add_verification_arguments


@polctlcommand(name="verify")
class VerifyCommand(_PolctlCommand):
    """Verify a policy against keys, keyless identities and annotations."""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("uri", help="Policy URI: registry://, https://, file:// or a local path")
        add_source_arguments(parser)
        add_verification_arguments(parser)
        add_format_argument(parser)

    def execute(self, argv: Any) -> int:
        outcome = verify(self.collaborators(argv), argv.uri, self.verification_inputs(argv))
        self.emit(
            argv,
            {
                "digest": outcome.subject_digest,
                "satisfied": list(outcome.satisfied_groups),
                "trusted_signatures": outcome.trusted_signatures,
            },
            [f"verified {argv.uri}", f"digest={outcome.subject_digest}"]
            + [f"satisfied {item}" for item in outcome.satisfied_groups],
        )
        return 0
