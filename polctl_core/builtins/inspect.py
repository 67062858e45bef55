"""Builtin inspect command."""

from __future__ import annotations

from argparse import ArgumentParser
from typing import Any

import yaml

from polctl_core.api import polctlcommand
from polctl_core.operations import inspect

from .commands import _PolctlCommand, add_source_arguments


@polctlcommand(name="inspect")
class InspectCommand(_PolctlCommand):
    """Show the metadata embedded in a policy."""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("uri", help="Policy URI: registry://, https://, file:// or a local path")
        parser.add_argument("--output", "-o", dest="output_format", choices=["text", "yaml"], default="text")
        add_source_arguments(parser)

    def execute(self, argv: Any) -> int:
        result = inspect(self.store(), self.collaborators(argv), argv.uri)
        metadata = result.metadata.to_dict() if result.metadata is not None else None
        if argv.output_format == "yaml":
            payload = {"name": result.reference.name, "digest": result.digest, "metadata": metadata}
            if result.signature_count is not None:
                payload["signatures"] = result.signature_count
            print(yaml.safe_dump(payload, sort_keys=False), end="")
            return 0

        print(f"[polctl:inspect] name={result.reference.name}")
        print(f"[polctl:inspect] digest={result.digest}")
        if result.signature_count is not None:
            print(f"[polctl:inspect] signatures={result.signature_count}")
        if metadata is None:
            print("[polctl:inspect] no embedded metadata")
            return 0
        print(f"[polctl:inspect] execution_mode={metadata['executionMode']}")
        print(f"[polctl:inspect] mutating={'yes' if metadata['mutating'] else 'no'}")
        for key, value in sorted(metadata["annotations"].items()):
            print(f"[polctl:inspect] annotation {key}={value}")
        return 0
