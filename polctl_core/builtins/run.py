"""Builtin run command."""

from __future__ import annotations

import json
from argparse import ArgumentParser
from typing import Any

from polctl_core.api import polctlcommand
from polctl_core.operations import run
from polctl_core.policy import ExecutionMode

from .commands import _PolctlCommand, add_source_arguments, add_verification_arguments


@polctlcommand(name="run")
class RunCommand(_PolctlCommand):
    """Evaluate a policy against an admission request."""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("uri", help="Policy URI: registry://, https://, file:// or a local path")
        parser.add_argument("--request-path", "-r", required=True, help="Admission request JSON file")
        settings = parser.add_mutually_exclusive_group()
        settings.add_argument("--settings-path", "-s", help="Policy settings file (YAML or JSON)")
        settings.add_argument("--settings-json", help="Policy settings as a JSON string")
        parser.add_argument(
            "--execution-mode",
            "-e",
            choices=[mode.value for mode in ExecutionMode],
            help="Runtime used to execute the policy",
        )
        add_source_arguments(parser)
        add_verification_arguments(parser)

    def execute(self, argv: Any) -> int:
        mode = getattr(argv, "execution_mode", None)
        result = run(
            self.store(),
            self.collaborators(argv),
            argv.uri,
            request_path=self._path(argv.request_path),
            inputs=self.verification_inputs(argv),
            settings_path=self._path(getattr(argv, "settings_path", None)),
            settings_json=getattr(argv, "settings_json", None),
            execution_mode=ExecutionMode(mode) if mode else None,
        )
        print(json.dumps(result.response, indent=2, sort_keys=True))
        return 0
