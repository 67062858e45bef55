"""Builtin annotate command."""

from __future__ import annotations

from argparse import ArgumentParser
from typing import Any

from polctl_core.api import polctlcommand
from polctl_core.operations import annotate

from .commands import _PolctlCommand


@polctlcommand(name="annotate")
class AnnotateCommand(_PolctlCommand):
    """Embed policy metadata into a WebAssembly module."""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("wasm_path", help="WebAssembly module to annotate")
        parser.add_argument("--metadata-path", "-m", required=True, help="Metadata YAML file")
        parser.add_argument("--output-path", "-o", required=True, help="Annotated module to write")

    def execute(self, argv: Any) -> int:
        output = self._path(argv.output_path)
        metadata = annotate(self._path(argv.wasm_path), self._path(argv.metadata_path), output)
        print(f"[polctl:annotate] wrote {output}")
        print(f"[polctl:annotate] execution_mode={metadata.execution_mode.value}")
        return 0
