"""Policy evaluation through an external runtime command."""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

from polctl_core.errors import EvaluationError

from .metadata import ExecutionMode

logger = logging.getLogger(__name__)


class PolicyEvaluator(Protocol):
    def evaluate(
        self,
        module: bytes,
        request: Mapping[str, Any],
        settings: Mapping[str, Any],
        mode: ExecutionMode,
    ) -> dict[str, Any]: ...


class CommandPolicyEvaluator:
    """Run a configured command that evaluates a Wasm policy.

    The command receives a JSON envelope on stdin::

        {"module_path": "...", "execution_mode": "kubewarden",
         "request": {...}, "settings": {...}}

    and must print the admission response as a JSON object on stdout.
    """

    def __init__(self, command: Sequence[str] | str | None, *, timeout_seconds: float = 60.0) -> None:
        if isinstance(command, str):
            command = shlex.split(command)
        self.command = list(command or [])
        self.timeout_seconds = timeout_seconds

    def evaluate(
        self,
        module: bytes,
        request: Mapping[str, Any],
        settings: Mapping[str, Any],
        mode: ExecutionMode,
    ) -> dict[str, Any]:
        if not self.command:
            raise EvaluationError("no policy evaluator configured; set [evaluator] command in config.toml")
        with tempfile.TemporaryDirectory(prefix="polctl-eval-") as tmp:
            module_path = Path(tmp) / "policy.wasm"
            module_path.write_bytes(module)
            envelope = {
                "module_path": str(module_path),
                "execution_mode": mode.value,
                "request": dict(request),
                "settings": dict(settings),
            }
            logger.debug("evaluator command=%s mode=%s", " ".join(self.command), mode.value)
            try:
                result = subprocess.run(
                    self.command,
                    input=json.dumps(envelope),
                    check=False,
                    capture_output=True,
                    text=True,
                    timeout=max(float(self.timeout_seconds), 1.0),
                )
            except FileNotFoundError as exc:
                raise EvaluationError(f"evaluator command not found: {self.command[0]}") from exc
            except subprocess.TimeoutExpired as exc:
                raise EvaluationError(f"evaluator timed out after {self.timeout_seconds:.1f}s") from exc
        if result.returncode != 0:
            detail = (result.stderr or "").strip()
            raise EvaluationError(f"evaluator failed (exit={result.returncode}) {detail}".rstrip())
        try:
            response = json.loads(result.stdout or "")
        except json.JSONDecodeError as exc:
            raise EvaluationError("evaluator did not return a JSON response") from exc
        if not isinstance(response, dict):
            raise EvaluationError("evaluator response must be a JSON object")
        return response
