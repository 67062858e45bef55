from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from polctl_core.errors import EvaluationError, InvalidPolicyModule
from polctl_core.policy import (
    METADATA_SECTION,
    CommandPolicyEvaluator,
    ExecutionMode,
    PolicyMetadata,
    annotate,
    load_metadata_file,
    read_metadata,
)
from polctl_core.policy.wasm import encode_uleb128, iter_sections, read_uleb128

METADATA_YAML = """\
protocolVersion: v1
rules:
  - apiGroups: [""]
    apiVersions: ["v1"]
    resources: ["pods"]
    operations: ["CREATE"]
mutating: false
executionMode: kubewarden
annotations:
  io.kubewarden.policy.title: pod-privileged
  env: prod
"""


def test_uleb128_round_values() -> None:
    assert encode_uleb128(0) == b"\x00"
    assert encode_uleb128(300) == b"\xac\x02"
    assert read_uleb128(b"\xac\x02", 0) == (300, 2)
    with pytest.raises(InvalidPolicyModule):
        read_uleb128(b"\x80", 0)


def test_annotate_embeds_and_replaces_metadata(tmp_path: Path, wasm_module: bytes) -> None:
    metadata = load_metadata_file(_write(tmp_path / "metadata.yml", METADATA_YAML))
    assert metadata.title == "pod-privileged"
    assert read_metadata(wasm_module) is None

    annotated = annotate(wasm_module, metadata)
    assert read_metadata(annotated) == metadata
    assert annotated.startswith(wasm_module)

    changed = PolicyMetadata(protocol_version="v1", annotations={"env": "dev"})
    twice = annotate(annotated, changed)
    names = [section.name for section in iter_sections(twice) if section.name]
    assert names == [METADATA_SECTION]
    assert read_metadata(twice).annotations == {"env": "dev"}


def test_non_wasm_content_is_rejected() -> None:
    with pytest.raises(InvalidPolicyModule):
        read_metadata(b"not wasm at all")


def test_truncated_section_is_rejected(wasm_module: bytes) -> None:
    with pytest.raises(InvalidPolicyModule):
        read_metadata(wasm_module + b"\x00\x10abc")


@pytest.mark.parametrize(
    "payload",
    [
        {"rules": []},
        {"protocolVersion": "v2"},
        {"protocolVersion": "v1", "executionMode": "wasi-preview"},
        {"protocolVersion": "v1", "mutating": "yes"},
        {"protocolVersion": "v1", "rules": "pods"},
    ],
)
def test_invalid_metadata(payload: dict) -> None:
    with pytest.raises(InvalidPolicyModule):
        PolicyMetadata.from_dict(payload)


def test_opa_policies_do_not_need_protocol_version() -> None:
    metadata = PolicyMetadata.from_dict({"executionMode": "opa"})
    assert metadata.execution_mode is ExecutionMode.OPA
    assert "protocolVersion" not in metadata.to_dict()


def test_command_evaluator_sends_envelope(monkeypatch: pytest.MonkeyPatch, wasm_module: bytes) -> None:
    captured: dict[str, object] = {}

    def _fake_run(command, **kwargs):
        captured["command"] = command
        envelope = json.loads(kwargs["input"])
        captured["envelope"] = envelope
        captured["module"] = Path(envelope["module_path"]).read_bytes()
        return subprocess.CompletedProcess(command, 0, stdout=json.dumps({"allowed": True}), stderr="")

    monkeypatch.setattr(subprocess, "run", _fake_run)
    evaluator = CommandPolicyEvaluator("policy-runner --json")

    response = evaluator.evaluate(wasm_module, {"uid": "1"}, {"limit": 2}, ExecutionMode.GATEKEEPER)

    assert response == {"allowed": True}
    assert captured["command"] == ["policy-runner", "--json"]
    assert captured["module"] == wasm_module
    envelope = captured["envelope"]
    assert envelope["execution_mode"] == "gatekeeper"
    assert envelope["request"] == {"uid": "1"}
    assert envelope["settings"] == {"limit": 2}


@pytest.mark.parametrize(
    ("returncode", "stdout"),
    [(1, ""), (0, "not json"), (0, "[1, 2]")],
)
def test_command_evaluator_failures(
    monkeypatch: pytest.MonkeyPatch, wasm_module: bytes, returncode: int, stdout: str
) -> None:
    def _fake_run(command, **kwargs):
        del kwargs
        return subprocess.CompletedProcess(command, returncode, stdout=stdout, stderr="boom")

    monkeypatch.setattr(subprocess, "run", _fake_run)
    with pytest.raises(EvaluationError):
        CommandPolicyEvaluator(["runner"]).evaluate(wasm_module, {}, {}, ExecutionMode.KUBEWARDEN)


def test_unconfigured_evaluator(wasm_module: bytes) -> None:
    with pytest.raises(EvaluationError, match="no policy evaluator configured"):
        CommandPolicyEvaluator(None).evaluate(wasm_module, {}, {}, ExecutionMode.KUBEWARDEN)


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path
