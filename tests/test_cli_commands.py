from __future__ import annotations

import importlib
import json
import subprocess
from pathlib import Path

import pytest

import polctl_core.builtins.commands as commands_mod
from polctl_cli import __main__ as cli_entry
from polctl_cli.main import main as cli_main
from polctl_core.oci.types import OciFetchResult, OciPushResult
from polctl_core.store import LocalStore

MANIFEST_DIGEST = "sha256:" + "d" * 64
PUSHED_DIGEST = "sha256:" + "e" * 64
REGISTRY_URI = "registry://registry.local/team/policy:v1"

METADATA_YAML = """\
protocolVersion: v1
executionMode: opa
annotations:
  io.kubewarden.policy.title: demo
  env: prod
"""


@pytest.fixture
def home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    root = tmp_path / "home"
    monkeypatch.setenv("POLCTL_HOME", str(root))
    return root


@pytest.fixture
def fake_registry(monkeypatch: pytest.MonkeyPatch, wasm_module: bytes):
    state: dict[str, object] = {"signatures": [], "pushed": []}

    class _FakeOciClient:
        def __init__(self, config):
            state["config"] = config

        def fetch(self, ref):
            return OciFetchResult(ref=ref, digest=MANIFEST_DIGEST, content=wasm_module)

        def resolve(self, ref):
            del ref
            return MANIFEST_DIGEST

        def fetch_signatures(self, ref, digest):
            del ref
            assert digest == MANIFEST_DIGEST
            return list(state["signatures"])

        def push_policy(self, ref, content, annotations):
            state["pushed"].append({"ref": ref, "content": content, "annotations": dict(annotations)})
            return OciPushResult(ref=ref, digest=PUSHED_DIGEST)

    monkeypatch.setattr(commands_mod, "OciClient", _FakeOciClient)
    return state


def _store(home: Path) -> LocalStore:
    return LocalStore(home / "store")


def _file_name(path: Path) -> str:
    return f"file://{path.resolve()}"


def _annotated_policy(tmp_path: Path, wasm_module: bytes) -> Path:
    (tmp_path / "raw.wasm").write_bytes(wasm_module)
    (tmp_path / "metadata.yml").write_text(METADATA_YAML, encoding="utf-8")
    code = cli_main(
        ["annotate", "raw.wasm", "--metadata-path", "metadata.yml", "--output-path", "annotated.wasm"],
        start_dir=tmp_path,
    )
    assert code == 0
    return tmp_path / "annotated.wasm"


def test_console_module_entrypoint_delegates_to_cli_main(monkeypatch: pytest.MonkeyPatch) -> None:
    main_module = importlib.import_module("polctl_cli.main")
    monkeypatch.setattr(main_module, "main", lambda: 7)

    assert cli_entry.run() == 7
    assert cli_entry.main() == 7


def test_pull_list_and_remove_local_policy(
    home: Path, tmp_path: Path, wasm_module: bytes, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "policy.wasm").write_bytes(wasm_module)

    assert cli_main(["pull", "policy.wasm"], start_dir=tmp_path) == 0
    assert f"[polctl:pull] pulled {_file_name(tmp_path / 'policy.wasm')}" in capsys.readouterr().out

    assert cli_main(["policies", "--format", "json"], start_dir=tmp_path) == 0
    (record,) = json.loads(capsys.readouterr().out)
    assert record["name"] == _file_name(tmp_path / "policy.wasm")
    assert record["verified"] is False

    prefix = record["digest"].split(":", 1)[1][:12]
    assert cli_main(["rm", prefix], start_dir=tmp_path) == 0
    assert f"[polctl:rm] removed {_file_name(tmp_path / 'policy.wasm')}" in capsys.readouterr().out
    assert _store(home).list() == []

    assert cli_main(["policies"], start_dir=tmp_path) == 0
    assert "[polctl:policies] no policies downloaded" in capsys.readouterr().out


def test_pull_registry_policy_with_key_verification(
    home: Path, tmp_path: Path, fake_registry, make_keypair, sign_layer, capsys: pytest.CaptureFixture[str]
) -> None:
    first, second = make_keypair(), make_keypair()
    first.write_public(tmp_path / "first.pub")
    second.write_public(tmp_path / "second.pub")
    fake_registry["signatures"] = [sign_layer(second, MANIFEST_DIGEST, {"env": "prod"})]

    code = cli_main(
        [
            "pull",
            REGISTRY_URI,
            "--verification-key",
            "first.pub",
            "--verification-key",
            "second.pub",
            "--verification-annotation",
            "env=prod",
        ],
        start_dir=tmp_path,
    )

    assert code == 0
    assert "[polctl:pull] verified=yes" in capsys.readouterr().out
    entry = _store(home).get(REGISTRY_URI)
    assert entry is not None
    assert entry.verified is True


def test_verify_failure_is_reported_without_touching_store(
    home: Path, tmp_path: Path, fake_registry, make_keypair, sign_layer, capsys: pytest.CaptureFixture[str]
) -> None:
    trusted = make_keypair()
    trusted.write_public(tmp_path / "trusted.pub")
    fake_registry["signatures"] = [sign_layer(make_keypair(), MANIFEST_DIGEST)]

    code = cli_main(["verify", REGISTRY_URI, "--verification-key", "trusted.pub"], start_dir=tmp_path)

    assert code == 1
    assert "[polctl:verify] failed: verification failed" in capsys.readouterr().out
    assert _store(home).list() == []


def test_verify_requires_constraints(home: Path, tmp_path: Path, fake_registry, capsys) -> None:
    assert cli_main(["verify", REGISTRY_URI], start_dir=tmp_path) == 1
    assert "no verification constraints" in capsys.readouterr().out


def test_verify_rejects_config_and_flags_together(home: Path, tmp_path: Path, fake_registry, capsys) -> None:
    (tmp_path / "verification.yml").write_text("apiVersion: v1\nannotations: {env: prod}\n", encoding="utf-8")
    code = cli_main(
        [
            "verify",
            REGISTRY_URI,
            "--verification-config-path",
            "verification.yml",
            "--verification-annotation",
            "env=prod",
        ],
        start_dir=tmp_path,
    )
    assert code == 1
    assert "[polctl:verify] failed:" in capsys.readouterr().out


def test_push_requires_metadata_unless_forced(
    home: Path, tmp_path: Path, wasm_module: bytes, fake_registry, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "plain.wasm").write_bytes(wasm_module)

    assert cli_main(["push", "plain.wasm", REGISTRY_URI], start_dir=tmp_path) == 1
    assert "[polctl:push] failed:" in capsys.readouterr().out
    assert fake_registry["pushed"] == []

    assert cli_main(["push", "plain.wasm", REGISTRY_URI, "--force"], start_dir=tmp_path) == 0
    assert fake_registry["pushed"][0]["annotations"] == {}


def test_push_reads_current_file_over_stale_stored_copy(
    home: Path, tmp_path: Path, wasm_module: bytes, fake_registry, capsys: pytest.CaptureFixture[str]
) -> None:
    _annotated_policy(tmp_path, wasm_module)
    assert cli_main(["pull", "annotated.wasm"], start_dir=tmp_path) == 0
    stored_digest = _store(home).get(_file_name(tmp_path / "annotated.wasm")).digest

    (tmp_path / "metadata.yml").write_text(METADATA_YAML.replace("env: prod", "env: staging"), encoding="utf-8")
    code = cli_main(
        ["annotate", "raw.wasm", "--metadata-path", "metadata.yml", "--output-path", "annotated.wasm"],
        start_dir=tmp_path,
    )
    assert code == 0
    capsys.readouterr()

    assert cli_main(["push", "annotated.wasm", REGISTRY_URI], start_dir=tmp_path) == 0

    (pushed,) = fake_registry["pushed"]
    assert pushed["content"] == (tmp_path / "annotated.wasm").read_bytes()
    assert pushed["annotations"]["env"] == "staging"
    entry = _store(home).get(_file_name(tmp_path / "annotated.wasm"))
    assert entry.digest == stored_digest
    assert entry.pushed_tag is None


def test_same_relative_path_in_two_directories_keeps_two_entries(
    home: Path, tmp_path: Path, wasm_module: bytes, capsys: pytest.CaptureFixture[str]
) -> None:
    first, second = tmp_path / "a", tmp_path / "b"
    first.mkdir()
    second.mkdir()
    (first / "policy.wasm").write_bytes(wasm_module)
    (second / "policy.wasm").write_bytes(wasm_module + b"\x00\x01\x00")

    assert cli_main(["pull", "policy.wasm"], start_dir=first) == 0
    assert cli_main(["pull", "policy.wasm"], start_dir=second) == 0
    names = sorted(entry.name for entry in _store(home).list())
    assert names == [_file_name(first / "policy.wasm"), _file_name(second / "policy.wasm")]

    assert cli_main(["rm", "policy.wasm"], start_dir=first) == 0
    assert [entry.name for entry in _store(home).list()] == [_file_name(second / "policy.wasm")]


def test_push_stored_annotated_policy_records_tag(
    home: Path, tmp_path: Path, wasm_module: bytes, fake_registry, capsys: pytest.CaptureFixture[str]
) -> None:
    _annotated_policy(tmp_path, wasm_module)
    assert cli_main(["pull", "annotated.wasm"], start_dir=tmp_path) == 0
    capsys.readouterr()

    code = cli_main(["push", "annotated.wasm", REGISTRY_URI, "-o", "json"], start_dir=tmp_path)

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["immutable_ref"] == f"registry://registry.local/team/policy@{PUSHED_DIGEST}"
    (pushed,) = fake_registry["pushed"]
    assert pushed["ref"] == "registry.local/team/policy:v1"
    assert pushed["annotations"] == {"io.kubewarden.policy.title": "demo", "env": "prod"}
    assert _store(home).get(_file_name(tmp_path / "annotated.wasm")).pushed_tag == "registry.local/team/policy:v1"


def test_save_and_load_between_homes(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, wasm_module: bytes, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "a.wasm").write_bytes(wasm_module)
    (tmp_path / "b.wasm").write_bytes(wasm_module + b"\x00\x01\x00")
    monkeypatch.setenv("POLCTL_HOME", str(tmp_path / "home-a"))
    assert cli_main(["pull", "a.wasm"], start_dir=tmp_path) == 0
    assert cli_main(["pull", "b.wasm"], start_dir=tmp_path) == 0
    assert cli_main(["save", "a.wasm", "file://b.wasm", "--output", "bundle.tar.gz"], start_dir=tmp_path) == 0
    assert "[polctl:save] saved 2 policies" in capsys.readouterr().out

    monkeypatch.setenv("POLCTL_HOME", str(tmp_path / "home-b"))
    assert cli_main(["load", "--input", "bundle.tar.gz"], start_dir=tmp_path) == 0
    assert "[polctl:load] 2 policies loaded" in capsys.readouterr().out

    source = {entry.name: entry.digest for entry in LocalStore(tmp_path / "home-a" / "store").list()}
    target = {entry.name: entry.digest for entry in LocalStore(tmp_path / "home-b" / "store").list()}
    assert target == source


def test_save_unknown_policy_fails(home: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_main(["save", "missing.wasm", "--output", "bundle.tar.gz"], start_dir=tmp_path) == 1
    assert "[polctl:save] failed: unknown policies: missing.wasm" in capsys.readouterr().out
    assert not (tmp_path / "bundle.tar.gz").exists()


def test_run_uses_embedded_execution_mode(
    monkeypatch: pytest.MonkeyPatch,
    home: Path,
    tmp_path: Path,
    wasm_module: bytes,
    capsys: pytest.CaptureFixture[str],
) -> None:
    _annotated_policy(tmp_path, wasm_module)
    capsys.readouterr()
    (home / "config").mkdir(parents=True)
    (home / "config" / "config.toml").write_text('[evaluator]\ncommand = "runner --json"\n', encoding="utf-8")
    (tmp_path / "request.json").write_text(
        json.dumps({"kind": "AdmissionReview", "request": {"uid": "abc"}}),
        encoding="utf-8",
    )
    captured: dict[str, object] = {}

    def _fake_run(command, **kwargs):
        captured["command"] = command
        captured["envelope"] = json.loads(kwargs["input"])
        return subprocess.CompletedProcess(command, 0, stdout='{"allowed": true, "uid": "abc"}', stderr="")

    monkeypatch.setattr(subprocess, "run", _fake_run)
    code = cli_main(
        ["run", "annotated.wasm", "--request-path", "request.json", "--settings-json", '{"limit": 1}'],
        start_dir=tmp_path,
    )

    assert code == 0
    assert json.loads(capsys.readouterr().out) == {"allowed": True, "uid": "abc"}
    assert captured["command"] == ["runner", "--json"]
    envelope = captured["envelope"]
    assert envelope["execution_mode"] == "opa"
    assert envelope["request"] == {"uid": "abc"}
    assert envelope["settings"] == {"limit": 1}
    assert _store(home).list() == []


def test_run_without_evaluator_fails(home: Path, tmp_path: Path, wasm_module: bytes, capsys) -> None:
    (tmp_path / "policy.wasm").write_bytes(wasm_module)
    (tmp_path / "request.json").write_text("{}", encoding="utf-8")

    code = cli_main(
        ["run", "policy.wasm", "--request-path", "request.json", "--execution-mode", "kubewarden"],
        start_dir=tmp_path,
    )

    assert code == 1
    assert "[polctl:run] failed: no policy evaluator configured" in capsys.readouterr().out


def test_digest_and_inspect(
    home: Path, tmp_path: Path, wasm_module: bytes, fake_registry, capsys: pytest.CaptureFixture[str]
) -> None:
    assert cli_main(["digest", REGISTRY_URI], start_dir=tmp_path) == 0
    assert capsys.readouterr().out.strip() == f"{REGISTRY_URI}@{MANIFEST_DIGEST}"

    assert cli_main(["digest", "local.wasm"], start_dir=tmp_path) == 1
    assert "[polctl:digest] failed:" in capsys.readouterr().out

    _annotated_policy(tmp_path, wasm_module)
    capsys.readouterr()
    assert cli_main(["inspect", "annotated.wasm"], start_dir=tmp_path) == 0
    out = capsys.readouterr().out
    assert "[polctl:inspect] execution_mode=opa" in out
    assert "[polctl:inspect] annotation env=prod" in out

    assert cli_main(["inspect", REGISTRY_URI, "-o", "yaml"], start_dir=tmp_path) == 0
    out = capsys.readouterr().out
    assert f"digest: {MANIFEST_DIGEST}" in out
    assert "signatures: 0" in out
    assert "metadata: null" in out


def test_command_base_requires_execute() -> None:
    with pytest.raises(TypeError):
        commands_mod._PolctlCommand()
