from __future__ import annotations

from pathlib import Path

import pytest

from polctl_core.errors import InvalidReference
from polctl_core.references import PolicyReference, PolicyScheme, anchor, resolve


@pytest.mark.parametrize(
    ("locator", "scheme", "location"),
    [
        ("registry://ghcr.io/acme/policy:v1", PolicyScheme.REGISTRY, "ghcr.io/acme/policy:v1"),
        ("https://example.com/policy.wasm", PolicyScheme.HTTPS, "example.com/policy.wasm"),
        ("file:///tmp/policy.wasm", PolicyScheme.FILE, "/tmp/policy.wasm"),
        ("policies/policy.wasm", PolicyScheme.FILE, "policies/policy.wasm"),
        ("http://example.com/policy.wasm", PolicyScheme.FILE, "http://example.com/policy.wasm"),
        ("registry://registry://nested", PolicyScheme.REGISTRY, "registry://nested"),
    ],
)
def test_resolve_strips_exactly_the_known_prefix(locator: str, scheme: PolicyScheme, location: str) -> None:
    reference = resolve(locator)
    assert reference.scheme is scheme
    assert reference.location == location


@pytest.mark.parametrize("locator", ["", "registry://", "https://", "file://"])
def test_resolve_rejects_empty_location(locator: str) -> None:
    with pytest.raises(InvalidReference):
        resolve(locator)


def test_registry_digest_is_parsed_and_location_kept() -> None:
    digest = "sha256:" + "a" * 64
    reference = resolve(f"registry://ghcr.io/acme/policy@{digest}")
    assert reference.digest == digest
    assert reference.location == f"ghcr.io/acme/policy@{digest}"
    assert reference.repository == "ghcr.io/acme/policy"


def test_reference_properties() -> None:
    reference = resolve("registry://Registry.Local:5000/team/policy:v1")
    assert reference.name == "registry://Registry.Local:5000/team/policy:v1"
    assert reference.host == "registry.local:5000"
    assert reference.oci_ref == "Registry.Local:5000/team/policy:v1"
    assert reference.repository == "Registry.Local:5000/team/policy"
    with pytest.raises(InvalidReference):
        _ = reference.url

    https = resolve("https://example.com/p.wasm")
    assert https.url == "https://example.com/p.wasm"
    assert resolve("local.wasm").host is None


def test_reference_dict_round_trip() -> None:
    reference = resolve("https://example.com/p.wasm")
    assert PolicyReference.from_dict(reference.to_dict()) == reference
    with pytest.raises(InvalidReference):
        PolicyReference.from_dict({"scheme": "ftp", "location": "x"})


def test_anchor_pins_relative_files_to_base_dir(tmp_path: Path) -> None:
    anchored = anchor(resolve("policies/../policy.wasm"), tmp_path)

    assert anchored.scheme is PolicyScheme.FILE
    assert anchored.name == f"file://{(tmp_path / 'policy.wasm').resolve()}"
    assert anchor(resolve(f"file://{tmp_path}/policy.wasm"), Path("/elsewhere")).name == anchored.name

    remote = resolve("registry://registry.local/team/policy:v1")
    assert anchor(remote, tmp_path) is remote
