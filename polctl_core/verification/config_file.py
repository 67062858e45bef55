"""Parse a structured verification config file into a VerificationPolicy.

Schema (``apiVersion: v1``)::

    publicKeys:     # OR group; each item has exactly one of ``key`` or ``path``
      - path: cosign.pub
    keyless:        # OR group
      - fulcioCerts: [fulcio.pem]      # paths, or ``fulcioCertsData`` with PEM text
        rekorPublicKey: rekor.pub      # optional path, or ``rekorPublicKeyData``
        email: dev@example.com         # optional identity claims
        issuer: https://accounts.example.com
        githubOwner: acme
        githubRepo: policies
    annotations:    # AND: every pair must be present
      env: prod

Relative paths are resolved against the config file's directory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from polctl_core.errors import InvalidVerificationConfig, IoError

from .policy import Annotation, AnyOf, KeylessIdentity, PredicateKind, PublicKey, VerificationPolicy

SUPPORTED_API_VERSIONS = ("v1",)
_TOP_LEVEL_KEYS = {"apiVersion", "publicKeys", "keyless", "annotations"}
_KEYLESS_KEYS = {
    "fulcioCerts",
    "fulcioCertsData",
    "rekorPublicKey",
    "rekorPublicKeyData",
    "email",
    "issuer",
    "githubOwner",
    "githubRepo",
}


def load_verification_config(path: Path) -> VerificationPolicy:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise IoError(f"cannot read verification config {path}: {exc}") from exc
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidVerificationConfig(f"{path}: invalid YAML: {exc}") from exc
    return parse_verification_config(payload, base_dir=path.parent, origin=str(path))


def parse_verification_config(payload: Any, *, base_dir: Path, origin: str = "<config>") -> VerificationPolicy:
    if not isinstance(payload, dict):
        raise InvalidVerificationConfig(f"{origin}: expected a mapping at the top level")
    unknown = set(payload) - _TOP_LEVEL_KEYS
    if unknown:
        raise InvalidVerificationConfig(f"{origin}: unknown keys {sorted(unknown)}")
    api_version = str(payload.get("apiVersion") or "")
    if api_version not in SUPPORTED_API_VERSIONS:
        raise InvalidVerificationConfig(f"{origin}: unsupported apiVersion {api_version!r}")

    groups: list[AnyOf] = []
    keys = tuple(
        _public_key(item, base_dir=base_dir, where=f"{origin}: publicKeys[{index}]")
        for index, item in enumerate(_list(payload.get("publicKeys"), f"{origin}: publicKeys"))
    )
    if keys:
        groups.append(AnyOf(PredicateKind.PUBLIC_KEY, keys))

    identities = tuple(
        _keyless(item, base_dir=base_dir, where=f"{origin}: keyless[{index}]")
        for index, item in enumerate(_list(payload.get("keyless"), f"{origin}: keyless"))
    )
    if identities:
        groups.append(AnyOf(PredicateKind.KEYLESS, identities))

    annotations = payload.get("annotations") or {}
    if not isinstance(annotations, dict):
        raise InvalidVerificationConfig(f"{origin}: annotations must be a mapping")
    for key, value in annotations.items():
        if not str(key).strip() or value is None or isinstance(value, (dict, list)):
            raise InvalidVerificationConfig(f"{origin}: invalid annotation {key!r}")
        groups.append(AnyOf(PredicateKind.ANNOTATION, (Annotation(key=str(key).strip(), value=str(value)),)))

    return VerificationPolicy(all_of=tuple(groups))


def _list(value: Any, where: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidVerificationConfig(f"{where} must be a list")
    return value


def _public_key(item: Any, *, base_dir: Path, where: str) -> PublicKey:
    if not isinstance(item, dict) or set(item) - {"key", "path"}:
        raise InvalidVerificationConfig(f"{where} must be a mapping with 'key' or 'path'")
    if ("key" in item) == ("path" in item):
        raise InvalidVerificationConfig(f"{where} needs exactly one of 'key' or 'path'")
    if "key" in item:
        material = str(item["key"] or "").encode("utf-8")
        if not material.strip():
            raise InvalidVerificationConfig(f"{where}.key is empty")
        return PublicKey(key_material=material, source="inline")
    path = _resolve(item["path"], base_dir, where)
    return PublicKey(key_material=_read(path, where), source=str(path))


def _keyless(item: Any, *, base_dir: Path, where: str) -> KeylessIdentity:
    if not isinstance(item, dict):
        raise InvalidVerificationConfig(f"{where} must be a mapping")
    unknown = set(item) - _KEYLESS_KEYS
    if unknown:
        raise InvalidVerificationConfig(f"{where}: unknown keys {sorted(unknown)}")

    roots: list[bytes] = [
        _read(_resolve(raw, base_dir, where), where) for raw in _list(item.get("fulcioCerts"), f"{where}.fulcioCerts")
    ]
    inline_roots = item.get("fulcioCertsData")
    if inline_roots:
        roots.append(str(inline_roots).encode("utf-8"))
    if not roots:
        raise InvalidVerificationConfig(f"{where} needs 'fulcioCerts' or 'fulcioCertsData'")

    rekor_key: bytes | None = None
    if item.get("rekorPublicKey") and item.get("rekorPublicKeyData"):
        raise InvalidVerificationConfig(f"{where}: 'rekorPublicKey' and 'rekorPublicKeyData' are exclusive")
    if item.get("rekorPublicKey"):
        rekor_key = _read(_resolve(item["rekorPublicKey"], base_dir, where), where)
    elif item.get("rekorPublicKeyData"):
        rekor_key = str(item["rekorPublicKeyData"]).encode("utf-8")

    owner = _optional_str(item.get("githubOwner"))
    repo = _optional_str(item.get("githubRepo"))
    if repo and not owner:
        raise InvalidVerificationConfig(f"{where}: 'githubRepo' requires 'githubOwner'")
    return KeylessIdentity(
        fulcio_root=b"\n".join(root.strip() for root in roots) + b"\n",
        rekor_key=rekor_key,
        expected_email=_optional_str(item.get("email")),
        expected_oidc_issuer=_optional_str(item.get("issuer")),
        expected_github_owner=owner,
        expected_github_repo=repo,
    )


def _resolve(raw: Any, base_dir: Path, where: str) -> Path:
    text = str(raw or "").strip()
    if not text:
        raise InvalidVerificationConfig(f"{where}: empty path")
    path = Path(text).expanduser()
    return path if path.is_absolute() else base_dir / path


def _read(path: Path, where: str) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise IoError(f"{where}: cannot read {path}: {exc}") from exc


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
