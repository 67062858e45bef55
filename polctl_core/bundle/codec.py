"""Portable tar.gz bundles of stored policies."""

from __future__ import annotations

import io
import json
import logging
import tarfile
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Iterable

from polctl_core.errors import CorruptBundle, CorruptEntry, InvalidReference, UnknownPolicyName
from polctl_core.references import PolicyReference
from polctl_core.store import LocalStore, StoreEntry, StoreItem, digest_hex, sha256_digest

logger = logging.getLogger(__name__)

BUNDLE_MANIFEST_NAME = "bundle.json"
BUNDLE_POLICY_DIR = "policies"
BUNDLE_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class BundleEntry:
    name: str
    digest: str
    relative_path: str
    source_reference: PolicyReference
    verified: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "digest": self.digest,
            "path": self.relative_path,
            "source_reference": self.source_reference.to_dict(),
            "verified": self.verified,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "BundleEntry":
        if not isinstance(payload, dict):
            raise CorruptBundle(f"invalid bundle entry: {payload!r}")
        name = str(payload.get("name") or "")
        digest = str(payload.get("digest") or "")
        path = str(payload.get("path") or "")
        if not name or not path:
            raise CorruptBundle(f"bundle entry is missing name or path: {payload!r}")
        try:
            digest_hex(digest)
        except ValueError as exc:
            raise CorruptBundle(f"bundle entry '{name}' has an invalid digest") from exc
        try:
            reference = PolicyReference.from_dict(payload.get("source_reference") or {})
        except InvalidReference as exc:
            raise CorruptBundle(f"bundle entry '{name}' has an invalid source reference") from exc
        return cls(
            name=name,
            digest=digest,
            relative_path=path,
            source_reference=reference,
            verified=bool(payload.get("verified", False)),
        )


@dataclass(frozen=True)
class BundleManifest:
    entries: tuple[BundleEntry, ...]

    def to_bytes(self) -> bytes:
        payload = {
            "schema_version": BUNDLE_SCHEMA_VERSION,
            "policies": [entry.to_dict() for entry in self.entries],
        }
        return json.dumps(payload, indent=2).encode("utf-8")

    @classmethod
    def parse(cls, raw: bytes) -> "BundleManifest":
        try:
            payload = json.loads(raw)
        except (UnicodeDecodeError, ValueError) as exc:
            raise CorruptBundle(f"{BUNDLE_MANIFEST_NAME} is not valid JSON") from exc
        if not isinstance(payload, dict) or payload.get("schema_version") != BUNDLE_SCHEMA_VERSION:
            raise CorruptBundle(f"unsupported {BUNDLE_MANIFEST_NAME} format")
        policies = payload.get("policies")
        if not isinstance(policies, list):
            raise CorruptBundle(f"{BUNDLE_MANIFEST_NAME} has no policy list")
        entries = tuple(BundleEntry.from_dict(item) for item in policies)
        names = [entry.name for entry in entries]
        if len(set(names)) != len(names):
            raise CorruptBundle(f"{BUNDLE_MANIFEST_NAME} lists a policy name twice")
        return cls(entries=entries)


def export_bundle(store: LocalStore, names: Iterable[str] = ()) -> bytes:
    """Archive the named store entries, or every entry when ``names`` is empty."""
    requested = list(dict.fromkeys(names))
    if requested:
        found = {name: store.get(name) for name in requested}
        missing = [name for name, entry in found.items() if entry is None]
        if missing:
            raise UnknownPolicyName(missing)
        selected: list[StoreEntry] = [found[name] for name in requested]
    else:
        selected = store.list()

    entries: list[BundleEntry] = []
    blobs: dict[str, bytes] = {}
    for entry in selected:
        relative_path = f"{BUNDLE_POLICY_DIR}/{digest_hex(entry.digest)}.wasm"
        if relative_path not in blobs:
            content = store.read(entry)
            actual = sha256_digest(content)
            if actual != entry.digest:
                raise CorruptEntry(entry.name, entry.digest, actual)
            blobs[relative_path] = content
        entries.append(
            BundleEntry(
                name=entry.name,
                digest=entry.digest,
                relative_path=relative_path,
                source_reference=entry.source_reference,
                verified=entry.verified,
            )
        )

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tf:
        _add_member(tf, BUNDLE_MANIFEST_NAME, BundleManifest(entries=tuple(entries)).to_bytes())
        for relative_path, content in blobs.items():
            _add_member(tf, relative_path, content)
    logger.debug("exported %d policies (%d blobs)", len(entries), len(blobs))
    return buffer.getvalue()


def import_bundle(store: LocalStore, data: bytes) -> list[StoreEntry]:
    """Validate every bundled policy, then store them all in one commit."""
    items = _validated_items(data)
    return store.put_many(items)


def _validated_items(data: bytes) -> list[StoreItem]:
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tf:
            members: dict[str, tarfile.TarInfo] = {}
            for member in tf.getmembers():
                _check_member(member)
                members[member.name] = member
            manifest = BundleManifest.parse(_read_member(tf, members, BUNDLE_MANIFEST_NAME))
            items: list[StoreItem] = []
            for entry in manifest.entries:
                content = _read_member(tf, members, entry.relative_path)
                actual = sha256_digest(content)
                if actual != entry.digest:
                    raise CorruptBundle(
                        f"policy '{entry.name}' hashes to {actual}, bundle records {entry.digest}"
                    )
                items.append(StoreItem(entry.name, content, entry.source_reference, entry.verified))
    except (tarfile.TarError, OSError, EOFError) as exc:
        raise CorruptBundle(f"unreadable bundle archive: {exc}") from exc
    return items


def _check_member(member: tarfile.TarInfo) -> None:
    path = PurePosixPath(member.name)
    if path.is_absolute() or ".." in path.parts:
        raise CorruptBundle(f"unsafe bundle member path: {member.name}")
    if not (member.isfile() or member.isdir()):
        raise CorruptBundle(f"unsupported bundle member type: {member.name}")


def _read_member(tf: tarfile.TarFile, members: dict[str, tarfile.TarInfo], name: str) -> bytes:
    member = members.get(name)
    if member is None or not member.isfile():
        raise CorruptBundle(f"bundle is missing {name}")
    handle = tf.extractfile(member)
    if handle is None:
        raise CorruptBundle(f"bundle member {name} is unreadable")
    with handle:
        return handle.read()


def _add_member(tf: tarfile.TarFile, name: str, content: bytes) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(content)
    info.mode = 0o644
    tf.addfile(info, io.BytesIO(content))
