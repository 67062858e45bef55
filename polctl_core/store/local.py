"""Content-addressed policy store with a lock-protected name manifest."""

from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from polctl_core.errors import CorruptEntry, InvalidReference, IoError
from polctl_core.references import PolicyReference

from .atomic import atomic_write, exclusive_lock
from .digest import digest_hex, file_sha256_digest, sha256_digest
from .models import StoreEntry

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"
CONTENT_DIRNAME = "content"
LOCK_FILENAME = ".lock"
MANIFEST_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class StoreItem:
    name: str
    content: bytes
    source_reference: PolicyReference
    verified: bool = False


class _Manifest:
    """In-memory view of manifest.json with a digest -> names index."""

    def __init__(self, entries: dict[str, dict[str, Any]], refs: dict[str, list[str]]) -> None:
        self.entries = entries
        self.refs = refs

    @classmethod
    def empty(cls) -> "_Manifest":
        return cls({}, {})

    @classmethod
    def parse(cls, payload: Any) -> "_Manifest":
        if not isinstance(payload, dict) or payload.get("schema_version") != MANIFEST_SCHEMA_VERSION:
            raise IoError("unsupported store manifest format")
        raw_entries = payload.get("entries")
        if not isinstance(raw_entries, list):
            raise IoError("store manifest entries must be a list")
        entries: dict[str, dict[str, Any]] = {}
        for record in raw_entries:
            if not isinstance(record, dict) or not record.get("name") or not record.get("digest"):
                raise IoError(f"invalid store manifest record: {record!r}")
            entries[str(record["name"])] = record
        raw_refs = payload.get("digests")
        if isinstance(raw_refs, dict):
            refs = {str(digest): [str(name) for name in names] for digest, names in raw_refs.items() if names}
        else:
            refs = {}
            for name, record in entries.items():
                refs.setdefault(str(record["digest"]), []).append(name)
        return cls(entries, refs)

    def set(self, record: dict[str, Any]) -> str | None:
        """Insert or replace a record; return the digest it displaced, if any."""
        name = str(record["name"])
        displaced = self._unlink(name)
        self.entries[name] = record
        self.refs.setdefault(str(record["digest"]), []).append(name)
        return displaced if displaced != record["digest"] else None

    def delete(self, name: str) -> str | None:
        digest = self._unlink(name)
        self.entries.pop(name, None)
        return digest

    def is_referenced(self, digest: str) -> bool:
        return bool(self.refs.get(digest))

    def to_bytes(self) -> bytes:
        payload = {
            "schema_version": MANIFEST_SCHEMA_VERSION,
            "entries": list(self.entries.values()),
            "digests": {digest: names for digest, names in self.refs.items() if names},
        }
        return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")

    def _unlink(self, name: str) -> str | None:
        record = self.entries.get(name)
        if record is None:
            return None
        digest = str(record["digest"])
        names = self.refs.get(digest, [])
        if name in names:
            names.remove(name)
        if not names:
            self.refs.pop(digest, None)
        return digest


class LocalStore:
    """Handle on one store root directory.

    Mutations serialize on an exclusive lock and rewrite manifest.json with
    temp-then-rename; readers take no lock and see the last committed manifest.
    """

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()
        self.content_dir = self.root / CONTENT_DIRNAME
        self.manifest_path = self.root / MANIFEST_FILENAME
        self.lock_path = self.root / LOCK_FILENAME

    def content_path(self, digest: str) -> Path:
        return self.content_dir / digest_hex(digest)

    def put(
        self,
        name: str,
        content: bytes,
        source_reference: PolicyReference,
        *,
        verified: bool = False,
    ) -> StoreEntry:
        return self.put_many([StoreItem(name, content, source_reference, verified)])[0]

    def put_many(self, items: Iterable[StoreItem]) -> list[StoreEntry]:
        """Store several policies under one lock with a single manifest commit."""
        items = list(items)
        with self._locked():
            manifest = self._load()
            stored_at = _now()
            results: list[StoreEntry] = []
            displaced: set[str] = set()
            changed = False
            for item in items:
                digest = sha256_digest(item.content)
                self._write_content(digest, item.content)
                candidate = StoreEntry(
                    name=item.name,
                    digest=digest,
                    local_path=self.content_path(digest),
                    source_reference=item.source_reference,
                    verified=item.verified,
                    size=len(item.content),
                    stored_at=stored_at,
                )
                current = manifest.entries.get(item.name)
                if current is not None:
                    existing = self._entry_from_record(current)
                    if existing.digest == digest:
                        if (
                            existing.source_reference == candidate.source_reference
                            and existing.verified == candidate.verified
                        ):
                            results.append(existing)
                            continue
                        candidate = replace(candidate, pushed_tag=existing.pushed_tag)
                old_digest = manifest.set(candidate.to_record())
                if old_digest:
                    displaced.add(old_digest)
                changed = True
                results.append(candidate)
            if changed:
                self._commit(manifest)
            self._collect(manifest, displaced)
        for entry in results:
            logger.debug("stored policy name=%s digest=%s", entry.name, entry.digest)
        return results

    def get(self, name: str) -> StoreEntry | None:
        record = self._load().entries.get(name)
        return self._entry_from_record(record) if record is not None else None

    def get_verified(self, name: str) -> StoreEntry | None:
        """Like ``get`` but recompute the content hash; raise CorruptEntry on mismatch."""
        entry = self.get(name)
        if entry is None:
            return None
        if not entry.local_path.is_file():
            raise CorruptEntry(entry.name, entry.digest, None)
        actual = file_sha256_digest(entry.local_path)
        if actual != entry.digest:
            raise CorruptEntry(entry.name, entry.digest, actual)
        return entry

    def read(self, entry: StoreEntry) -> bytes:
        try:
            return entry.local_path.read_bytes()
        except OSError as exc:
            raise IoError(f"cannot read stored policy {entry.name}: {exc}") from exc

    def list(self) -> list[StoreEntry]:
        return [self._entry_from_record(record) for record in self._load().entries.values()]

    def remove(self, name: str) -> bool:
        with self._locked():
            manifest = self._load()
            if name not in manifest.entries:
                return False
            digest = manifest.delete(name)
            self._commit(manifest)
            self._collect(manifest, {digest} if digest else set())
        logger.debug("removed policy name=%s digest=%s", name, digest)
        return True

    def mark_pushed(self, name: str, tag: str) -> StoreEntry | None:
        with self._locked():
            manifest = self._load()
            record = manifest.entries.get(name)
            if record is None:
                return None
            updated = {**record, "pushed_tag": tag}
            manifest.set(updated)
            self._commit(manifest)
        return self._entry_from_record(updated)

    def find_by_digest_prefix(self, prefix: str) -> list[StoreEntry]:
        value = prefix.strip().lower()
        if value.startswith("sha256:"):
            value = value[len("sha256:") :]
        if not value:
            return []
        return [entry for entry in self.list() if digest_hex(entry.digest).startswith(value)]

    @contextlib.contextmanager
    def _locked(self):
        self.root.mkdir(parents=True, exist_ok=True)
        with exclusive_lock(self.lock_path):
            yield

    def _load(self) -> _Manifest:
        if not self.manifest_path.exists():
            return _Manifest.empty()
        try:
            payload = json.loads(self.manifest_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise IoError(f"cannot read store manifest {self.manifest_path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise IoError(f"store manifest {self.manifest_path} is not valid JSON: {exc}") from exc
        return _Manifest.parse(payload)

    def _commit(self, manifest: _Manifest) -> None:
        try:
            atomic_write(self.manifest_path, manifest.to_bytes())
        except OSError as exc:
            raise IoError(f"cannot write store manifest {self.manifest_path}: {exc}") from exc

    def _write_content(self, digest: str, content: bytes) -> None:
        path = self.content_path(digest)
        if path.is_file() and file_sha256_digest(path) == digest:
            return
        try:
            atomic_write(path, content)
        except OSError as exc:
            raise IoError(f"cannot write policy content {path}: {exc}") from exc

    def _collect(self, manifest: _Manifest, digests: set[str]) -> None:
        for digest in digests:
            if manifest.is_referenced(digest):
                continue
            path = self.content_path(digest)
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise IoError(f"cannot delete policy content {path}: {exc}") from exc
            logger.debug("deleted unreferenced content digest=%s", digest)

    def _entry_from_record(self, record: dict[str, Any]) -> StoreEntry:
        digest = str(record["digest"])
        try:
            reference = PolicyReference.from_dict(record.get("source_reference") or {})
        except InvalidReference as exc:
            raise IoError(f"store manifest record '{record.get('name')}' is invalid: {exc}") from exc
        return StoreEntry(
            name=str(record["name"]),
            digest=digest,
            local_path=self.content_path(digest),
            source_reference=reference,
            verified=bool(record.get("verified", False)),
            pushed_tag=record.get("pushed_tag") or None,
            size=int(record.get("size") or 0),
            stored_at=record.get("stored_at") or None,
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")
