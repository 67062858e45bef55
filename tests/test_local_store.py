from __future__ import annotations

import hashlib
import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from polctl_core.errors import CorruptEntry, IoError
from polctl_core.references import resolve
from polctl_core.store import LocalStore, StoreItem

REF = resolve("registry://registry.local/team/foo:v1")


def _snapshot(store: LocalStore) -> tuple[bytes, list[str]]:
    manifest = store.manifest_path.read_bytes()
    content = sorted(path.name for path in store.content_dir.iterdir())
    return manifest, content


def test_put_get_remove_scenario(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "store")
    content = b"policy-bytes"
    expected = "sha256:" + hashlib.sha256(content).hexdigest()

    entry = store.put("foo", content, REF)

    found = store.get("foo")
    assert found is not None
    assert found.digest == expected
    assert found.local_path == store.content_dir / expected.split(":", 1)[1]
    assert found.local_path.read_bytes() == content
    assert found == entry

    assert store.remove("foo") is True
    assert store.get("foo") is None
    assert not entry.local_path.exists()


def test_put_is_idempotent(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "store")
    store.put("foo", b"same", REF, verified=True)
    before = _snapshot(store)

    store.put("foo", b"same", REF, verified=True)

    assert _snapshot(store) == before


def test_shared_content_survives_until_last_reference(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "store")
    first = store.put("a", b"shared", REF)
    store.put("b", b"shared", resolve("registry://registry.local/team/bar:v1"))

    assert store.remove("a") is True
    assert first.local_path.exists()
    assert store.remove("b") is True
    assert not first.local_path.exists()


def test_overwrite_replaces_content(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "store")
    old = store.put("foo", b"v1", REF)
    new = store.put("foo", b"v2", REF)

    assert new.digest != old.digest
    assert not old.local_path.exists()
    assert store.get("foo").digest == new.digest


def test_list_keeps_insertion_order(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "store")
    for name in ("zeta", "alpha", "mid"):
        store.put(name, name.encode(), REF)
    store.put("alpha", b"alpha-v2", REF)

    assert [entry.name for entry in store.list()] == ["zeta", "alpha", "mid"]


def test_remove_unknown_name(tmp_path: Path) -> None:
    assert LocalStore(tmp_path / "store").remove("missing") is False


def test_get_verified_detects_corruption(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "store")
    entry = store.put("foo", b"good", REF)
    assert store.get_verified("foo") == entry

    entry.local_path.write_bytes(b"evil")
    with pytest.raises(CorruptEntry) as excinfo:
        store.get_verified("foo")
    assert excinfo.value.actual is not None

    entry.local_path.unlink()
    with pytest.raises(CorruptEntry) as excinfo:
        store.get_verified("foo")
    assert excinfo.value.actual is None


def test_put_many_commits_once_and_digest_index_is_persisted(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "store")
    entries = store.put_many(
        [
            StoreItem("a", b"one", REF),
            StoreItem("b", b"one", REF, verified=True),
            StoreItem("c", b"two", REF),
        ]
    )

    payload = json.loads(store.manifest_path.read_text(encoding="utf-8"))
    assert [record["name"] for record in payload["entries"]] == ["a", "b", "c"]
    assert payload["digests"][entries[0].digest] == ["a", "b"]
    assert store.get("b").verified is True


def test_mark_pushed_and_digest_prefix_lookup(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "store")
    entry = store.put("foo", b"content", REF)

    updated = store.mark_pushed("foo", "registry.local/team/foo:v2")
    assert updated.pushed_tag == "registry.local/team/foo:v2"
    store.put("foo", b"content", REF, verified=True)
    assert store.get("foo").pushed_tag == "registry.local/team/foo:v2"

    hex_digest = entry.digest.split(":", 1)[1]
    assert [item.name for item in store.find_by_digest_prefix(hex_digest[:8])] == ["foo"]
    assert [item.name for item in store.find_by_digest_prefix("sha256:" + hex_digest[:8])] == ["foo"]
    assert store.find_by_digest_prefix("") == []


def test_invalid_manifest_is_reported(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "store")
    store.root.mkdir(parents=True)
    store.manifest_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(IoError):
        store.list()


def test_concurrent_puts_do_not_lose_updates(tmp_path: Path) -> None:
    root = tmp_path / "store"
    names = [f"registry://registry.local/team/p{index}:v1" for index in range(16)]

    def _put(index: int) -> None:
        # Separate handles on one root, as separate invocations would have.
        LocalStore(root).put(names[index], f"content-{index % 4}".encode(), resolve(names[index]))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(_put, range(len(names))))

    store = LocalStore(root)
    assert sorted(entry.name for entry in store.list()) == sorted(names)
    manifest = json.loads(store.manifest_path.read_bytes())
    expected: dict[str, set[str]] = {}
    for entry in store.list():
        expected.setdefault(entry.digest, set()).add(entry.name)
    assert {digest: set(owners) for digest, owners in manifest["digests"].items()} == expected
    assert len(expected) == 4
    assert all(store.get_verified(name) is not None for name in names)
