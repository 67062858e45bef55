from __future__ import annotations

import hashlib
from pathlib import Path

DIGEST_PREFIX = "sha256:"


def sha256_digest(data: bytes) -> str:
    return f"{DIGEST_PREFIX}{hashlib.sha256(data).hexdigest()}"


def file_sha256_digest(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            h.update(chunk)
    return f"{DIGEST_PREFIX}{h.hexdigest()}"


def digest_hex(digest: str) -> str:
    if not digest.startswith(DIGEST_PREFIX):
        raise ValueError(f"unsupported digest algorithm: {digest!r}")
    value = digest[len(DIGEST_PREFIX) :]
    if len(value) != 64 or any(ch not in "0123456789abcdef" for ch in value):
        raise ValueError(f"malformed sha256 digest: {digest!r}")
    return value
