from .digest import digest_hex, file_sha256_digest, sha256_digest
from .local import LocalStore, StoreItem
from .models import StoreEntry

__all__ = [
    "LocalStore",
    "StoreEntry",
    "StoreItem",
    "digest_hex",
    "file_sha256_digest",
    "sha256_digest",
]
