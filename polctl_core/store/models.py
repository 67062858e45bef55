from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from polctl_core.references import PolicyReference


@dataclass(frozen=True)
class StoreEntry:
    name: str
    digest: str
    local_path: Path
    source_reference: PolicyReference
    verified: bool = False
    pushed_tag: str | None = None
    size: int = 0
    stored_at: str | None = None

    def to_record(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "digest": self.digest,
            "source_reference": self.source_reference.to_dict(),
            "verified": self.verified,
            "pushed_tag": self.pushed_tag,
            "size": self.size,
            "stored_at": self.stored_at,
        }
