"""Policy locator parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import InvalidReference

_DIGEST_RE = re.compile(r"@(sha256:[a-f0-9]{64})$")


class PolicyScheme(str, Enum):
    REGISTRY = "registry"
    HTTPS = "https"
    FILE = "file"

    @property
    def prefix(self) -> str:
        return f"{self.value}://"


_PREFIXES: tuple[PolicyScheme, ...] = (PolicyScheme.REGISTRY, PolicyScheme.HTTPS, PolicyScheme.FILE)


@dataclass(frozen=True)
class PolicyReference:
    scheme: PolicyScheme
    location: str
    digest: str | None = None

    @property
    def name(self) -> str:
        """Stable store key for this reference."""
        return f"{self.scheme.prefix}{self.location}"

    @property
    def host(self) -> str | None:
        if self.scheme is PolicyScheme.FILE:
            return None
        return self.location.split("/", 1)[0].lower()

    @property
    def url(self) -> str:
        if self.scheme is not PolicyScheme.HTTPS:
            raise InvalidReference(f"'{self.name}' is not an https:// reference")
        return f"https://{self.location}"

    @property
    def oci_ref(self) -> str:
        if self.scheme is not PolicyScheme.REGISTRY:
            raise InvalidReference(f"'{self.name}' is not a registry:// reference")
        return self.location

    @property
    def repository(self) -> str:
        """Registry repository without tag or digest."""
        value = self.oci_ref
        if "@" in value:
            return value.split("@", 1)[0]
        slash_index = value.rfind("/")
        colon_index = value.rfind(":")
        if colon_index > slash_index:
            return value[:colon_index]
        return value

    def to_dict(self) -> dict[str, str | None]:
        return {"scheme": self.scheme.value, "location": self.location, "digest": self.digest}

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> "PolicyReference":
        try:
            scheme = PolicyScheme(str(payload["scheme"]))
        except (KeyError, ValueError) as exc:
            raise InvalidReference(f"invalid stored reference: {payload!r}") from exc
        location = str(payload.get("location") or "")
        if not location:
            raise InvalidReference(f"invalid stored reference: {payload!r}")
        digest = payload.get("digest")
        return cls(scheme=scheme, location=location, digest=str(digest) if digest else None)


def resolve(locator: str) -> PolicyReference:
    """Translate a locator string into a PolicyReference.

    Known scheme prefixes are stripped; anything else is a path relative to
    the current directory. No filesystem or network access happens here.
    """
    scheme = PolicyScheme.FILE
    location = locator
    for candidate in _PREFIXES:
        if locator.startswith(candidate.prefix):
            scheme = candidate
            location = locator[len(candidate.prefix) :]
            break
    if not location:
        raise InvalidReference(f"policy locator '{locator}' has an empty location")
    match = _DIGEST_RE.search(location) if scheme is PolicyScheme.REGISTRY else None
    return PolicyReference(scheme=scheme, location=location, digest=match.group(1) if match else None)


def anchor(reference: PolicyReference, base_dir: Path | None = None) -> PolicyReference:
    """Pin a relative file location to an absolute path so its store name is stable.

    Relative locations are joined to ``base_dir`` (the working directory when
    omitted). Registry and HTTPS references come back unchanged.
    """
    if reference.scheme is not PolicyScheme.FILE:
        return reference
    path = Path(reference.location).expanduser()
    if not path.is_absolute():
        path = (base_dir or Path.cwd()) / path
    return PolicyReference(scheme=PolicyScheme.FILE, location=str(path.resolve()))
