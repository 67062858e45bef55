"""Fetch policy bytes through the transport matching a reference's scheme."""

from __future__ import annotations

import contextlib
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Protocol

import requests

from polctl_core.errors import IoError, RegistryError
from polctl_core.references import PolicyReference, PolicyScheme
from polctl_core.store.digest import sha256_digest

from .models import SourceConfig

if TYPE_CHECKING:
    from polctl_core.oci.types import OciFetchResult, OciPushResult, SignatureLayer

logger = logging.getLogger(__name__)


class RegistryClient(Protocol):
    def fetch(self, ref: str) -> OciFetchResult: ...

    def resolve(self, ref: str) -> str: ...

    def fetch_signatures(self, ref: str, digest: str) -> list[SignatureLayer]: ...

    def push_policy(self, ref: str, content: bytes, annotations: Mapping[str, str]) -> OciPushResult: ...


@dataclass(frozen=True)
class FetchedPolicy:
    reference: PolicyReference
    content: bytes
    subject_digest: str


class PolicyFetcher:
    def __init__(
        self,
        registry: RegistryClient,
        sources: SourceConfig | None = None,
        *,
        base_dir: Path | None = None,
        https_timeout: float = 30.0,
    ) -> None:
        self.registry = registry
        self.sources = sources or SourceConfig()
        self.base_dir = base_dir
        self.https_timeout = https_timeout

    def fetch(self, reference: PolicyReference) -> FetchedPolicy:
        if reference.scheme is PolicyScheme.REGISTRY:
            result = self.registry.fetch(reference.oci_ref)
            if reference.digest and result.digest != reference.digest:
                raise RegistryError(
                    f"registry returned {result.digest} for '{reference.name}', expected {reference.digest}"
                )
            return FetchedPolicy(reference=reference, content=result.content, subject_digest=result.digest)
        if reference.scheme is PolicyScheme.HTTPS:
            content = self._read_https(reference)
        else:
            content = self._read_file(reference)
        return FetchedPolicy(reference=reference, content=content, subject_digest=sha256_digest(content))

    def signatures(self, fetched: FetchedPolicy) -> list[SignatureLayer]:
        if fetched.reference.scheme is not PolicyScheme.REGISTRY:
            return []
        return self.registry.fetch_signatures(fetched.reference.oci_ref, fetched.subject_digest)

    def local_path(self, reference: PolicyReference) -> Path:
        path = Path(reference.location).expanduser()
        if not path.is_absolute() and self.base_dir is not None:
            path = self.base_dir / path
        return path

    def _read_file(self, reference: PolicyReference) -> bytes:
        path = self.local_path(reference)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise IoError(f"cannot read policy file {path}: {exc}") from exc

    def _read_https(self, reference: PolicyReference) -> bytes:
        settings = self.sources.for_host(reference.host)
        with contextlib.ExitStack() as stack:
            verify: bool | str = True
            if settings.insecure:
                verify = False
            elif settings.custom_ca:
                tmp = Path(stack.enter_context(tempfile.TemporaryDirectory(prefix="polctl-ca-")))
                ca_path = tmp / "ca.pem"
                ca_path.write_bytes(settings.custom_ca)
                verify = str(ca_path)
            logger.debug("downloading policy url=%s verify=%s", reference.url, verify)
            try:
                response = requests.get(reference.url, timeout=self.https_timeout, verify=verify)
            except requests.RequestException as exc:
                raise IoError(f"download of {reference.url} failed: {exc}") from exc
        if response.status_code >= 400:
            raise IoError(f"download of {reference.url} failed: {response.status_code} {response.reason}")
        return response.content
