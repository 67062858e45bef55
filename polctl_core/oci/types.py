"""OCI client datatypes and configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from polctl_core.sources.models import SourceConfig

WASM_LAYER_MEDIATYPE = "application/vnd.wasm.content.layer.v1+wasm"
WASM_CONFIG_MEDIATYPE = "application/vnd.wasm.config.v1+json"
SIMPLE_SIGNING_MEDIATYPE = "application/vnd.dev.cosign.simplesigning.v1+json"

COSIGN_SIGNATURE_ANNOTATION = "dev.cosignproject.cosign/signature"
COSIGN_CERTIFICATE_ANNOTATION = "dev.sigstore.cosign/certificate"
COSIGN_CHAIN_ANNOTATION = "dev.sigstore.cosign/chain"
COSIGN_BUNDLE_ANNOTATION = "dev.sigstore.cosign/bundle"


@dataclass(frozen=True)
class OciClientConfig:
    timeout_seconds: float = 30.0
    max_retries: int = 2
    backoff_seconds: float = 0.2
    allowlist_domains: tuple[str, ...] = ()
    max_artifact_size_bytes: int | None = None
    sources: SourceConfig = field(default_factory=SourceConfig)


@dataclass(frozen=True)
class OciPullResult:
    ref: str
    digest: str | None
    files: tuple[Path, ...]


@dataclass(frozen=True)
class OciFetchResult:
    ref: str
    digest: str
    content: bytes


@dataclass(frozen=True)
class OciPushResult:
    ref: str
    digest: str


@dataclass(frozen=True)
class OciArtifactSpec:
    files: tuple[Path, ...]
    media_types: Mapping[str, str] = field(default_factory=dict)
    annotations: Mapping[str, str] = field(default_factory=dict)
    artifact_type: str | None = None


@dataclass(frozen=True)
class SignatureLayer:
    """One cosign signature attached to an artifact."""

    payload: bytes
    signature: str
    certificate: bytes | None = None
    chain: bytes | None = None
    bundle: Mapping[str, object] | None = None
