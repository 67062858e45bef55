"""OCI registry client package for polctl."""

from .client import OciClient, build_artifact_spec
from .errors import OciCommandError, OciError, OciNotFoundError, OciSecurityError
from .types import (
    WASM_CONFIG_MEDIATYPE,
    WASM_LAYER_MEDIATYPE,
    OciArtifactSpec,
    OciClientConfig,
    OciFetchResult,
    OciPullResult,
    OciPushResult,
    SignatureLayer,
)

__all__ = [
    "OciClient",
    "OciClientConfig",
    "OciArtifactSpec",
    "OciFetchResult",
    "OciPullResult",
    "OciPushResult",
    "SignatureLayer",
    "OciError",
    "OciCommandError",
    "OciNotFoundError",
    "OciSecurityError",
    "build_artifact_spec",
    "WASM_CONFIG_MEDIATYPE",
    "WASM_LAYER_MEDIATYPE",
]
