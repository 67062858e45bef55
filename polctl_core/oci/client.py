"""OCI registry client built on top of ORAS CLI."""

from __future__ import annotations

import base64
import binascii
import contextlib
import json
import logging
import os
import re
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Any, Mapping

from .errors import OciCommandError, OciNotFoundError
from .security import assert_allowlisted, host_from_ref, redact_command_for_log
from .types import (
    COSIGN_BUNDLE_ANNOTATION,
    COSIGN_CERTIFICATE_ANNOTATION,
    COSIGN_CHAIN_ANNOTATION,
    COSIGN_SIGNATURE_ANNOTATION,
    WASM_CONFIG_MEDIATYPE,
    WASM_LAYER_MEDIATYPE,
    OciArtifactSpec,
    OciClientConfig,
    OciFetchResult,
    OciPullResult,
    OciPushResult,
    SignatureLayer,
)

logger = logging.getLogger(__name__)
_DIGEST_RE = re.compile(r"sha256:[a-f0-9]{64}")
_NOT_FOUND_MARKERS = ("not found", "manifest unknown", "name unknown")


class OciClient:
    """Thin ORAS CLI wrapper with retries, per-host TLS settings and security checks."""

    def __init__(self, config: OciClientConfig | None = None) -> None:
        self.config = config or OciClientConfig()

    def resolve(self, ref: str) -> str:
        assert_allowlisted(ref, self.config.allowlist_domains)
        result = self._run(["oras", "resolve", ref], ref=ref)
        digest = _extract_digest(result.stdout) or _extract_digest(result.stderr)
        if not digest:
            raise OciCommandError(f"unable to resolve digest for ref '{ref}'")
        return digest

    def pull(self, ref_or_digest: str, output_dir: Path) -> OciPullResult:
        assert_allowlisted(ref_or_digest, self.config.allowlist_domains)
        output_dir.mkdir(parents=True, exist_ok=True)
        result = self._run(["oras", "pull", ref_or_digest, "-o", str(output_dir)], ref=ref_or_digest)
        files = tuple(path for path in output_dir.rglob("*") if path.is_file())
        self._enforce_size_limit(files)
        digest = _extract_digest(result.stdout) or _extract_digest(result.stderr)
        return OciPullResult(ref=ref_or_digest, digest=digest, files=files)

    def fetch(self, ref: str) -> OciFetchResult:
        """Pull a policy artifact and return its single Wasm payload."""
        digest = self.resolve(ref)
        with tempfile.TemporaryDirectory(prefix="polctl-oci-") as tmp:
            pulled = self.pull(_pinned_ref(ref, digest), Path(tmp) / "artifact")
            candidates = [path for path in pulled.files if path.suffix == ".wasm"] or list(pulled.files)
            if len(candidates) != 1:
                raise OciCommandError(
                    f"expected exactly one policy layer in '{ref}', found {len(candidates)}"
                )
            content = candidates[0].read_bytes()
        return OciFetchResult(ref=ref, digest=digest, content=content)

    def fetch_manifest(self, ref_or_digest: str) -> dict[str, Any]:
        assert_allowlisted(ref_or_digest, self.config.allowlist_domains)
        result = self._run(["oras", "manifest", "fetch", ref_or_digest], ref=ref_or_digest)
        payload = _parse_json_document(result.stdout)
        if not isinstance(payload, dict):
            raise OciCommandError("unable to parse OCI manifest payload")
        return payload

    def fetch_blob(self, ref_or_digest: str, digest: str) -> bytes:
        assert_allowlisted(ref_or_digest, self.config.allowlist_domains)
        if not digest:
            raise OciCommandError("missing blob digest")
        combined_ref = f"{_repository_for(ref_or_digest)}@{digest}"
        with tempfile.TemporaryDirectory(prefix="polctl-oci-blob-") as tmp:
            output_path = Path(tmp) / "blob.bin"
            self._run(["oras", "blob", "fetch", "--output", str(output_path), combined_ref], ref=combined_ref)
            return output_path.read_bytes()

    def fetch_signatures(self, ref: str, digest: str) -> list[SignatureLayer]:
        """Return the cosign signatures attached to ``digest``, or an empty list when unsigned."""
        signature_ref = f"{_repository_for(ref)}:{digest.replace(':', '-')}.sig"
        try:
            manifest = self.fetch_manifest(signature_ref)
        except OciNotFoundError:
            logger.debug("no signature manifest at %s", signature_ref)
            return []
        layers = manifest.get("layers")
        if not isinstance(layers, list):
            return []
        signatures: list[SignatureLayer] = []
        for layer in layers:
            if not isinstance(layer, dict):
                continue
            annotations = layer.get("annotations") if isinstance(layer.get("annotations"), dict) else {}
            signature = str(annotations.get(COSIGN_SIGNATURE_ANNOTATION) or "").strip()
            layer_digest = str(layer.get("digest") or "").strip()
            if not signature or not layer_digest:
                continue
            signatures.append(
                SignatureLayer(
                    payload=self.fetch_blob(signature_ref, layer_digest),
                    signature=signature,
                    certificate=_optional_pem(annotations.get(COSIGN_CERTIFICATE_ANNOTATION)),
                    chain=_optional_pem(annotations.get(COSIGN_CHAIN_ANNOTATION)),
                    bundle=_layer_bundle(annotations.get(COSIGN_BUNDLE_ANNOTATION), layer_digest),
                )
            )
        return signatures

    def push(self, ref: str, artifact: OciArtifactSpec) -> OciPushResult:
        assert_allowlisted(ref, self.config.allowlist_domains)
        if not artifact.files:
            raise OciCommandError("artifact spec has no files to publish")
        files = [path.resolve() for path in artifact.files]
        common_root = Path(os.path.commonpath([str(path.parent) for path in files]))
        command = ["oras", "push", ref]
        if artifact.artifact_type:
            command.extend(["--artifact-type", artifact.artifact_type])
        for key, value in artifact.annotations.items():
            command.extend(["--annotation", f"{key}={value}"])
        for path in files:
            path_arg = path.relative_to(common_root).as_posix()
            media = artifact.media_types.get(path.name) or artifact.media_types.get(str(path))
            command.append(f"{path_arg}:{media}" if media else path_arg)
        result = self._run(command, ref=ref, cwd=common_root)
        digest = _extract_digest(result.stdout) or _extract_digest(result.stderr)
        if not digest:
            digest = self.resolve(ref)
        return OciPushResult(ref=ref, digest=digest)

    def push_policy(self, ref: str, content: bytes, annotations: Mapping[str, str]) -> OciPushResult:
        with tempfile.TemporaryDirectory(prefix="polctl-push-") as tmp:
            wasm_path = Path(tmp) / "policy.wasm"
            wasm_path.write_bytes(content)
            spec = build_artifact_spec(
                [wasm_path],
                media_types={wasm_path.name: WASM_LAYER_MEDIATYPE},
                annotations=annotations,
                artifact_type=WASM_CONFIG_MEDIATYPE,
            )
            return self.push(ref, spec)

    def _run(
        self,
        command: list[str],
        *,
        ref: str,
        cwd: Path | None = None,
    ) -> subprocess.CompletedProcess[str]:
        with contextlib.ExitStack() as stack:
            command = [*command, *self._host_flags(ref, stack)]
            return self._run_with_retries(command, cwd=cwd)

    def _host_flags(self, ref: str, stack: contextlib.ExitStack) -> list[str]:
        host = host_from_ref(ref)
        settings = self.config.sources.for_host(host)
        flags: list[str] = []
        if settings.insecure:
            flags.extend(["--insecure", "--plain-http"])
        if settings.custom_ca:
            tmp = Path(stack.enter_context(tempfile.TemporaryDirectory(prefix="polctl-ca-")))
            ca_path = tmp / "ca.pem"
            ca_path.write_bytes(settings.custom_ca)
            flags.extend(["--ca-file", str(ca_path)])
        credentials = self.config.sources.credentials_for(host)
        if credentials is not None:
            if credentials.username and credentials.password:
                flags.extend(["--username", credentials.username, "--password", credentials.password])
            elif credentials.token:
                flags.extend(["--identity-token", credentials.token])
        return flags

    def _run_with_retries(self, command: list[str], *, cwd: Path | None) -> subprocess.CompletedProcess[str]:
        timeout = max(float(self.config.timeout_seconds), 1.0)
        retries = max(int(self.config.max_retries), 1)
        backoff = max(float(self.config.backoff_seconds), 0.0)

        last_error: Exception | None = None
        for attempt in range(1, retries + 1):
            try:
                redacted = " ".join(redact_command_for_log(command))
                logger.debug("oci command attempt=%s/%s cmd=%s", attempt, retries, redacted)
                result = subprocess.run(
                    command,
                    check=False,
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                    cwd=str(cwd) if cwd is not None else None,
                )
                if result.returncode == 0:
                    return result
                if _is_not_found(result.stderr):
                    raise OciNotFoundError(_format_failure(command, result.returncode, result.stderr))
                if attempt >= retries:
                    raise OciCommandError(_format_failure(command, result.returncode, result.stderr))
            except FileNotFoundError as exc:
                raise OciCommandError(
                    "oras CLI not found. Install ORAS and ensure it is available in PATH."
                ) from exc
            except subprocess.TimeoutExpired as exc:
                last_error = exc
                if attempt >= retries:
                    raise OciCommandError(f"oras command timed out after {timeout:.1f}s") from exc
            if attempt < retries:
                time.sleep(min(backoff * attempt, 2.0))
        if isinstance(last_error, Exception):
            raise OciCommandError("oras command failed after retries") from last_error
        raise OciCommandError("oras command failed")

    def _enforce_size_limit(self, files: tuple[Path, ...]) -> None:
        limit = self.config.max_artifact_size_bytes
        if limit is None:
            return
        total = sum(path.stat().st_size for path in files)
        if total > limit:
            raise OciCommandError(
                f"artifact size {total} exceeds configured limit {limit} bytes"
            )


def build_artifact_spec(
    files: list[Path],
    media_types: Mapping[str, str] | None = None,
    *,
    annotations: Mapping[str, str] | None = None,
    artifact_type: str | None = None,
) -> OciArtifactSpec:
    return OciArtifactSpec(
        files=tuple(files),
        media_types=dict(media_types or {}),
        annotations=dict(annotations or {}),
        artifact_type=artifact_type,
    )


def _extract_digest(text: str | None) -> str | None:
    if not text:
        return None
    match = _DIGEST_RE.search(text)
    if not match:
        return None
    return match.group(0)


def _is_not_found(stderr: str | None) -> bool:
    lowered = (stderr or "").lower()
    return any(marker in lowered for marker in _NOT_FOUND_MARKERS)


def _format_failure(command: list[str], code: int, stderr: str | None) -> str:
    redacted = " ".join(redact_command_for_log(command))
    detail = (stderr or "").strip()
    if detail:
        return f"oras command failed (exit={code}) cmd='{redacted}' err='{detail}'"
    return f"oras command failed (exit={code}) cmd='{redacted}'"


def _parse_json_document(payload: str | None) -> Any:
    text = (payload or "").strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise OciCommandError("invalid JSON payload from oras command") from exc


def _repository_for(ref_or_digest: str) -> str:
    value = ref_or_digest.strip()
    if "@" in value:
        return value.split("@", 1)[0]
    slash_index = value.rfind("/")
    colon_index = value.rfind(":")
    if colon_index > slash_index:
        return value[:colon_index]
    return value


def _pinned_ref(ref: str, digest: str) -> str:
    return f"{_repository_for(ref)}@{digest}"


def _optional_pem(value: Any) -> bytes | None:
    text = str(value or "").strip()
    return text.encode("utf-8") if text else None


def _layer_bundle(value: Any, layer_digest: str) -> dict[str, Any] | None:
    try:
        return _optional_json(value)
    except OciCommandError:
        logger.warning("ignoring malformed rekor bundle on signature layer %s", layer_digest)
        return None


def _optional_json(value: Any) -> dict[str, Any] | None:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        try:
            payload = json.loads(base64.b64decode(text).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise OciCommandError("invalid cosign bundle annotation") from exc
    return payload if isinstance(payload, dict) else None
