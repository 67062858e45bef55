"""Policy metadata embedded in a Wasm custom section."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml

from polctl_core.errors import InvalidPolicyModule, IoError

from .wasm import read_custom_section, write_custom_section

logger = logging.getLogger(__name__)

METADATA_SECTION = "kubewarden_metadata"
SUPPORTED_PROTOCOL_VERSIONS = ("v1",)

ANNOTATION_TITLE = "io.kubewarden.policy.title"
ANNOTATION_DESCRIPTION = "io.kubewarden.policy.description"
ANNOTATION_AUTHOR = "io.kubewarden.policy.author"
ANNOTATION_URL = "io.kubewarden.policy.url"
ANNOTATION_SOURCE = "io.kubewarden.policy.source"
ANNOTATION_LICENSE = "io.kubewarden.policy.license"
ANNOTATION_USAGE = "io.kubewarden.policy.usage"


class ExecutionMode(str, Enum):
    OPA = "opa"
    GATEKEEPER = "gatekeeper"
    KUBEWARDEN = "kubewarden"


@dataclass(frozen=True)
class PolicyMetadata:
    protocol_version: str | None = None
    rules: tuple[Mapping[str, Any], ...] = ()
    annotations: Mapping[str, str] = field(default_factory=dict)
    mutating: bool = False
    background_audit: bool = True
    context_aware: bool = False
    execution_mode: ExecutionMode = ExecutionMode.KUBEWARDEN

    @classmethod
    def from_dict(cls, payload: Any, *, origin: str = "metadata") -> "PolicyMetadata":
        if not isinstance(payload, dict):
            raise InvalidPolicyModule(f"{origin}: expected a mapping")
        rules = payload.get("rules") or []
        if not isinstance(rules, list) or not all(isinstance(rule, dict) for rule in rules):
            raise InvalidPolicyModule(f"{origin}: 'rules' must be a list of mappings")
        annotations = payload.get("annotations") or {}
        if not isinstance(annotations, dict):
            raise InvalidPolicyModule(f"{origin}: 'annotations' must be a mapping")
        raw_mode = str(payload.get("executionMode") or ExecutionMode.KUBEWARDEN.value)
        try:
            mode = ExecutionMode(raw_mode)
        except ValueError as exc:
            raise InvalidPolicyModule(f"{origin}: unknown executionMode '{raw_mode}'") from exc
        protocol = payload.get("protocolVersion")
        if mode is ExecutionMode.KUBEWARDEN:
            if protocol is None:
                raise InvalidPolicyModule(f"{origin}: 'protocolVersion' is required for kubewarden policies")
            if str(protocol) not in SUPPORTED_PROTOCOL_VERSIONS:
                raise InvalidPolicyModule(f"{origin}: unsupported protocolVersion '{protocol}'")
        for flag in ("mutating", "backgroundAudit", "contextAware"):
            if flag in payload and not isinstance(payload[flag], bool):
                raise InvalidPolicyModule(f"{origin}: '{flag}' must be a boolean")
        return cls(
            protocol_version=str(protocol) if protocol is not None else None,
            rules=tuple(rules),
            annotations={str(key): str(value) for key, value in annotations.items() if value is not None},
            mutating=bool(payload.get("mutating", False)),
            background_audit=bool(payload.get("backgroundAudit", True)),
            context_aware=bool(payload.get("contextAware", False)),
            execution_mode=mode,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "rules": [dict(rule) for rule in self.rules],
            "annotations": dict(self.annotations),
            "mutating": self.mutating,
            "backgroundAudit": self.background_audit,
            "contextAware": self.context_aware,
            "executionMode": self.execution_mode.value,
        }
        if self.protocol_version is not None:
            payload["protocolVersion"] = self.protocol_version
        return payload

    @property
    def title(self) -> str | None:
        return self.annotations.get(ANNOTATION_TITLE)


def load_metadata_file(path: Path) -> PolicyMetadata:
    """Read metadata from a YAML (or JSON) file."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise IoError(f"cannot read metadata file {path}: {exc}") from exc
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidPolicyModule(f"{path}: invalid YAML: {exc}") from exc
    return PolicyMetadata.from_dict(payload, origin=str(path))


def read_metadata(module: bytes) -> PolicyMetadata | None:
    raw = read_custom_section(module, METADATA_SECTION)
    if raw is None:
        return None
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidPolicyModule(f"'{METADATA_SECTION}' section is not valid JSON") from exc
    return PolicyMetadata.from_dict(payload, origin=METADATA_SECTION)


def annotate(module: bytes, metadata: PolicyMetadata) -> bytes:
    payload = json.dumps(metadata.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")
    logger.debug("embedding %d bytes of metadata", len(payload))
    return write_custom_section(module, METADATA_SECTION, payload)
