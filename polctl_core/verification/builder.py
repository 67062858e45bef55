"""Fold CLI-style verification inputs into a VerificationPolicy."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from polctl_core.errors import (
    ConflictingVerificationInputs,
    DuplicateAnnotationKey,
    EmptyVerificationPolicy,
    InvalidVerificationConfig,
    IoError,
)

from .config_file import load_verification_config
from .policy import Annotation, AnyOf, KeylessIdentity, PredicateKind, PublicKey, VerificationPolicy


@dataclass(frozen=True)
class VerificationInputs:
    config_path: Path | None = None
    key_paths: tuple[Path, ...] = ()
    fulcio_cert_paths: tuple[Path, ...] = ()
    rekor_key_path: Path | None = None
    annotations: tuple[str, ...] = ()
    cert_email: str | None = None
    cert_oidc_issuer: str | None = None
    github_owner: str | None = None
    github_repo: str | None = None

    def has_discrete_flags(self) -> bool:
        return bool(
            self.key_paths
            or self.fulcio_cert_paths
            or self.rekor_key_path
            or self.annotations
            or self.cert_email
            or self.cert_oidc_issuer
            or self.github_owner
            or self.github_repo
        )

    def is_empty(self) -> bool:
        return self.config_path is None and not self.has_discrete_flags()


def build(inputs: VerificationInputs) -> VerificationPolicy:
    if inputs.config_path is not None and inputs.has_discrete_flags():
        raise ConflictingVerificationInputs(
            "a verification config file cannot be combined with discrete verification flags"
        )
    if inputs.config_path is not None:
        policy = load_verification_config(inputs.config_path)
    else:
        policy = _fold(inputs)
    if policy.is_empty:
        raise EmptyVerificationPolicy()
    return policy


def _fold(inputs: VerificationInputs) -> VerificationPolicy:
    groups: list[AnyOf] = []

    keys = tuple(PublicKey(key_material=_read(path, "verification key"), source=str(path)) for path in inputs.key_paths)
    if keys:
        groups.append(AnyOf(PredicateKind.PUBLIC_KEY, keys))

    keyless = _keyless_alternatives(inputs)
    if keyless:
        groups.append(AnyOf(PredicateKind.KEYLESS, keyless))

    seen: set[str] = set()
    for raw in inputs.annotations:
        annotation = parse_annotation(raw)
        if annotation.key in seen:
            raise DuplicateAnnotationKey(annotation.key)
        seen.add(annotation.key)
        groups.append(AnyOf(PredicateKind.ANNOTATION, (annotation,)))

    return VerificationPolicy(all_of=tuple(groups))


def _keyless_alternatives(inputs: VerificationInputs) -> tuple[KeylessIdentity, ...]:
    has_claims = any(
        (inputs.cert_email, inputs.cert_oidc_issuer, inputs.github_owner, inputs.github_repo)
    )
    if not inputs.fulcio_cert_paths:
        if has_claims or inputs.rekor_key_path is not None:
            raise InvalidVerificationConfig(
                "keyless identity constraints require at least one Fulcio certificate"
            )
        return ()
    if inputs.github_repo and not inputs.github_owner:
        raise InvalidVerificationConfig("github repo constraint requires a github owner")
    rekor_key = _read(inputs.rekor_key_path, "Rekor public key") if inputs.rekor_key_path else None
    return tuple(
        KeylessIdentity(
            fulcio_root=_read(path, "Fulcio certificate"),
            rekor_key=rekor_key,
            expected_email=inputs.cert_email,
            expected_oidc_issuer=inputs.cert_oidc_issuer,
            expected_github_owner=inputs.github_owner,
            expected_github_repo=inputs.github_repo,
        )
        for path in inputs.fulcio_cert_paths
    )


def parse_annotation(raw: str) -> Annotation:
    if "=" not in raw:
        raise InvalidVerificationConfig(f"annotation '{raw}' is not in key=value format")
    key, value = raw.split("=", 1)
    key = key.strip()
    if not key:
        raise InvalidVerificationConfig(f"annotation '{raw}' has an empty key")
    return Annotation(key=key, value=value.strip())


def _read(path: Path, label: str) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise IoError(f"cannot read {label} {path}: {exc}") from exc
