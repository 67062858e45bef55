"""Evaluate a VerificationPolicy against the signatures attached to a policy."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from polctl_core.errors import EmptyVerificationPolicy, VerificationFailed
from polctl_core.oci.types import SignatureLayer
from polctl_core.store.digest import sha256_digest

from .identity import certificate_identity, claims_match, issued_by_trusted_root, load_certificates
from .policy import Annotation, AnyOf, KeylessIdentity, PublicKey, TrustPredicate, VerificationPolicy
from .signers import decode_signature, signature_is_valid, verify_with_key
from .transparency import verify_bundle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationOutcome:
    subject_digest: str
    satisfied_groups: tuple[str, ...]
    trusted_signatures: int
    annotations: Mapping[str, str]


@dataclass(frozen=True)
class _BoundSignature:
    layer: SignatureLayer
    annotations: Mapping[str, str]


class VerificationEngine:
    """Checks signature layers with ``cryptography``.

    Every group in the policy must hold. A signer group holds when at least
    one signature bound to the subject digest satisfies one of its
    alternatives. Annotation groups are matched against the ``optional``
    section of the signatures that satisfied a signer group; a policy made
    only of annotations is matched against every bound signature and the
    metadata embedded in the artifact.
    """

    def verify(
        self,
        artifact: bytes,
        policy: VerificationPolicy,
        *,
        signatures: Sequence[SignatureLayer],
        subject_digest: str | None = None,
        embedded_annotations: Mapping[str, str] | None = None,
    ) -> VerificationOutcome:
        if policy.is_empty:
            raise EmptyVerificationPolicy()
        digest = subject_digest or sha256_digest(artifact)
        bound = [item for item in (_bind(layer, digest) for layer in signatures) if item is not None]
        logger.debug("verifying %s: %d of %d signatures bound", digest, len(bound), len(signatures))

        satisfied: list[str] = []
        failed: list[str] = []
        trusted: list[_BoundSignature] = []
        for group in policy.signer_groups:
            matching = [item for item in bound if _group_holds(group, item)]
            if matching:
                satisfied.append(group.describe())
                trusted.extend(item for item in matching if item not in trusted)
            else:
                failed.append(group.describe())

        if policy.signer_groups:
            annotation_sources = [item.annotations for item in trusted]
        else:
            annotation_sources = [item.annotations for item in bound]
            if embedded_annotations:
                annotation_sources.append(embedded_annotations)

        for group in policy.annotation_groups:
            if any(_annotation_holds(alternative, annotation_sources) for alternative in group.alternatives):
                satisfied.append(group.describe())
            else:
                failed.append(group.describe())

        if failed:
            raise VerificationFailed(
                "unsatisfied: " + "; ".join(failed),
                failed_groups=tuple(failed),
            )
        merged: dict[str, str] = {}
        for source in annotation_sources:
            merged.update(source)
        return VerificationOutcome(
            subject_digest=digest,
            satisfied_groups=tuple(satisfied),
            trusted_signatures=len(trusted),
            annotations=merged,
        )


def _bind(layer: SignatureLayer, digest: str) -> _BoundSignature | None:
    try:
        payload = json.loads(layer.payload)
    except (UnicodeDecodeError, ValueError):
        logger.debug("skipping signature with unreadable payload")
        return None
    if not isinstance(payload, dict):
        return None
    critical = payload.get("critical")
    image = critical.get("image") if isinstance(critical, dict) else None
    signed_digest = image.get("docker-manifest-digest") if isinstance(image, dict) else None
    if signed_digest != digest:
        logger.debug("skipping signature for %s", signed_digest)
        return None
    return _BoundSignature(layer=layer, annotations=_string_map(payload.get("optional")))


def _group_holds(group: AnyOf, item: _BoundSignature) -> bool:
    return any(_signer_holds(alternative, item.layer) for alternative in group.alternatives)


def _signer_holds(predicate: TrustPredicate, layer: SignatureLayer) -> bool:
    if isinstance(predicate, PublicKey):
        return verify_with_key(predicate.key_material, layer.payload, layer.signature)
    if isinstance(predicate, KeylessIdentity):
        return _keyless_holds(predicate, layer)
    return False


def _keyless_holds(predicate: KeylessIdentity, layer: SignatureLayer) -> bool:
    if not layer.certificate:
        return False
    certificates = load_certificates(layer.certificate)
    roots = load_certificates(predicate.fulcio_root)
    if not certificates or not roots:
        return False
    leaf = certificates[0]
    intermediates = load_certificates(layer.chain) if layer.chain else []
    if not issued_by_trusted_root(leaf, roots, intermediates):
        logger.debug("certificate %s not issued by a trusted root", leaf.subject.rfc4514_string())
        return False
    signature = decode_signature(layer.signature)
    if signature is None or not signature_is_valid(leaf.public_key(), layer.payload, signature):
        return False
    if not claims_match(certificate_identity(leaf), predicate):
        return False
    if predicate.rekor_key is not None:
        return verify_bundle(
            layer.bundle,
            rekor_key=predicate.rekor_key,
            signature_b64=layer.signature,
            certificate=leaf,
        )
    return True


def _annotation_holds(predicate: TrustPredicate, sources: Iterable[Mapping[str, str]]) -> bool:
    if not isinstance(predicate, Annotation):
        return False
    return any(source.get(predicate.key) == predicate.value for source in sources)


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(key): str(item) for key, item in value.items() if item is not None}
