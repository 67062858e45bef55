"""Rekor bundle checks: signed entry timestamp and integration time."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from cryptography import x509

from .signers import decode_signature, load_public_key, signature_is_valid

logger = logging.getLogger(__name__)


def canonical_payload(payload: Mapping[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def verify_bundle(
    bundle: Mapping[str, Any] | None,
    *,
    rekor_key: bytes,
    signature_b64: str,
    certificate: x509.Certificate,
) -> bool:
    """Check that a cosign bundle proves the signing event was logged.

    The signed entry timestamp must verify under ``rekor_key``, the logged
    entry must carry the same signature as the layer, and the integration
    time must fall inside the certificate validity window.
    """
    if not isinstance(bundle, Mapping):
        logger.debug("signature carries no rekor bundle")
        return False
    payload = bundle.get("Payload")
    set_b64 = bundle.get("SignedEntryTimestamp")
    if not isinstance(payload, Mapping) or not isinstance(set_b64, str):
        logger.debug("rekor bundle is missing Payload or SignedEntryTimestamp")
        return False

    public_key = load_public_key(rekor_key)
    entry_timestamp = decode_signature(set_b64)
    if public_key is None or entry_timestamp is None:
        return False
    if not signature_is_valid(public_key, canonical_payload(payload), entry_timestamp):
        logger.debug("rekor signed entry timestamp does not verify")
        return False

    if _logged_signature(payload.get("body")) != signature_b64:
        logger.debug("rekor entry records a different signature")
        return False

    integrated = payload.get("integratedTime")
    if not isinstance(integrated, int):
        return False
    try:
        moment = datetime.fromtimestamp(integrated, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.debug("rekor integration time %s is out of range", integrated)
        return False
    if not certificate.not_valid_before_utc <= moment <= certificate.not_valid_after_utc:
        logger.debug("rekor integration time %s outside certificate validity", moment.isoformat())
        return False
    return True


def _logged_signature(body: Any) -> str | None:
    if not isinstance(body, str):
        return None
    try:
        entry = json.loads(base64.b64decode(body, validate=True))
    except (binascii.Error, ValueError):
        return None
    spec = entry.get("spec") if isinstance(entry, dict) else None
    signature = spec.get("signature") if isinstance(spec, dict) else None
    content = signature.get("content") if isinstance(signature, dict) else None
    return content if isinstance(content, str) else None
