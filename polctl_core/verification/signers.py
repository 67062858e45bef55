"""Signature checks delegated to the ``cryptography`` package."""

from __future__ import annotations

import base64
import binascii
import logging

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.types import PublicKeyTypes

logger = logging.getLogger(__name__)


def load_public_key(material: bytes) -> PublicKeyTypes | None:
    try:
        return serialization.load_pem_public_key(material)
    except (ValueError, UnsupportedAlgorithm):
        logger.debug("unable to parse public key material", exc_info=True)
        return None


def decode_signature(signature_b64: str) -> bytes | None:
    try:
        return base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError):
        return None


def signature_is_valid(public_key: PublicKeyTypes, payload: bytes, signature: bytes) -> bool:
    try:
        if isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, payload, ec.ECDSA(hashes.SHA256()))
        elif isinstance(public_key, ed25519.Ed25519PublicKey):
            public_key.verify(signature, payload)
        elif isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(signature, payload, padding.PKCS1v15(), hashes.SHA256())
        else:
            logger.debug("unsupported public key type %s", type(public_key).__name__)
            return False
    except InvalidSignature:
        return False
    return True


def verify_with_key(key_material: bytes, payload: bytes, signature_b64: str) -> bool:
    public_key = load_public_key(key_material)
    signature = decode_signature(signature_b64)
    if public_key is None or signature is None:
        return False
    return signature_is_valid(public_key, payload, signature)
