from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from polctl_core.oci.types import SignatureLayer

WASM_HEADER = b"\x00asm\x01\x00\x00\x00"


@dataclass
class KeyPair:
    private_key: ec.EllipticCurvePrivateKey

    @property
    def public_pem(self) -> bytes:
        return self.private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def sign(self, payload: bytes) -> str:
        return base64.b64encode(self.private_key.sign(payload, ec.ECDSA(hashes.SHA256()))).decode("ascii")

    def write_public(self, path: Path) -> Path:
        path.write_bytes(self.public_pem)
        return path


def simple_signing_payload(digest: str, optional: dict[str, str] | None = None) -> bytes:
    return json.dumps(
        {
            "critical": {
                "identity": {"docker-reference": "registry.local/team/policy"},
                "image": {"docker-manifest-digest": digest},
                "type": "cosign container image signature",
            },
            "optional": optional,
        }
    ).encode("utf-8")


@pytest.fixture
def make_keypair():
    def _make() -> KeyPair:
        return KeyPair(ec.generate_private_key(ec.SECP256R1()))

    return _make


@pytest.fixture
def sign_layer():
    def _sign(key: KeyPair, digest: str, optional: dict[str, str] | None = None) -> SignatureLayer:
        payload = simple_signing_payload(digest, optional)
        return SignatureLayer(payload=payload, signature=key.sign(payload))

    return _sign


@pytest.fixture
def wasm_module() -> bytes:
    # Header plus an empty type section.
    return WASM_HEADER + b"\x01\x01\x00"
