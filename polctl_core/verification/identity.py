"""Fulcio certificate chain and identity claim checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cryptography import x509
from cryptography.exceptions import InvalidSignature

from .policy import KeylessIdentity

logger = logging.getLogger(__name__)

FULCIO_ISSUER_V1_OID = x509.ObjectIdentifier("1.3.6.1.4.1.57264.1.1")
FULCIO_GITHUB_REPOSITORY_OID = x509.ObjectIdentifier("1.3.6.1.4.1.57264.1.5")
FULCIO_ISSUER_V2_OID = x509.ObjectIdentifier("1.3.6.1.4.1.57264.1.8")

_GITHUB_URL_PREFIX = "https://github.com/"


@dataclass(frozen=True)
class CertificateIdentity:
    emails: tuple[str, ...] = ()
    uris: tuple[str, ...] = ()
    issuer: str | None = None
    repository: str | None = None

    @property
    def github_owner_repo(self) -> tuple[str, str] | None:
        if self.repository and "/" in self.repository:
            owner, repo = self.repository.split("/", 1)
            return owner, repo
        for uri in self.uris:
            if uri.startswith(_GITHUB_URL_PREFIX):
                parts = uri[len(_GITHUB_URL_PREFIX) :].split("/")
                if len(parts) >= 2 and parts[0] and parts[1]:
                    return parts[0], parts[1]
        return None


def load_certificates(pem: bytes) -> list[x509.Certificate]:
    try:
        return x509.load_pem_x509_certificates(pem)
    except ValueError:
        logger.debug("unable to parse certificate bundle", exc_info=True)
        return []


def issued_by_trusted_root(
    leaf: x509.Certificate,
    roots: list[x509.Certificate],
    intermediates: list[x509.Certificate] = (),
) -> bool:
    if any(_directly_issued(leaf, root) for root in roots):
        return True
    for intermediate in intermediates:
        if _directly_issued(leaf, intermediate) and any(_directly_issued(intermediate, root) for root in roots):
            return True
    return False


def certificate_identity(cert: x509.Certificate) -> CertificateIdentity:
    emails: tuple[str, ...] = ()
    uris: tuple[str, ...] = ()
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        emails = tuple(san.get_values_for_type(x509.RFC822Name))
        uris = tuple(san.get_values_for_type(x509.UniformResourceIdentifier))
    except x509.ExtensionNotFound:
        pass
    issuer = _der_utf8(_extension_bytes(cert, FULCIO_ISSUER_V2_OID)) or _raw_text(
        _extension_bytes(cert, FULCIO_ISSUER_V1_OID)
    )
    repository = _raw_text(_extension_bytes(cert, FULCIO_GITHUB_REPOSITORY_OID))
    return CertificateIdentity(emails=emails, uris=uris, issuer=issuer, repository=repository)


def claims_match(identity: CertificateIdentity, expected: KeylessIdentity) -> bool:
    if expected.expected_email and expected.expected_email not in identity.emails:
        return False
    if expected.expected_oidc_issuer:
        if (identity.issuer or "").rstrip("/") != expected.expected_oidc_issuer.rstrip("/"):
            return False
    if expected.expected_github_owner:
        owner_repo = identity.github_owner_repo
        if owner_repo is None:
            return False
        owner, repo = owner_repo
        if owner.lower() != expected.expected_github_owner.lower():
            return False
        if expected.expected_github_repo and repo.lower() != expected.expected_github_repo.lower():
            return False
    return True


def _directly_issued(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        cert.verify_directly_issued_by(issuer)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


def _extension_bytes(cert: x509.Certificate, oid: x509.ObjectIdentifier) -> bytes | None:
    try:
        value = cert.extensions.get_extension_for_oid(oid).value
    except x509.ExtensionNotFound:
        return None
    return value.value if isinstance(value, x509.UnrecognizedExtension) else None


def _raw_text(value: bytes | None) -> str | None:
    if not value:
        return None
    try:
        return value.decode("utf-8").strip() or None
    except UnicodeDecodeError:
        return None


def _der_utf8(value: bytes | None) -> str | None:
    # Fulcio v2 extensions carry a DER UTF8String (tag 0x0c).
    if not value or len(value) < 2 or value[0] != 0x0C:
        return None
    length = value[1]
    offset = 2
    if length & 0x80:
        size = length & 0x7F
        length = int.from_bytes(value[2 : 2 + size], "big")
        offset = 2 + size
    return _raw_text(value[offset : offset + length])
