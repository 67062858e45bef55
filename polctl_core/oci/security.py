"""Registry host checks and secret redaction for ORAS command lines."""

from __future__ import annotations

from urllib.parse import urlsplit

from .errors import OciSecurityError

_SECRET_FLAGS = frozenset({"--password", "--identity-token", "-p"})
_SECRET_MARKERS = ("password", "token", "authorization", "bearer")


def host_from_ref(ref: str) -> str:
    """Registry host (with port, lower-cased) of an ``oras`` reference."""
    value = ref.strip()
    if not value or "://" in value:
        raise OciSecurityError(f"invalid OCI reference: {ref!r}")
    host = value.split("/", 1)[0].strip()
    if not host or "@" in host:
        raise OciSecurityError(f"invalid OCI reference: {ref!r}")
    return host.lower()


def assert_allowlisted(ref: str, allowlist_domains: tuple[str, ...]) -> None:
    """Reject refs whose host is neither an allowlisted domain nor one of its subdomains.

    An empty allowlist allows every host.
    """
    domains = [item.strip().lower() for item in allowlist_domains if item.strip()]
    if not domains:
        return
    host = host_from_ref(ref)
    bare_host = host.split(":", 1)[0]
    for domain in domains:
        if host == domain or bare_host == domain or bare_host.endswith(f".{domain}"):
            return
    raise OciSecurityError(f"registry host '{host}' is not in OCI allowlist")


def redact_command_for_log(command: list[str]) -> list[str]:
    redacted: list[str] = []
    hide_next = False
    for item in command:
        if hide_next:
            redacted.append("***")
            hide_next = False
            continue
        lower = item.lower()
        flag, sep, _ = lower.partition("=")
        if flag in _SECRET_FLAGS:
            redacted.append(f"{item.split('=', 1)[0]}=***" if sep else item)
            hide_next = not sep
            continue
        if any(marker in lower for marker in _SECRET_MARKERS):
            redacted.append("***")
            continue
        redacted.append(_redact_url_password(item))
    return redacted


def _redact_url_password(item: str) -> str:
    if "://" not in item:
        return item
    parsed = urlsplit(item)
    if not parsed.password:
        return item
    return item.replace(f":{parsed.password}@", ":***@", 1)
