"""Load per-host source settings and registry credentials."""

from __future__ import annotations

import base64
import binascii
import json
from pathlib import Path
from typing import Any

import yaml

from polctl_core.errors import IoError

from .models import HostSourceSettings, RegistryCredentials, SourceConfig

_DOCKER_HUB_ALIASES = {
    "https://index.docker.io/v1/": "docker.io",
    "index.docker.io": "docker.io",
    "registry-1.docker.io": "docker.io",
}


def load_source_config(
    sources_path: Path | None = None,
    docker_config_path: Path | None = None,
) -> SourceConfig:
    hosts: dict[str, HostSourceSettings] = {}
    if sources_path is not None:
        hosts = _parse_sources(_read_yaml(sources_path), base_dir=sources_path.parent)
    credentials: dict[str, RegistryCredentials] = {}
    if docker_config_path is not None:
        credentials = _parse_docker_config(_read_json(docker_config_path))
    return SourceConfig(hosts=hosts, credentials=credentials)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise IoError(f"cannot read sources file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise IoError(f"invalid sources file {path}: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise IoError(f"invalid sources file {path}: expected a mapping")
    return payload


def _read_json(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise IoError(f"cannot read docker config {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise IoError(f"invalid docker config {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise IoError(f"invalid docker config {path}: expected an object")
    return payload


def _parse_sources(payload: dict[str, Any], *, base_dir: Path) -> dict[str, HostSourceSettings]:
    insecure = {str(item).strip().lower() for item in payload.get("insecure_sources") or [] if str(item).strip()}
    authorities_raw = payload.get("source_authorities") or {}
    if not isinstance(authorities_raw, dict):
        raise IoError("source_authorities must be a mapping of host to certificate list")

    authorities: dict[str, bytes] = {}
    for host, entries in authorities_raw.items():
        if not isinstance(entries, list):
            raise IoError(f"source_authorities.{host} must be a list")
        chunks = [_read_authority(entry, base_dir=base_dir, host=str(host)) for entry in entries]
        if chunks:
            authorities[str(host).strip().lower()] = b"\n".join(chunk.strip() for chunk in chunks) + b"\n"

    hosts: dict[str, HostSourceSettings] = {}
    for host in sorted(insecure | set(authorities)):
        hosts[host] = HostSourceSettings(insecure=host in insecure, custom_ca=authorities.get(host))
    return hosts


def _read_authority(entry: Any, *, base_dir: Path, host: str) -> bytes:
    if not isinstance(entry, dict):
        raise IoError(f"source_authorities.{host} entries must be mappings")
    kind = str(entry.get("type") or "").strip().lower()
    if kind == "data":
        return str(entry.get("data") or "").encode("utf-8")
    if kind == "path":
        path = Path(str(entry.get("path") or ""))
        if not path.is_absolute():
            path = base_dir / path
        try:
            return path.read_bytes()
        except OSError as exc:
            raise IoError(f"cannot read certificate authority {path}: {exc}") from exc
    raise IoError(f"source_authorities.{host}: unsupported type {entry.get('type')!r}")


def _parse_docker_config(payload: dict[str, Any]) -> dict[str, RegistryCredentials]:
    auths = payload.get("auths")
    if not isinstance(auths, dict):
        return {}
    credentials: dict[str, RegistryCredentials] = {}
    for raw_host, item in auths.items():
        if not isinstance(item, dict):
            continue
        host = _normalize_docker_host(str(raw_host))
        token = str(item.get("registrytoken") or item.get("identitytoken") or "").strip() or None
        username = str(item.get("username") or "").strip() or None
        password = str(item.get("password") or "").strip() or None
        encoded = str(item.get("auth") or "").strip()
        if encoded:
            try:
                decoded = base64.b64decode(encoded).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as exc:
                raise IoError(f"invalid auth entry for registry '{raw_host}'") from exc
            if ":" in decoded:
                username, password = decoded.split(":", 1)
        if username or password or token:
            credentials[host] = RegistryCredentials(username=username, password=password, token=token)
    return credentials


def _normalize_docker_host(raw: str) -> str:
    value = raw.strip()
    if value in _DOCKER_HUB_ALIASES:
        return _DOCKER_HUB_ALIASES[value]
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix) :]
    return value.split("/", 1)[0].lower()
