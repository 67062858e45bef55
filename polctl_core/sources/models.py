from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping


@dataclass(frozen=True)
class HostSourceSettings:
    insecure: bool = False
    custom_ca: bytes | None = None


@dataclass(frozen=True)
class RegistryCredentials:
    username: str | None = None
    password: str | None = None
    token: str | None = None


@dataclass(frozen=True)
class SourceConfig:
    hosts: Mapping[str, HostSourceSettings] = field(default_factory=dict)
    credentials: Mapping[str, RegistryCredentials] = field(default_factory=dict)

    def for_host(self, host: str | None) -> HostSourceSettings:
        if not host:
            return HostSourceSettings()
        return self.hosts.get(host.lower(), HostSourceSettings())

    def credentials_for(self, host: str | None) -> RegistryCredentials | None:
        if not host:
            return None
        return self.credentials.get(host.lower())
