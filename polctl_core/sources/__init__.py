from .fetch import FetchedPolicy, PolicyFetcher, RegistryClient
from .loader import load_source_config
from .models import HostSourceSettings, RegistryCredentials, SourceConfig

__all__ = [
    "FetchedPolicy",
    "HostSourceSettings",
    "PolicyFetcher",
    "RegistryClient",
    "RegistryCredentials",
    "SourceConfig",
    "load_source_config",
]
