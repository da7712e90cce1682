import os
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from sentinel_aggregator.domain import SourceKey

# Names already used by existing deployments, checked before the generic one.
LEGACY_ENV_VARS: Dict[SourceKey, Tuple[str, ...]] = {
    SourceKey.THREAT_INTEL: ("ABUSEIPDB_KEY",),
}


class SecretsProvider(ABC):
    @abstractmethod
    def get_api_key(self, source: SourceKey) -> Optional[str]:
        raise NotImplementedError


def env_var_for_source(source: SourceKey) -> str:
    return f"{source.value.upper()}_API_KEY"


class EnvSecretsProvider(SecretsProvider):
    def get_api_key(self, source: SourceKey) -> Optional[str]:
        for name in LEGACY_ENV_VARS.get(source, ()) + (env_var_for_source(source),):
            value = os.getenv(name)
            if value:
                return value
        return None


class StaticSecretsProvider(SecretsProvider):
    def __init__(self, keys: Dict[SourceKey, str]):
        self.keys = dict(keys)

    def get_api_key(self, source: SourceKey) -> Optional[str]:
        return self.keys.get(source)
