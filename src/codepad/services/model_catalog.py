"""
ModelCatalog - lists the models a provider offers, with a per-provider TTL cache.

Providers with a listing endpoint are queried over HTTP; the others answer from
their static catalog entry. Listing is best-effort: any failure is logged and
reported as an empty list so pickers simply show nothing.
"""

import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import httpx
import structlog

from ..errors import ConfigurationError
from ..interfaces import CredentialStore
from ..providers.registry import ProviderConfig, ProviderRegistry
from ..providers.wire import PROTOCOLS, auth_headers


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    id: str
    display_name: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "display_name": self.display_name}


class ModelCatalog:
    def __init__(
        self,
        registry: ProviderRegistry,
        credentials: CredentialStore,
        client: Optional[httpx.AsyncClient] = None,
        ttl: float = 3600.0,
    ):
        self.registry = registry
        self.credentials = credentials
        self.client = client
        self.ttl = ttl
        self._cache: Dict[str, Tuple[float, List[ModelInfo]]] = {}

    def invalidate(self, provider_id: Optional[str] = None) -> None:
        if provider_id is None:
            self._cache.clear()
        else:
            self._cache.pop(provider_id, None)

    async def list_models(self, provider_id: str) -> List[ModelInfo]:
        cached = self._cache.get(provider_id)
        if cached and cached[0] > time.monotonic():
            return list(cached[1])

        try:
            provider = self.registry.get(provider_id)
            models = await self._fetch(provider)
        except (ConfigurationError, httpx.HTTPError, ValueError) as e:
            logger.warning("model listing failed", provider=provider_id, error=str(e))
            return []

        self._cache[provider_id] = (time.monotonic() + self.ttl, models)
        logger.debug("models listed", provider=provider_id, count=len(models))
        return list(models)

    async def _fetch(self, provider: ProviderConfig) -> List[ModelInfo]:
        protocol = PROTOCOLS.get(provider.wire_format)
        if provider.models_path is None or protocol is None:
            return [ModelInfo(mid, name) for mid, name in provider.static_models]

        api_key = self.credentials.get_api_key(provider.id)
        if provider.requires_api_key and not api_key:
            raise ConfigurationError(f"API key missing for provider '{provider.id}'")

        url = provider.base_url.rstrip("/") + provider.models_path
        headers = auth_headers(provider, api_key)
        if self.client is not None:
            resp = await self.client.get(url, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                resp = await client.get(url, headers=headers)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError("unexpected model list shape")
        return [ModelInfo(mid, name) for mid, name in protocol.read_models(data)]
