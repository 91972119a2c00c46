from __future__ import annotations

from typing import Dict, Mapping, Optional

from ..config import ProviderKeysConfig


class InMemoryCredentialStore:
    """Credential store backed by a dict; hosts may set keys at runtime."""

    def __init__(self, keys: Optional[Mapping[str, Optional[str]]] = None) -> None:
        self._keys: Dict[str, str] = {k: v for k, v in (keys or {}).items() if v}

    def get_api_key(self, provider_id: str) -> Optional[str]:
        return self._keys.get(provider_id)

    def set_api_key(self, provider_id: str, api_key: Optional[str]) -> None:
        if api_key:
            self._keys[provider_id] = api_key
        else:
            self._keys.pop(provider_id, None)

    def configured(self) -> list[str]:
        return sorted(self._keys)


class EnvCredentialStore(InMemoryCredentialStore):
    """Keys read from the environment / .env (OPENAI_API_KEY, ANTHROPIC_API_KEY, ...)."""

    def __init__(self, config: Optional[ProviderKeysConfig] = None) -> None:
        config = config or ProviderKeysConfig()
        super().__init__(config.api_keys())
