"""
Static catalog of known LLM providers.

Each provider entry names its wire format; everything that differs between
providers at the protocol level hangs off that closed set of formats (see
``codepad.providers.wire``). Adding a provider that speaks an existing format
is a new catalog entry; a new format is a new ``WireFormat`` member.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterator, Mapping, Optional, Tuple

from ..errors import ConfigurationError


class WireFormat(str, Enum):
    """Streaming response framing families."""

    OPENAI_COMPATIBLE = "openai-compatible"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"
    UNSUPPORTED = "unsupported"


class AuthStyle(str, Enum):
    """How the API key travels in the request headers."""

    BEARER = "bearer"
    X_API_KEY = "x-api-key"
    NONE = "none"


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    name: str
    wire_format: WireFormat
    base_url: str = ""
    auth: AuthStyle = AuthStyle.BEARER
    default_model: Optional[str] = None
    models_path: Optional[str] = None
    static_models: Tuple[Tuple[str, str], ...] = ()
    description: str = ""

    @property
    def requires_api_key(self) -> bool:
        return self.auth is not AuthStyle.NONE

    @property
    def supported(self) -> bool:
        return self.wire_format is not WireFormat.UNSUPPORTED

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "wire_format": self.wire_format.value,
            "base_url": self.base_url,
            "requires_api_key": self.requires_api_key,
            "supported": self.supported,
            "default_model": self.default_model,
            "description": self.description,
        }


_CLAUDE_MODELS = (
    ("claude-3-5-sonnet-latest", "Claude 3.5 Sonnet"),
    ("claude-3-5-haiku-latest", "Claude 3.5 Haiku"),
)

BUILTIN_PROVIDERS: Tuple[ProviderConfig, ...] = (
    ProviderConfig(
        id="openai",
        name="OpenAI",
        wire_format=WireFormat.OPENAI_COMPATIBLE,
        base_url="https://api.openai.com/v1",
        default_model="gpt-4o-mini",
        models_path="/models",
        description="OpenAI GPT-4o, GPT-4o mini and more.",
    ),
    ProviderConfig(
        id="openrouter",
        name="OpenRouter",
        wire_format=WireFormat.OPENAI_COMPATIBLE,
        base_url="https://openrouter.ai/api/v1",
        default_model="openai/gpt-4o-mini",
        models_path="/models",
        description="Unified gateway for many models.",
    ),
    ProviderConfig(
        id="groq",
        name="Groq",
        wire_format=WireFormat.OPENAI_COMPATIBLE,
        base_url="https://api.groq.com/openai/v1",
        default_model="llama-3.1-70b-versatile",
        models_path="/models",
        description="Fast inference for LLaMA models.",
    ),
    ProviderConfig(
        id="together",
        name="Together AI",
        wire_format=WireFormat.OPENAI_COMPATIBLE,
        base_url="https://api.together.xyz/v1",
        default_model="meta-llama/Llama-3-8b-chat-hf",
        models_path="/models",
        description="Open models hosted by Together.",
    ),
    ProviderConfig(
        id="anthropic",
        name="Anthropic",
        wire_format=WireFormat.ANTHROPIC,
        base_url="https://api.anthropic.com/v1",
        auth=AuthStyle.X_API_KEY,
        default_model="claude-3-5-sonnet-latest",
        static_models=_CLAUDE_MODELS,
        description="Claude 3.x family.",
    ),
    ProviderConfig(
        id="ollama",
        name="Local (Ollama)",
        wire_format=WireFormat.OLLAMA,
        base_url="http://localhost:11434",
        auth=AuthStyle.NONE,
        default_model="llama3.1",
        models_path="/api/tags",
        description="Local models via Ollama.",
    ),
    ProviderConfig(
        id="cursor",
        name="Cursor AI",
        wire_format=WireFormat.UNSUPPORTED,
        default_model="claude-3-5-sonnet-latest",
        static_models=_CLAUDE_MODELS,
        description="Listed for completeness; no public streaming API.",
    ),
)


class ProviderRegistry:
    """Immutable lookup of provider configs by id."""

    def __init__(self, providers: Tuple[ProviderConfig, ...] = BUILTIN_PROVIDERS) -> None:
        self._providers: Dict[str, ProviderConfig] = {p.id: p for p in providers}

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __iter__(self) -> Iterator[ProviderConfig]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

    def get(self, provider_id: str) -> ProviderConfig:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise ConfigurationError(f"Unknown provider '{provider_id}'") from None

    def find(self, provider_id: str) -> Optional[ProviderConfig]:
        return self._providers.get(provider_id)

    def ids(self) -> Tuple[str, ...]:
        return tuple(self._providers)

    @classmethod
    def with_base_urls(cls, overrides: Mapping[str, Optional[str]]) -> "ProviderRegistry":
        """Built-in catalog with some base URLs replaced (e.g. a remote Ollama)."""
        providers = tuple(
            replace(p, base_url=overrides[p.id].rstrip("/")) if overrides.get(p.id) else p
            for p in BUILTIN_PROVIDERS
        )
        return cls(providers)
