"""Configuration management for codepad."""

from pathlib import Path
from typing import Dict, List, Optional, Set

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class ProviderKeysConfig(BaseSettings):
    """Provider credentials and endpoint overrides, read from plain env names."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    openai_api_key: Optional[str] = None
    openrouter_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    together_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None

    openai_base_url: Optional[str] = None
    ollama_base_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ollama_base_url", "ollama_base")
    )

    def api_keys(self) -> Dict[str, Optional[str]]:
        return {
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
            "groq": self.groq_api_key,
            "together": self.together_api_key,
            "anthropic": self.anthropic_api_key,
        }

    def base_url_overrides(self) -> Dict[str, Optional[str]]:
        return {"openai": self.openai_base_url, "ollama": self.ollama_base_url}


class ChatConfig(BaseSettings):
    """Default selection and generation parameters for new turns."""
    model_config = SettingsConfigDict(env_prefix="CHAT_")

    provider: str = "openrouter"
    model: Optional[str] = None
    temperature: float = 0.2
    max_tokens: int = 2048
    stream: bool = True
    system_prompt: Optional[str] = None

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if v < 0:
            raise ValueError("temperature must be >= 0")
        return v

    @field_validator("max_tokens")
    @classmethod
    def validate_max_tokens(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_tokens must be positive")
        return v


class HttpConfig(BaseSettings):
    """Outbound HTTP behaviour."""
    model_config = SettingsConfigDict(env_prefix="HTTP_")

    timeout: float = 120.0
    connect_timeout: float = 10.0

    # Retries apply to single-shot requests only; streams are never retried
    max_attempts: int = 1
    backoff_base_ms: int = 500
    backoff_factor: float = 2.0
    backoff_jitter: bool = True
    retry_status_codes: Set[int] = Field(default_factory=lambda: {429})
    retry_include_5xx: bool = True


class StorageConfig(BaseSettings):
    """Conversation persistence."""
    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    enabled: bool = True
    conversation_file: Path = Path("./data/conversation.json")


class ServerConfig(BaseSettings):
    """Server configuration."""
    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = "127.0.0.1"
    port: int = 8000
    reload: bool = False
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = "INFO"
    format: str = "text"  # json or text
    file: Optional[str] = None
    max_size: str = "10MB"
    backup_count: int = 3

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of {LOG_LEVELS}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("json", "text"):
            raise ValueError("Log format must be 'json' or 'text'")
        return v


class Settings(BaseSettings):
    """Main settings container."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: str = "development"
    debug: bool = False

    providers: ProviderKeysConfig = Field(default_factory=ProviderKeysConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Seconds a provider's model list stays cached
    models_cache_ttl: float = 3600.0

    def secret_values(self) -> List[str]:
        return [v for v in self.providers.api_keys().values() if v]


# Global settings instance for hosts (server, CLI); core objects take Settings explicitly
settings = Settings()
