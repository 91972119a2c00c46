from .registry import (
    BUILTIN_PROVIDERS,
    AuthStyle,
    ProviderConfig,
    ProviderRegistry,
    WireFormat,
)

__all__ = [
    "BUILTIN_PROVIDERS",
    "AuthStyle",
    "ProviderConfig",
    "ProviderRegistry",
    "WireFormat",
]
