"""Codepad - streaming chat over multiple LLM providers."""

__version__ = "0.1.0"

from .errors import (
    CodepadError,
    ConfigurationError,
    ConversationError,
    ProviderError,
    SessionBusyError,
)
from .models import (
    ChatRequest,
    Completion,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ErrorKind,
    Message,
    MessageRole,
    MessageStatus,
    UsageEvent,
)
from .providers import ProviderConfig, ProviderRegistry, WireFormat
from .streaming.engine import LineBuffer, StreamingEngine
from .session import (
    ChatSelection,
    ChatSession,
    ChatSessionController,
    ConversationStore,
    TurnResult,
    TurnState,
)

__all__ = [
    "__version__",
    "CodepadError",
    "ConfigurationError",
    "ConversationError",
    "ProviderError",
    "SessionBusyError",
    "ChatRequest",
    "Completion",
    "ContentEvent",
    "DoneEvent",
    "ErrorEvent",
    "ErrorKind",
    "Message",
    "MessageRole",
    "MessageStatus",
    "UsageEvent",
    "ProviderConfig",
    "ProviderRegistry",
    "WireFormat",
    "LineBuffer",
    "StreamingEngine",
    "ChatSelection",
    "ChatSession",
    "ChatSessionController",
    "ConversationStore",
    "TurnResult",
    "TurnState",
]
