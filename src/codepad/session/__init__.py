from .chat import ChatSession
from .controller import ChatSelection, ChatSessionController, TurnResult, TurnState
from .credentials import EnvCredentialStore, InMemoryCredentialStore
from .store import ConversationStore, JsonFileStorage, LocalFileStorage, MemoryStorage

__all__ = [
    "ChatSession",
    "ChatSelection",
    "ChatSessionController",
    "TurnResult",
    "TurnState",
    "EnvCredentialStore",
    "InMemoryCredentialStore",
    "ConversationStore",
    "JsonFileStorage",
    "LocalFileStorage",
    "MemoryStorage",
]
