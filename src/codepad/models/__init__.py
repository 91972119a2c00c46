from .events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ErrorKind,
    NormalizedEvent,
    UsageEvent,
)
from .messages import ChatRequest, Completion, Message, MessageRole, MessageStatus

__all__ = [
    "ContentEvent",
    "DoneEvent",
    "ErrorEvent",
    "ErrorKind",
    "NormalizedEvent",
    "UsageEvent",
    "ChatRequest",
    "Completion",
    "Message",
    "MessageRole",
    "MessageStatus",
]
