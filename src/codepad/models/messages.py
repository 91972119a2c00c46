"""Conversation messages and per-turn chat requests."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..errors import ConfigurationError


class MessageRole(str, Enum):
    """Message roles in the conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class MessageStatus(str, Enum):
    """Lifecycle of a message's content."""

    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """One entry of the conversation log.

    Content may only grow while the message is streaming; once it is complete
    or failed the message is frozen.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: MessageRole
    content: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    status: MessageStatus = MessageStatus.COMPLETE

    error: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Optional[int]]] = None

    @property
    def frozen(self) -> bool:
        return self.status != MessageStatus.STREAMING

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant_placeholder(cls) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content="", status=MessageStatus.STREAMING)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class ChatRequest:
    """Everything needed to run one provider request."""

    provider_id: str
    model: str
    prompt: str
    api_key: Optional[str] = field(default=None, repr=False)
    temperature: float = 0.2
    max_tokens: int = 2048
    stream: bool = True
    system_prompt: Optional[str] = None

    def __post_init__(self) -> None:
        if self.temperature < 0:
            raise ConfigurationError(f"temperature must be >= 0, got {self.temperature}")
        if self.max_tokens <= 0:
            raise ConfigurationError(f"max_tokens must be positive, got {self.max_tokens}")


@dataclass(frozen=True)
class Completion:
    """Result of a non-streaming request."""

    text: str
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Optional[int]]] = None
