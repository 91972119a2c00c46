"""
Conversation store - the ordered, append-only message log of one session.

Every mutation writes a full snapshot through the configured storage backend
and publishes a bus event so UIs can re-render. A failing backend is logged
once and the store carries on in memory.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from ..errors import ConversationError
from ..events import (
    EV_CONVERSATION_CLEARED,
    EV_CONVERSATION_LOADED,
    EV_MESSAGE_APPENDED,
    EV_MESSAGE_FINALIZED,
    EV_MESSAGE_UPDATED,
    EventBus,
)
from ..interfaces import ConversationStorage, FileStorage
from ..models.messages import Message, MessageStatus


logger = structlog.get_logger(__name__)

INTERRUPTED_ERROR = "Response interrupted"
SNAPSHOT_VERSION = 1


class LocalFileStorage:
    """FileStorage over the local filesystem."""

    def get_file(self, path: str) -> Optional[str]:
        p = Path(path)
        if not p.exists():
            return None
        return p.read_text(encoding="utf-8")

    def update_file(self, path: str, content: str) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(p.suffix + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(p)


class JsonFileStorage:
    """Conversation snapshot kept as one JSON document with a ``messages`` key."""

    def __init__(self, path: Path | str, files: Optional[FileStorage] = None) -> None:
        self.path = Path(path)
        self.files = files or LocalFileStorage()

    def load(self) -> Optional[List[Dict[str, Any]]]:
        text = self.files.get_file(str(self.path))
        if text is None:
            return None
        data = json.loads(text)
        messages = data.get("messages") if isinstance(data, dict) else None
        if not isinstance(messages, list):
            raise ValueError(f"{self.path}: snapshot has no 'messages' list")
        return messages

    def save(self, messages: List[Dict[str, Any]]) -> None:
        data = {"version": SNAPSHOT_VERSION, "messages": messages}
        self.files.update_file(str(self.path), json.dumps(data, indent=2, ensure_ascii=False))


class MemoryStorage:
    def __init__(self, messages: Optional[List[Dict[str, Any]]] = None) -> None:
        self.snapshot: Optional[List[Dict[str, Any]]] = messages
        self.saves = 0

    def load(self) -> Optional[List[Dict[str, Any]]]:
        return list(self.snapshot) if self.snapshot is not None else None

    def save(self, messages: List[Dict[str, Any]]) -> None:
        self.snapshot = list(messages)
        self.saves += 1


class ConversationStore:
    def __init__(self, storage: Optional[ConversationStorage] = None, bus: Optional[EventBus] = None) -> None:
        self._storage = storage
        self.bus = bus or EventBus()
        self._messages: Dict[str, Message] = {}
        self._persistent = storage is not None

    @property
    def persistent(self) -> bool:
        return self._persistent

    @property
    def messages(self) -> List[Message]:
        return [m.model_copy() for m in self._messages.values()]

    def __len__(self) -> int:
        return len(self._messages)

    def get(self, message_id: str) -> Optional[Message]:
        msg = self._messages.get(message_id)
        return msg.model_copy() if msg is not None else None

    def _require(self, message_id: str) -> Message:
        try:
            return self._messages[message_id]
        except KeyError:
            raise ConversationError(f"Unknown message '{message_id}'") from None

    # Mutations

    def append(self, message: Message) -> Message:
        if message.id in self._messages:
            raise ConversationError(f"Message '{message.id}' already exists")
        if message.status == MessageStatus.STREAMING and any(
            m.status == MessageStatus.STREAMING for m in self._messages.values()
        ):
            raise ConversationError("Another response is still streaming")
        stored = message.model_copy()
        self._messages[stored.id] = stored
        self._persist()
        self.bus.publish(EV_MESSAGE_APPENDED, {"message": stored.to_dict()})
        return stored.model_copy()

    def update_content(self, message_id: str, content: str) -> None:
        msg = self._require(message_id)
        if msg.frozen:
            raise ConversationError(f"Message '{message_id}' is {msg.status.value} and cannot change")
        if content == msg.content:
            return
        if not content.startswith(msg.content):
            raise ConversationError(f"Message '{message_id}' content is append-only")
        msg.content = content
        self._persist()
        self.bus.publish(EV_MESSAGE_UPDATED, {"id": message_id, "content": content})

    def finalize(
        self,
        message_id: str,
        status: MessageStatus,
        *,
        error: Optional[str] = None,
        finish_reason: Optional[str] = None,
        usage: Optional[Dict[str, Optional[int]]] = None,
    ) -> Message:
        if status == MessageStatus.STREAMING:
            raise ConversationError("Cannot finalize a message as streaming")
        msg = self._require(message_id)
        if msg.frozen:
            if msg.status == status:
                return msg.model_copy()
            raise ConversationError(f"Message '{message_id}' is already {msg.status.value}")
        msg.status = status
        msg.error = error
        msg.finish_reason = finish_reason
        msg.usage = usage
        self._persist()
        self.bus.publish(EV_MESSAGE_FINALIZED, {"message": msg.to_dict()})
        return msg.model_copy()

    def clear(self) -> None:
        self._messages.clear()
        self._persist()
        self.bus.publish(EV_CONVERSATION_CLEARED, {})

    def load_persisted(self) -> int:
        """Replace the log with the persisted snapshot; returns the message count."""
        self._messages.clear()
        if self._storage is None:
            return 0
        try:
            raw = self._storage.load() or []
            loaded = [Message.model_validate(item) for item in raw]
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("could not load conversation; starting empty", error=str(e))
            loaded = []

        for msg in loaded:
            if msg.status == MessageStatus.STREAMING:
                msg.status = MessageStatus.FAILED
                msg.error = INTERRUPTED_ERROR
            self._messages[msg.id] = msg

        logger.info("conversation loaded", size=len(self._messages))
        self.bus.publish(EV_CONVERSATION_LOADED, {"size": len(self._messages)})
        return len(self._messages)

    def _persist(self) -> None:
        if not self._persistent or self._storage is None:
            return
        try:
            self._storage.save([m.to_dict() for m in self._messages.values()])
        except Exception as e:
            logger.warning("conversation storage failed; keeping messages in memory only", error=str(e))
            self._persistent = False
