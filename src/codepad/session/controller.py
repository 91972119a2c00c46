"""
Chat session controller - drives one turn at a time.

A turn validates the current selection, appends the user message and an empty
assistant placeholder, then applies normalized events from the streaming
engine to the conversation store as they arrive. Provider and transport
failures never escape ``send()``: they end the turn as ``failed`` and are
published on the error channel.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
import structlog

from ..config import ChatConfig, Settings
from ..errors import ConfigurationError, ProviderError, SessionBusyError
from ..events import EV_CHAT_ERROR, EV_STREAM_EVENT, EV_TURN_STATE, EventBus
from ..interfaces import CredentialStore
from ..models.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ErrorKind,
    NormalizedEvent,
    UsageEvent,
)
from ..models.messages import ChatRequest, Message, MessageStatus
from ..providers.registry import ProviderRegistry
from ..streaming.engine import StreamingEngine
from .store import ConversationStore


logger = structlog.get_logger(__name__)


class TurnState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    STREAMING = "streaming"
    NON_STREAMING = "non_streaming"
    APPLYING = "applying"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class ChatSelection:
    """Provider, model and generation parameters used for the next turn."""

    provider_id: str
    model: Optional[str] = None
    temperature: float = 0.2
    max_tokens: int = 2048
    stream: bool = True
    system_prompt: Optional[str] = None

    @classmethod
    def from_config(cls, cfg: ChatConfig) -> "ChatSelection":
        return cls(
            provider_id=cfg.provider,
            model=cfg.model,
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
            stream=cfg.stream,
            system_prompt=cfg.system_prompt,
        )

    def update(self, **changes: Any) -> "ChatSelection":
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ConfigurationError(f"Unknown selection field(s): {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TurnResult:
    state: TurnState
    user_message_id: Optional[str] = None
    assistant_message_id: Optional[str] = None
    content: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None
    status: Optional[int] = None
    usage: Optional[Dict[str, Optional[int]]] = None
    finish_reason: Optional[str] = None
    cancelled: bool = False
    events: List[NormalizedEvent] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == TurnState.COMPLETE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "user_message_id": self.user_message_id,
            "assistant_message_id": self.assistant_message_id,
            "content": self.content,
            "error": self.error,
            "error_kind": self.error_kind,
            "status": self.status,
            "usage": self.usage,
            "finish_reason": self.finish_reason,
            "cancelled": self.cancelled,
            "events": [e.to_dict() for e in self.events],
        }


def _merge_usage(current: Optional[Dict[str, Optional[int]]], event: UsageEvent) -> Dict[str, Optional[int]]:
    """Fold a usage event into the running totals; known counts override."""
    current = current or {}
    prompt = event.prompt_tokens if event.prompt_tokens is not None else current.get("prompt_tokens")
    completion = event.completion_tokens if event.completion_tokens is not None else current.get("completion_tokens")
    if prompt is not None and completion is not None:
        total = prompt + completion
    else:
        total = event.total_tokens if event.total_tokens is not None else current.get("total_tokens")
    return {"prompt_tokens": prompt, "completion_tokens": completion, "total_tokens": total}


class ChatSessionController:
    def __init__(
        self,
        store: ConversationStore,
        registry: ProviderRegistry,
        credentials: CredentialStore,
        *,
        selection: ChatSelection,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
        bus: Optional[EventBus] = None,
    ):
        self.store = store
        self.registry = registry
        self.credentials = credentials
        self.selection = selection
        self.client = client
        self.settings = settings or Settings()
        self.bus = bus or store.bus

        self._state = TurnState.IDLE
        self._busy = False
        self._engine: Optional[StreamingEngine] = None
        self._last_result: Optional[TurnResult] = None

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def last_result(self) -> Optional[TurnResult]:
        return self._last_result

    def _set_state(self, state: TurnState) -> None:
        self._state = state
        self.bus.publish(EV_TURN_STATE, {"state": state.value})

    async def send(self, prompt: str, **overrides: Any) -> TurnResult:
        """Run one turn. Raises only ``SessionBusyError``; host cancellation propagates."""
        if self._busy:
            raise SessionBusyError()
        self._busy = True
        try:
            result = await self._run_turn(prompt, overrides)
        finally:
            self._busy = False
            self._engine = None
        self._last_result = result
        return result

    async def cancel(self) -> None:
        engine = self._engine
        if engine is not None:
            await engine.cancel()

    async def _run_turn(self, prompt: str, overrides: Dict[str, Any]) -> TurnResult:
        self._set_state(TurnState.VALIDATING)
        text = (prompt or "").strip()
        if not text:
            return self._reject(ConfigurationError("Prompt is empty"))

        try:
            selection = self.selection.update(**overrides)
            request = self._build_request(selection, text)
        except ConfigurationError as e:
            user = self.store.append(Message.user(text))
            return self._reject(e, user_message_id=user.id)

        log = logger.bind(provider=request.provider_id, model=request.model)
        user = self.store.append(Message.user(text))
        assistant = self.store.append(Message.assistant_placeholder())
        engine = StreamingEngine(request, registry=self.registry, client=self.client, settings=self.settings)
        self._engine = engine
        log.info("turn started", stream=request.stream, message_id=assistant.id)

        try:
            if request.stream:
                result = await self._stream(engine, user.id, assistant.id)
            else:
                result = await self._complete(engine, user.id, assistant.id)
        except asyncio.CancelledError:
            # Host task cancelled or timed out: never leave the placeholder streaming
            placeholder = self.store.get(assistant.id)
            if placeholder is not None and placeholder.status == MessageStatus.STREAMING:
                self.store.finalize(assistant.id, MessageStatus.COMPLETE)
            if self._state != TurnState.COMPLETE:
                self._set_state(TurnState.COMPLETE)
            log.info("turn interrupted by host", message_id=assistant.id)
            raise
        log.info(
            "turn finished",
            state=result.state.value,
            chars=len(result.content),
            cancelled=result.cancelled,
            finish_reason=result.finish_reason,
        )
        return result

    def _build_request(self, selection: ChatSelection, prompt: str) -> ChatRequest:
        provider = self.registry.get(selection.provider_id)
        api_key = self.credentials.get_api_key(provider.id)
        if provider.requires_api_key and not api_key:
            raise ConfigurationError(f"API key missing for provider '{provider.id}'")
        if not selection.model:
            raise ConfigurationError("No model selected")
        return ChatRequest(
            provider_id=provider.id,
            model=selection.model,
            prompt=prompt,
            api_key=api_key,
            temperature=selection.temperature,
            max_tokens=selection.max_tokens,
            stream=selection.stream,
            system_prompt=selection.system_prompt,
        )

    def _reject(self, error: ConfigurationError, user_message_id: Optional[str] = None) -> TurnResult:
        logger.info("turn rejected", reason=str(error))
        self._set_state(TurnState.FAILED)
        self._publish_error(str(error), ErrorKind.CONFIGURATION)
        return TurnResult(
            state=TurnState.FAILED,
            user_message_id=user_message_id,
            error=str(error),
            error_kind=ErrorKind.CONFIGURATION.value,
        )

    def _publish_error(self, message: str, kind: ErrorKind, status: Optional[int] = None) -> None:
        payload: Dict[str, Any] = {"message": message, "kind": kind.value}
        if status is not None:
            payload["status"] = status
        self.bus.publish(EV_CHAT_ERROR, payload)

    def _relay(self, message_id: str, event: NormalizedEvent) -> None:
        self.bus.publish(EV_STREAM_EVENT, {"message_id": message_id, "event": event.to_dict()})

    async def _stream(self, engine: StreamingEngine, user_id: str, assistant_id: str) -> TurnResult:
        self._set_state(TurnState.STREAMING)
        result = TurnResult(state=TurnState.STREAMING, user_message_id=user_id, assistant_message_id=assistant_id)
        failure: Optional[ErrorEvent] = None

        try:
            async for event in engine.stream():
                result.events.append(event)
                self._relay(assistant_id, event)
                if isinstance(event, ContentEvent):
                    if event.text:
                        result.content += event.text
                        self.store.update_content(assistant_id, result.content)
                elif isinstance(event, UsageEvent):
                    result.usage = _merge_usage(result.usage, event)
                elif isinstance(event, DoneEvent):
                    result.finish_reason = event.finish_reason
                elif isinstance(event, ErrorEvent):
                    failure = event
        except asyncio.CancelledError:
            # Host task cancelled: keep what arrived
            self.store.finalize(assistant_id, MessageStatus.COMPLETE, usage=result.usage)
            self._set_state(TurnState.COMPLETE)
            raise

        self._set_state(TurnState.APPLYING)
        result.cancelled = engine.cancelled
        if failure is not None and not result.cancelled:
            self.store.finalize(
                assistant_id,
                MessageStatus.FAILED,
                error=failure.message,
                usage=result.usage,
            )
            self._publish_error(failure.message, failure.kind, failure.status)
            result.error = failure.message
            result.error_kind = failure.kind.value
            result.status = failure.status
            result.state = TurnState.FAILED
        else:
            self.store.finalize(
                assistant_id,
                MessageStatus.COMPLETE,
                finish_reason=result.finish_reason,
                usage=result.usage,
            )
            result.state = TurnState.COMPLETE
        self._set_state(result.state)
        return result

    async def _complete(self, engine: StreamingEngine, user_id: str, assistant_id: str) -> TurnResult:
        self._set_state(TurnState.NON_STREAMING)
        result = TurnResult(state=TurnState.NON_STREAMING, user_message_id=user_id, assistant_message_id=assistant_id)

        try:
            completion = await engine.complete()
        except (ConfigurationError, ProviderError) as e:
            kind = ErrorKind.CONFIGURATION if isinstance(e, ConfigurationError) else ErrorKind.TRANSPORT
            status = getattr(e, "status", None)
            event = ErrorEvent(str(e), status=status, kind=kind)
            result.events.append(event)
            self._relay(assistant_id, event)
            self._set_state(TurnState.APPLYING)
            self.store.finalize(assistant_id, MessageStatus.FAILED, error=str(e))
            self._publish_error(str(e), kind, status)
            result.error = str(e)
            result.error_kind = kind.value
            result.status = status
            result.state = TurnState.FAILED
            self._set_state(result.state)
            return result

        self._set_state(TurnState.APPLYING)
        result.cancelled = engine.cancelled
        if not result.cancelled:
            result.content = completion.text
            result.finish_reason = completion.finish_reason
            result.usage = completion.usage
            result.events.append(ContentEvent(completion.text))
            if completion.usage:
                result.events.append(UsageEvent(**completion.usage))
            result.events.append(DoneEvent(completion.finish_reason))
            for event in result.events:
                self._relay(assistant_id, event)
            if completion.text:
                self.store.update_content(assistant_id, completion.text)

        self.store.finalize(
            assistant_id,
            MessageStatus.COMPLETE,
            finish_reason=result.finish_reason,
            usage=result.usage,
        )
        result.state = TurnState.COMPLETE
        self._set_state(result.state)
        return result
