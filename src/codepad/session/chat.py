"""
ChatSession - the explicit object hosts hold for one conversation.

It wires the event bus, conversation store, credentials, model catalog, the
shared HTTP client and the turn controller together, and gives them a clear
open/close lifecycle.
"""

from __future__ import annotations

from typing import Any, List, Optional

import httpx
import structlog

from ..config import Settings
from ..events import EventBus
from ..interfaces import ConversationStorage, CredentialStore, ModelLister
from ..models.messages import Message
from ..providers.registry import ProviderRegistry
from ..services.model_catalog import ModelCatalog, ModelInfo
from ..streaming.http import build_timeout
from .controller import ChatSelection, ChatSessionController, TurnResult
from .credentials import EnvCredentialStore
from .store import ConversationStore, JsonFileStorage


logger = structlog.get_logger(__name__)


class ChatSession:
    def __init__(
        self,
        settings: Settings,
        *,
        registry: Optional[ProviderRegistry] = None,
        credentials: Optional[CredentialStore] = None,
        storage: Optional[ConversationStorage] = None,
        client: Optional[httpx.AsyncClient] = None,
        bus: Optional[EventBus] = None,
        catalog: Optional[ModelLister] = None,
    ):
        self.settings = settings
        self.bus = bus or EventBus()
        self.registry = registry or ProviderRegistry.with_base_urls(settings.providers.base_url_overrides())
        self.credentials = credentials or EnvCredentialStore(settings.providers)

        if storage is None and settings.storage.enabled:
            storage = JsonFileStorage(settings.storage.conversation_file)
        self.store = ConversationStore(storage, self.bus)

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=build_timeout(settings.http))

        selection = ChatSelection.from_config(settings.chat)
        if not selection.model:
            provider = self.registry.find(selection.provider_id)
            if provider is not None:
                selection.model = provider.default_model

        self.catalog: ModelLister = catalog or ModelCatalog(
            self.registry, self.credentials, self.client, ttl=settings.models_cache_ttl
        )
        self.controller = ChatSessionController(
            self.store,
            self.registry,
            self.credentials,
            selection=selection,
            client=self.client,
            settings=settings,
            bus=self.bus,
        )
        self._opened = False

    async def __aenter__(self) -> "ChatSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        if self._opened:
            return
        self.store.load_persisted()
        self._opened = True
        logger.info("chat session opened", messages=len(self.store), persistent=self.store.persistent)

    async def close(self) -> None:
        await self.controller.cancel()
        if self._owns_client:
            await self.client.aclose()
        self._opened = False
        logger.info("chat session closed")

    @property
    def selection(self) -> ChatSelection:
        return self.controller.selection

    def select(self, **changes: Any) -> ChatSelection:
        """Update the selection; switching provider without a model picks its default."""
        if "provider_id" in changes and changes["provider_id"] is not None:
            provider = self.registry.get(changes["provider_id"])
            if changes.get("model") is None and provider.id != self.selection.provider_id:
                changes["model"] = provider.default_model
        self.controller.selection = self.selection.update(**changes)
        return self.controller.selection

    @property
    def messages(self) -> List[Message]:
        return self.store.messages

    async def send(self, prompt: str, **overrides: Any) -> TurnResult:
        return await self.controller.send(prompt, **overrides)

    async def cancel(self) -> None:
        await self.controller.cancel()

    def clear(self) -> None:
        self.store.clear()

    async def list_models(self, provider_id: Optional[str] = None) -> List[ModelInfo]:
        return await self.catalog.list_models(provider_id or self.selection.provider_id)
