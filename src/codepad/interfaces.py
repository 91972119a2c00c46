"""Collaborator protocols the core depends on."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class FileStorage(Protocol):
    """Whole-file text access, keyed by path."""

    def get_file(self, path: str) -> Optional[str]:
        ...

    def update_file(self, path: str, content: str) -> None:
        ...


@runtime_checkable
class ConversationStorage(Protocol):
    """Snapshot persistence for the conversation log."""

    def load(self) -> Optional[List[Dict[str, Any]]]:
        ...

    def save(self, messages: List[Dict[str, Any]]) -> None:
        ...


@runtime_checkable
class CredentialStore(Protocol):
    def get_api_key(self, provider_id: str) -> Optional[str]:
        ...


@runtime_checkable
class ModelLister(Protocol):
    async def list_models(self, provider_id: str) -> List[Any]:
        ...
