from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class CodepadError(Exception):
    """Base for all codepad errors."""


class ConfigurationError(CodepadError):
    """Unknown provider, missing credential, missing model or bad parameters.

    Raised before any network call is made and never retried.
    """


@dataclass
class ProviderError(CodepadError):
    message: str
    status: Optional[int] = None
    body: Optional[str] = None

    def __str__(self) -> str:
        base = self.message
        if self.status is not None:
            base += f" (status {self.status})"
        return base


class ConversationError(CodepadError):
    """A conversation store invariant would be violated."""


class SessionBusyError(CodepadError):
    """A turn is already in flight for this session."""

    def __init__(self, message: str = "A response is already in progress") -> None:
        super().__init__(message)
