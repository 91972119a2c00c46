"""
Normalized stream events.

Every provider wire format is translated into this small closed set of
events. A well-formed stream is any number of content and usage events
followed by exactly one terminal event (done or error).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Union


class ErrorKind(str, Enum):
    """Where an error event originated."""

    CONFIGURATION = "configuration"
    TRANSPORT = "transport"


@dataclass(frozen=True)
class ContentEvent:
    """An incremental fragment of assistant text."""

    text: str

    type: ClassVar[str] = "content"
    is_terminal: ClassVar[bool] = False

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(frozen=True)
class UsageEvent:
    """Token accounting; any field may be missing."""

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    type: ClassVar[str] = "usage"
    is_terminal: ClassVar[bool] = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class DoneEvent:
    """The stream completed normally."""

    finish_reason: Optional[str] = None

    type: ClassVar[str] = "done"
    is_terminal: ClassVar[bool] = True

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "finish_reason": self.finish_reason}


@dataclass(frozen=True)
class ErrorEvent:
    """The stream failed."""

    message: str
    status: Optional[int] = None
    kind: ErrorKind = ErrorKind.TRANSPORT

    type: ClassVar[str] = "error"
    is_terminal: ClassVar[bool] = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "status": self.status,
            "kind": self.kind.value,
        }


NormalizedEvent = Union[ContentEvent, UsageEvent, DoneEvent, ErrorEvent]


def usage_from_counts(
    prompt_tokens: Any,
    completion_tokens: Any,
    total_tokens: Any = None,
) -> UsageEvent:
    """Build a usage event from loosely typed provider counters."""
    prompt = _as_int(prompt_tokens)
    completion = _as_int(completion_tokens)
    total = _as_int(total_tokens)
    # A total is only derived when both sides are known
    if total is None and prompt is not None and completion is not None:
        total = prompt + completion
    return UsageEvent(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return None
