from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List

import structlog


logger = structlog.get_logger(__name__)

Callback = Callable[[Dict[str, Any]], None]


class EventBus:
    def __init__(self) -> None:
        self._subs: DefaultDict[str, List[Callback]] = defaultdict(list)

    def subscribe(self, event: str, cb: Callback) -> None:
        self._subs[event].append(cb)

    def unsubscribe(self, event: str, cb: Callback) -> None:
        try:
            self._subs[event].remove(cb)
        except ValueError:
            pass

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        for cb in list(self._subs.get(event, [])):
            try:
                cb(payload)
            except Exception:
                # A broken subscriber must not stop delivery to the others
                logger.exception("event handler failed", event=event)


# Conversation store events
EV_MESSAGE_APPENDED = "message.appended"        # { message: dict }
EV_MESSAGE_UPDATED = "message.updated"          # { id: str, content: str }
EV_MESSAGE_FINALIZED = "message.finalized"      # { message: dict }
EV_CONVERSATION_CLEARED = "conversation.cleared"  # {}
EV_CONVERSATION_LOADED = "conversation.loaded"    # { size: int }

# Turn events
EV_TURN_STATE = "turn.state"                    # { state: str }
EV_STREAM_EVENT = "stream.event"                # { message_id: str, event: dict }

# User-visible error channel
EV_CHAT_ERROR = "chat.error"                    # { message: str, kind: str, status?: int }
