"""FastAPI routes for the chat API."""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..errors import SessionBusyError
from ..events import EV_STREAM_EVENT
from ..session.chat import ChatSession
from ..session.controller import TurnResult


logger = structlog.get_logger(__name__)


# Request/Response models
class ChatBody(BaseModel):
    prompt: str
    provider_id: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    stream: Optional[bool] = None
    system_prompt: Optional[str] = None


class SelectionUpdate(BaseModel):
    provider_id: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    stream: Optional[bool] = None
    system_prompt: Optional[str] = None


class StateResponse(BaseModel):
    state: str
    busy: bool
    messages: int
    persistent: bool


def get_session(request: Request) -> ChatSession:
    """The chat session attached to the app by the server lifespan."""
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return session


router = APIRouter(prefix="/api", tags=["Chat API"])


@router.get("/providers")
async def list_providers(session: ChatSession = Depends(get_session)) -> List[Dict[str, Any]]:
    out = []
    for provider in session.registry:
        entry = provider.to_dict()
        entry["configured"] = not provider.requires_api_key or bool(
            session.credentials.get_api_key(provider.id)
        )
        out.append(entry)
    return out


@router.get("/providers/{provider_id}/models")
async def list_models(provider_id: str, session: ChatSession = Depends(get_session)):
    if provider_id not in session.registry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown provider '{provider_id}'")
    models = await session.list_models(provider_id)
    return {"provider_id": provider_id, "models": [m.to_dict() for m in models]}


@router.get("/chat/messages")
async def get_messages(session: ChatSession = Depends(get_session)):
    return {"messages": [m.to_dict() for m in session.messages]}


@router.delete("/chat/messages")
async def clear_messages(session: ChatSession = Depends(get_session)):
    if session.controller.busy:
        raise SessionBusyError()
    session.clear()
    return {"cleared": True}


@router.get("/chat/selection")
async def get_selection(session: ChatSession = Depends(get_session)):
    return session.selection.to_dict()


@router.put("/chat/selection")
async def update_selection(body: SelectionUpdate, session: ChatSession = Depends(get_session)):
    # ConfigurationError (unknown provider) is mapped to 400 by the app
    selection = session.select(**body.model_dump(exclude_unset=True))
    return selection.to_dict()


@router.get("/chat/state", response_model=StateResponse)
async def get_state(session: ChatSession = Depends(get_session)):
    return StateResponse(
        state=session.controller.state.value,
        busy=session.controller.busy,
        messages=len(session.store),
        persistent=session.store.persistent,
    )


@router.post("/chat/cancel")
async def cancel_chat(session: ChatSession = Depends(get_session)):
    busy = session.controller.busy
    await session.cancel()
    return {"cancelled": busy, "timestamp": datetime.now(timezone.utc).isoformat()}


def _frame(payload: Dict[str, Any], event: Optional[str] = None) -> str:
    data = json.dumps(payload, ensure_ascii=False)
    if event:
        return f"event: {event}\ndata: {data}\n\n"
    return f"data: {data}\n\n"


@router.post("/chat")
async def chat(body: ChatBody, session: ChatSession = Depends(get_session)):
    """Run one turn; relays normalized events over SSE when streaming."""
    overrides = body.model_dump(exclude={"prompt"}, exclude_none=True)
    if session.controller.busy:
        raise SessionBusyError()

    stream = body.stream if body.stream is not None else session.selection.stream
    if not stream:
        result = await session.send(body.prompt, **overrides)
        return result.to_dict()

    queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()

    def on_event(payload: Dict[str, Any]) -> None:
        queue.put_nowait(payload["event"])

    session.bus.subscribe(EV_STREAM_EVENT, on_event)
    turn = asyncio.create_task(session.send(body.prompt, **overrides))
    turn.add_done_callback(lambda _t: queue.put_nowait(None))

    # Let the turn claim the session before answering
    await asyncio.sleep(0)
    if turn.done() and not turn.cancelled() and isinstance(turn.exception(), SessionBusyError):
        session.bus.unsubscribe(EV_STREAM_EVENT, on_event)
        raise SessionBusyError()

    async def relay() -> AsyncIterator[str]:
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield _frame(item)
            if turn.cancelled():
                return
            result: TurnResult = turn.result()
            yield _frame(result.to_dict(), event="result")
        finally:
            session.bus.unsubscribe(EV_STREAM_EVENT, on_event)
            if not turn.done():
                logger.info("client went away; cancelling turn")
                await session.cancel()
                await asyncio.gather(turn, return_exceptions=True)

    return StreamingResponse(
        relay(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
