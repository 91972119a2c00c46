"""
Chunk parsers: one provider line in, zero or more normalized events out.

Parsers are pure and stateless. They never raise: malformed JSON and
keep-alive lines are skipped, and anything unexpected is reported as an
``ErrorEvent`` instead of an exception. Within the events produced for one
line, a terminal event always comes last.
"""

import json
from typing import Any, Callable, Dict, List, Optional

from ..models.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    NormalizedEvent,
    usage_from_counts,
)


ChunkParser = Callable[[str], List[NormalizedEvent]]

DONE_SENTINEL = "[DONE]"

_SSE_IGNORED_FIELDS = ("event:", "id:", "retry:")


def _sse_payload(line: str) -> Optional[str]:
    """Strip SSE framing; None for blank, comment and non-data field lines."""
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if line.startswith("data:"):
        return line[len("data:"):].strip()
    if line.startswith(_SSE_IGNORED_FIELDS):
        return None
    # Some gateways drop the envelope and send bare JSON
    return line


def _loads(payload: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error.get("type") or error)
    return str(error)


def parse_openai_line(line: str) -> List[NormalizedEvent]:
    """OpenAI-compatible SSE (OpenAI, OpenRouter, Groq, Together)."""
    try:
        payload = _sse_payload(line)
        if payload is None:
            return []
        if payload == DONE_SENTINEL:
            return [DoneEvent()]

        data = _loads(payload)
        if data is None:
            return []
        if data.get("error"):
            return [ErrorEvent(_error_message(data["error"]))]

        events: List[NormalizedEvent] = []
        choices = data.get("choices") or []
        choice = choices[0] if choices and isinstance(choices[0], dict) else {}

        delta = choice.get("delta")
        if isinstance(delta, dict):
            content = delta.get("content")
            if isinstance(content, str) and content:
                events.append(ContentEvent(content))

        usage = data.get("usage")
        if isinstance(usage, dict):
            events.append(
                usage_from_counts(
                    usage.get("prompt_tokens"),
                    usage.get("completion_tokens"),
                    usage.get("total_tokens"),
                )
            )

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            events.append(DoneEvent(str(finish_reason)))
        return events
    except Exception as e:
        return [ErrorEvent(f"OpenAI parse error: {e}")]


def parse_anthropic_line(line: str) -> List[NormalizedEvent]:
    """Anthropic SSE; accepts the legacy completion shape and the Messages API deltas."""
    try:
        payload = _sse_payload(line)
        if payload is None:
            return []
        if payload == DONE_SENTINEL:
            return [DoneEvent()]

        data = _loads(payload)
        if data is None:
            return []

        kind = data.get("type")
        events: List[NormalizedEvent] = []

        if kind == "completion":
            text = data.get("completion") or data.get("text")
            if isinstance(text, str) and text:
                events.append(ContentEvent(text))
            if data.get("stop_reason"):
                events.append(DoneEvent(str(data["stop_reason"])))

        elif kind == "content_block_delta":
            delta = data.get("delta") or {}
            text = delta.get("text") if isinstance(delta, dict) else None
            if isinstance(text, str) and text:
                events.append(ContentEvent(text))

        elif kind == "message_start":
            usage = (data.get("message") or {}).get("usage")
            if isinstance(usage, dict):
                events.append(usage_from_counts(usage.get("input_tokens"), usage.get("output_tokens")))

        elif kind == "message_delta":
            usage = data.get("usage")
            if isinstance(usage, dict):
                events.append(usage_from_counts(usage.get("input_tokens"), usage.get("output_tokens")))
            stop_reason = (data.get("delta") or {}).get("stop_reason")
            if stop_reason:
                events.append(DoneEvent(str(stop_reason)))

        elif kind == "message_stop":
            events.append(DoneEvent())

        elif kind == "error":
            events.append(ErrorEvent(_error_message(data.get("error"))))

        return events
    except Exception as e:
        return [ErrorEvent(f"Anthropic parse error: {e}")]


def parse_ollama_line(line: str) -> List[NormalizedEvent]:
    """Ollama newline-delimited JSON, from either /api/generate or /api/chat."""
    try:
        line = line.strip()
        if not line:
            return []
        data = _loads(line)
        if data is None:
            return []
        if data.get("error"):
            return [ErrorEvent(_error_message(data["error"]))]

        events: List[NormalizedEvent] = []
        text = data.get("response")
        if text is None:
            message = data.get("message")
            text = message.get("content") if isinstance(message, dict) else None
        if isinstance(text, str) and text:
            events.append(ContentEvent(text))

        if data.get("prompt_eval_count") is not None or data.get("eval_count") is not None:
            events.append(usage_from_counts(data.get("prompt_eval_count"), data.get("eval_count")))

        if data.get("done") is True:
            events.append(DoneEvent(str(data.get("done_reason") or "stop")))
        return events
    except Exception as e:
        return [ErrorEvent(f"Ollama parse error: {e}")]
