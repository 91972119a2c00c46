"""
Per wire format protocol details.

Every supported ``WireFormat`` carries exactly one request builder, one chunk
parser, one full-response extractor and one model-list reader. The streaming
and non-streaming paths share the builder, so both send the same parameters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import ConfigurationError
from ..models.messages import ChatRequest, Completion
from ..streaming.parsers import (
    ChunkParser,
    parse_anthropic_line,
    parse_ollama_line,
    parse_openai_line,
)
from .registry import AuthStyle, ProviderConfig, WireFormat


ANTHROPIC_VERSION = "2023-06-01"


@dataclass(frozen=True)
class HttpRequest:
    url: str
    headers: Dict[str, str]
    body: Dict[str, Any] = field(default_factory=dict)
    method: str = "POST"


ModelList = List[Tuple[str, str]]


@dataclass(frozen=True)
class WireProtocol:
    build_request: Callable[[ProviderConfig, ChatRequest, bool], HttpRequest]
    parse_line: ChunkParser
    extract_completion: Callable[[Dict[str, Any]], Completion]
    read_models: Callable[[Dict[str, Any]], ModelList]


def _join_url(base: str, path: str) -> str:
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def auth_headers(provider: ProviderConfig, api_key: Optional[str]) -> Dict[str, str]:
    if provider.auth is AuthStyle.BEARER and api_key:
        return {"Authorization": f"Bearer {api_key}"}
    if provider.auth is AuthStyle.X_API_KEY and api_key:
        return {"x-api-key": api_key}
    return {}


def _headers(provider: ProviderConfig, req: ChatRequest, stream: bool) -> Dict[str, str]:
    headers = {"Content-Type": "application/json", **auth_headers(provider, req.api_key)}
    if provider.auth is AuthStyle.X_API_KEY:
        headers["anthropic-version"] = ANTHROPIC_VERSION
    if stream and provider.wire_format is not WireFormat.OLLAMA:
        headers["Accept"] = "text/event-stream"
    return headers


# -- OpenAI-compatible --------------------------------------------------------

def _build_openai(provider: ProviderConfig, req: ChatRequest, stream: bool) -> HttpRequest:
    messages = []
    if req.system_prompt:
        messages.append({"role": "system", "content": req.system_prompt})
    messages.append({"role": "user", "content": req.prompt})
    body = {
        "model": req.model,
        "messages": messages,
        "temperature": req.temperature,
        "max_tokens": req.max_tokens,
        "stream": stream,
    }
    return HttpRequest(
        url=_join_url(provider.base_url, "chat/completions"),
        headers=_headers(provider, req, stream),
        body=body,
    )


def _usage_dict(prompt: Any, completion: Any, total: Any = None) -> Optional[Dict[str, Optional[int]]]:
    if prompt is None and completion is None and total is None:
        return None
    if total is None and prompt is not None and completion is not None:
        total = prompt + completion
    return {"prompt_tokens": prompt, "completion_tokens": completion, "total_tokens": total}


def _extract_openai(data: Dict[str, Any]) -> Completion:
    choices = data.get("choices") or []
    choice = choices[0] if choices else {}
    message = choice.get("message") or {}
    usage = data.get("usage") or {}
    return Completion(
        text=message.get("content") or "",
        finish_reason=choice.get("finish_reason"),
        usage=_usage_dict(usage.get("prompt_tokens"), usage.get("completion_tokens"), usage.get("total_tokens")),
    )


def _read_openai_models(data: Dict[str, Any]) -> ModelList:
    out: ModelList = []
    for item in data.get("data") or []:
        model_id = item.get("id") if isinstance(item, dict) else None
        if model_id:
            out.append((str(model_id), str(item.get("name") or model_id)))
    return out


# -- Anthropic ----------------------------------------------------------------

def _build_anthropic(provider: ProviderConfig, req: ChatRequest, stream: bool) -> HttpRequest:
    body: Dict[str, Any] = {
        "model": req.model,
        "messages": [{"role": "user", "content": req.prompt}],
        "max_tokens": req.max_tokens,
        "temperature": req.temperature,
        "stream": stream,
    }
    if req.system_prompt:
        body["system"] = req.system_prompt
    return HttpRequest(
        url=_join_url(provider.base_url, "messages"),
        headers=_headers(provider, req, stream),
        body=body,
    )


def _extract_anthropic(data: Dict[str, Any]) -> Completion:
    blocks = data.get("content") or []
    text = "".join(
        b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type", "text") == "text"
    )
    usage = data.get("usage") or {}
    return Completion(
        text=text,
        finish_reason=data.get("stop_reason"),
        usage=_usage_dict(usage.get("input_tokens"), usage.get("output_tokens")),
    )


def _no_models(_data: Dict[str, Any]) -> ModelList:
    return []


# -- Ollama -------------------------------------------------------------------

def _build_ollama(provider: ProviderConfig, req: ChatRequest, stream: bool) -> HttpRequest:
    body: Dict[str, Any] = {
        "model": req.model,
        "prompt": req.prompt,
        "stream": stream,
        "options": {"temperature": req.temperature, "num_predict": req.max_tokens},
    }
    if req.system_prompt:
        body["system"] = req.system_prompt
    return HttpRequest(
        url=_join_url(provider.base_url, "api/generate"),
        headers=_headers(provider, req, stream),
        body=body,
    )


def _extract_ollama(data: Dict[str, Any]) -> Completion:
    text = data.get("response")
    if text is None:
        text = (data.get("message") or {}).get("content")
    return Completion(
        text=text or "",
        finish_reason=data.get("done_reason") or ("stop" if data.get("done") else None),
        usage=_usage_dict(data.get("prompt_eval_count"), data.get("eval_count")),
    )


def _read_ollama_models(data: Dict[str, Any]) -> ModelList:
    out: ModelList = []
    for item in data.get("models") or []:
        name = item.get("name") if isinstance(item, dict) else None
        if name:
            out.append((str(name), str(name)))
    return out


PROTOCOLS: Dict[WireFormat, WireProtocol] = {
    WireFormat.OPENAI_COMPATIBLE: WireProtocol(
        build_request=_build_openai,
        parse_line=parse_openai_line,
        extract_completion=_extract_openai,
        read_models=_read_openai_models,
    ),
    WireFormat.ANTHROPIC: WireProtocol(
        build_request=_build_anthropic,
        parse_line=parse_anthropic_line,
        extract_completion=_extract_anthropic,
        read_models=_no_models,
    ),
    WireFormat.OLLAMA: WireProtocol(
        build_request=_build_ollama,
        parse_line=parse_ollama_line,
        extract_completion=_extract_ollama,
        read_models=_read_ollama_models,
    ),
}

_missing = set(WireFormat) - set(PROTOCOLS) - {WireFormat.UNSUPPORTED}
if _missing:
    raise RuntimeError(f"wire formats without a protocol: {sorted(m.value for m in _missing)}")


def protocol_for(provider: ProviderConfig) -> WireProtocol:
    """Protocol of a provider; unsupported formats are a configuration error."""
    protocol = PROTOCOLS.get(provider.wire_format)
    if protocol is None:
        raise ConfigurationError(
            f"Provider '{provider.id}' uses an unsupported wire format ({provider.wire_format.value})"
        )
    return protocol


def parser_for(wire_format: WireFormat) -> Optional[ChunkParser]:
    protocol = PROTOCOLS.get(wire_format)
    return protocol.parse_line if protocol else None
