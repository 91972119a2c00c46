import json

import httpx
import pytest

from codepad.config import Settings
from codepad.errors import ConfigurationError, ProviderError
from codepad.models.events import ContentEvent, DoneEvent, ErrorEvent, ErrorKind, UsageEvent
from codepad.models.messages import ChatRequest
from codepad.providers.registry import ProviderRegistry
from codepad.streaming.engine import LineBuffer, StreamingEngine

from conftest import OLLAMA_SCENARIO_B, OPENAI_SCENARIO_A, CannedProvider, sequence_handler


def make_request(provider_id="openai", model="gpt-4o-mini", **kw):
    kw.setdefault("api_key", "sk-test-openai-key")
    return ChatRequest(provider_id=provider_id, model=model, prompt="2+2?", **kw)


async def collect(engine):
    return [event async for event in engine.stream()]


def split_every(data: bytes, size: int):
    return [data[i:i + size] for i in range(0, len(data), size)]


# LineBuffer

def test_line_buffer_holds_back_partial_line():
    buf = LineBuffer()
    assert buf.feed("data: a\ndata: b") == ["data: a"]
    assert buf.feed("c\r\n\n") == ["data: bc", ""]
    assert buf.flush() is None


def test_line_buffer_crlf_split_across_feeds():
    buf = LineBuffer()
    assert buf.feed("x\r") == []
    assert buf.feed("\ny") == ["x"]
    assert buf.flush() == "y"


# End-to-end scenarios

@pytest.mark.asyncio
async def test_scenario_a_openai_sse(registry):
    provider = CannedProvider([OPENAI_SCENARIO_A])
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request(), registry=registry, client=client))
    assert events == [ContentEvent("4"), DoneEvent()]


@pytest.mark.asyncio
async def test_scenario_b_ollama_ndjson(registry):
    provider = CannedProvider([OLLAMA_SCENARIO_B])
    async with provider.client() as client:
        engine = StreamingEngine(make_request("ollama", "llama3.1", api_key=None), registry=registry, client=client)
        events = await collect(engine)
    assert events == [ContentEvent("Hi"), ContentEvent(" there"), DoneEvent("stop")]
    assert "".join(e.text for e in events if isinstance(e, ContentEvent)) == "Hi there"


@pytest.mark.asyncio
async def test_scenario_d_http_429(registry):
    provider = CannedProvider([b'{"error":{"message":"Rate limit reached"}}'], status=429)
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request(), registry=registry, client=client))
    assert len(events) == 1
    error = events[0]
    assert isinstance(error, ErrorEvent)
    assert error.status == 429
    assert error.kind == ErrorKind.TRANSPORT
    assert error.message.startswith("HTTP 429: Too Many Requests")
    assert "Rate limit reached" in error.message


@pytest.mark.asyncio
async def test_error_body_excerpt_is_truncated(registry):
    provider = CannedProvider([b"x" * 5000], status=500)
    async with provider.client() as client:
        [error] = await collect(StreamingEngine(make_request(), registry=registry, client=client))
    assert error.status == 500
    assert len(error.message) < 400


# Configuration failures

@pytest.mark.asyncio
async def test_unknown_provider_sends_nothing(registry):
    provider = CannedProvider([OPENAI_SCENARIO_A])
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request("nope"), registry=registry, client=client))
    assert events == [ErrorEvent("Unknown provider 'nope'", kind=ErrorKind.CONFIGURATION)]
    assert provider.requests == []


@pytest.mark.asyncio
async def test_unsupported_provider_sends_nothing(registry):
    provider = CannedProvider([OPENAI_SCENARIO_A])
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request("cursor"), registry=registry, client=client))
    assert len(events) == 1
    assert events[0].kind == ErrorKind.CONFIGURATION
    assert "unsupported" in events[0].message
    assert provider.requests == []


# Buffer-boundary idempotence

UNICODE_TRANSCRIPT = (
    'data: {"choices":[{"delta":{"content":"héllo "}}]}\r\n\r\n'
    ': keep-alive\n\n'
    'data: {"choices":[{"delta":{"content":"wörld 🌍"}}]}\n\n'
    'data: {"choices":[{"delta":{"content":"日本語"}}]}\n\n'
    'data: {"choices":[],"usage":{"prompt_tokens":3,"completion_tokens":4,"total_tokens":7}}\n\n'
    'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}\n\n'
    'data: [DONE]\n\n'
).encode("utf-8")


@pytest.mark.asyncio
@pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 13, 64, len(UNICODE_TRANSCRIPT)])
async def test_split_points_do_not_change_events(registry, size):
    provider = CannedProvider(split_every(UNICODE_TRANSCRIPT, size))
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request(), registry=registry, client=client))
    assert events == [
        ContentEvent("héllo "),
        ContentEvent("wörld 🌍"),
        ContentEvent("日本語"),
        UsageEvent(3, 4, 7),
        DoneEvent("stop"),
    ]


@pytest.mark.asyncio
async def test_split_inside_multibyte_character(registry):
    body = 'data: {"choices":[{"delta":{"content":"€"}}]}\n'.encode("utf-8")
    euro_at = body.index("€".encode("utf-8"))
    chunks = [body[:euro_at + 1], body[euro_at + 1:euro_at + 2], body[euro_at + 2:], b"data: [DONE]\n"]
    provider = CannedProvider(chunks)
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request(), registry=registry, client=client))
    assert events == [ContentEvent("€"), DoneEvent()]


# Terminal handling

@pytest.mark.asyncio
async def test_nothing_after_first_terminal_event(registry):
    body = (
        b'data: {"choices":[{"delta":{"content":"a"},"finish_reason":"stop"}]}\n'
        b'data: {"choices":[{"delta":{"content":"b"}}]}\n'
        b"data: [DONE]\n"
    )
    provider = CannedProvider([body])
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request(), registry=registry, client=client))
    assert events == [ContentEvent("a"), DoneEvent("stop")]
    assert sum(1 for e in events if e.is_terminal) == 1


@pytest.mark.asyncio
async def test_openai_usage_chunk_after_finish_reason_is_dropped(registry):
    body = (
        b'data: {"choices":[{"delta":{"content":"hi"}}]}\n'
        b'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}\n'
        b'data: {"choices":[],"usage":{"prompt_tokens":3,"completion_tokens":1,"total_tokens":4}}\n'
        b"data: [DONE]\n"
    )
    provider = CannedProvider([body])
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request(), registry=registry, client=client))
    assert events == [ContentEvent("hi"), DoneEvent("stop")]
    assert "stream_options" not in json.loads(provider.requests[0].content)


@pytest.mark.asyncio
async def test_trailing_line_without_newline_is_flushed(registry):
    body = b'{"response":"tail"}\n{"done":true,"done_reason":"length"}'
    provider = CannedProvider([body])
    async with provider.client() as client:
        engine = StreamingEngine(make_request("ollama", "llama3.1", api_key=None), registry=registry, client=client)
        events = await collect(engine)
    assert events == [ContentEvent("tail"), DoneEvent("length")]


@pytest.mark.asyncio
async def test_exhausted_body_without_terminal_just_ends(registry):
    provider = CannedProvider([b'data: {"choices":[{"delta":{"content":"partial"}}]}\n'])
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request(), registry=registry, client=client))
    assert events == [ContentEvent("partial")]


@pytest.mark.asyncio
async def test_empty_reply_with_done_is_valid(registry):
    provider = CannedProvider([b"data: [DONE]\n"])
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request(), registry=registry, client=client))
    assert events == [DoneEvent()]


@pytest.mark.asyncio
async def test_mid_read_failure_yields_single_error(registry):
    provider = CannedProvider(
        [b'data: {"choices":[{"delta":{"content":"par"}}]}\n', b'data: {"choices":[{"delta":{"content":"t"}}]}\n'],
        fail_after=1,
    )
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request(), registry=registry, client=client))
    assert events[0] == ContentEvent("par")
    assert len(events) == 2
    assert isinstance(events[1], ErrorEvent)
    assert events[1].kind == ErrorKind.TRANSPORT
    assert "connection reset" in events[1].message


@pytest.mark.asyncio
async def test_connect_error_yields_single_error(registry):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
        events = await collect(StreamingEngine(make_request(), registry=registry, client=client))
    assert len(events) == 1
    assert isinstance(events[0], ErrorEvent)
    assert events[0].status is None


# Cancellation

@pytest.mark.asyncio
async def test_cancel_mid_stream_stops_content(registry):
    chunks = [f'data: {{"choices":[{{"delta":{{"content":"{i}"}}}}]}}\n'.encode() for i in range(10)]
    provider = CannedProvider(chunks + [b"data: [DONE]\n"])
    async with provider.client() as client:
        engine = StreamingEngine(make_request(), registry=registry, client=client)
        seen = []
        async for event in engine.stream():
            seen.append(event)
            if len(seen) == 2:
                await engine.cancel()
        assert engine.cancelled
    assert seen == [ContentEvent("0"), ContentEvent("1")]


@pytest.mark.asyncio
async def test_cancel_is_idempotent_and_safe_after_completion(registry):
    provider = CannedProvider([OPENAI_SCENARIO_A])
    async with provider.client() as client:
        engine = StreamingEngine(make_request(), registry=registry, client=client)
        await engine.cancel()
        await engine.cancel()
        assert await collect(engine) == []

        finished = StreamingEngine(make_request(), registry=registry, client=client)
        await collect(finished)
        await finished.cancel()
        await finished.cancel()
        assert finished.cancelled
    assert len(provider.requests) == 1


@pytest.mark.asyncio
async def test_stream_is_single_use(registry):
    provider = CannedProvider([OPENAI_SCENARIO_A])
    async with provider.client() as client:
        engine = StreamingEngine(make_request(), registry=registry, client=client)
        await collect(engine)
        with pytest.raises(RuntimeError):
            await collect(engine)


@pytest.mark.asyncio
async def test_injected_client_is_left_open(registry):
    provider = CannedProvider([OPENAI_SCENARIO_A])
    async with provider.client() as client:
        await collect(StreamingEngine(make_request(), registry=registry, client=client))
        assert not client.is_closed


# Request construction

@pytest.mark.asyncio
async def test_openai_request_shape(registry):
    provider = CannedProvider([OPENAI_SCENARIO_A])
    async with provider.client() as client:
        req = make_request(temperature=0.0, max_tokens=50, system_prompt="be brief")
        await collect(StreamingEngine(req, registry=registry, client=client))
    [sent] = provider.requests
    assert sent.method == "POST"
    assert str(sent.url) == "https://api.openai.com/v1/chat/completions"
    assert sent.headers["authorization"] == "Bearer sk-test-openai-key"
    assert sent.headers["accept"] == "text/event-stream"
    body = json.loads(sent.content)
    assert body == {
        "model": "gpt-4o-mini",
        "messages": [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "2+2?"},
        ],
        "temperature": 0.0,
        "max_tokens": 50,
        "stream": True,
    }


@pytest.mark.asyncio
async def test_anthropic_request_shape(registry):
    provider = CannedProvider([b'data: {"type":"message_stop"}\n'])
    async with provider.client() as client:
        req = make_request("anthropic", "claude-3-5-sonnet-latest", api_key="sk-ant-test", system_prompt="sys")
        events = await collect(StreamingEngine(req, registry=registry, client=client))
    assert events == [DoneEvent()]
    [sent] = provider.requests
    assert str(sent.url) == "https://api.anthropic.com/v1/messages"
    assert sent.headers["x-api-key"] == "sk-ant-test"
    assert sent.headers["anthropic-version"] == "2023-06-01"
    assert "authorization" not in sent.headers
    body = json.loads(sent.content)
    assert body["system"] == "sys"
    assert body["messages"] == [{"role": "user", "content": "2+2?"}]
    assert body["max_tokens"] == 2048
    assert body["stream"] is True


@pytest.mark.asyncio
async def test_ollama_request_shape_uses_base_url_override():
    registry = ProviderRegistry.with_base_urls({"ollama": "http://gpu-box:11434/"})
    provider = CannedProvider([OLLAMA_SCENARIO_B])
    async with provider.client() as client:
        req = make_request("ollama", "llama3.1", api_key=None, temperature=0.7, max_tokens=64)
        await collect(StreamingEngine(req, registry=registry, client=client))
    [sent] = provider.requests
    assert str(sent.url) == "http://gpu-box:11434/api/generate"
    assert "authorization" not in sent.headers
    body = json.loads(sent.content)
    assert body == {
        "model": "llama3.1",
        "prompt": "2+2?",
        "stream": True,
        "options": {"temperature": 0.7, "num_predict": 64},
    }


# Non-streaming

@pytest.mark.asyncio
async def test_complete_openai(registry):
    provider = CannedProvider(
        json_body={
            "choices": [{"message": {"content": "4"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4},
        }
    )
    async with provider.client() as client:
        completion = await StreamingEngine(make_request(stream=False), registry=registry, client=client).complete()
    assert completion.text == "4"
    assert completion.finish_reason == "stop"
    assert completion.usage == {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4}
    body = json.loads(provider.requests[0].content)
    assert body["stream"] is False
    assert body["temperature"] == 0.2
    assert provider.requests[0].headers.get("accept") != "text/event-stream"


@pytest.mark.asyncio
async def test_complete_anthropic_joins_text_blocks(registry):
    provider = CannedProvider(
        json_body={
            "content": [{"type": "text", "text": "Hel"}, {"type": "tool_use", "id": "x"}, {"type": "text", "text": "lo"}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 2, "output_tokens": 3},
        }
    )
    async with provider.client() as client:
        req = make_request("anthropic", "claude-3-5-sonnet-latest", api_key="k", stream=False)
        completion = await StreamingEngine(req, registry=registry, client=client).complete()
    assert completion.text == "Hello"
    assert completion.finish_reason == "end_turn"
    assert completion.usage["total_tokens"] == 5


@pytest.mark.asyncio
async def test_complete_unknown_provider_raises_configuration_error(registry):
    provider = CannedProvider(json_body={})
    async with provider.client() as client:
        with pytest.raises(ConfigurationError):
            await StreamingEngine(make_request("nope"), registry=registry, client=client).complete()
    assert provider.requests == []


@pytest.mark.asyncio
async def test_complete_http_error_raises_provider_error(registry):
    provider = CannedProvider(json_body={"error": {"message": "bad key"}}, status=401)
    async with provider.client() as client:
        with pytest.raises(ProviderError) as ei:
            await StreamingEngine(make_request(), registry=registry, client=client).complete()
    assert ei.value.status == 401
    assert "(status 401)" in str(ei.value)
    assert len(provider.requests) == 1


@pytest.mark.asyncio
async def test_complete_retries_429_when_enabled(registry):
    settings = Settings()
    settings.http.max_attempts = 3
    settings.http.backoff_base_ms = 1
    settings.http.backoff_jitter = False
    requests = []
    handler = sequence_handler(
        [
            httpx.Response(429, text="slow down"),
            httpx.Response(503, text="busy"),
            httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}),
        ],
        requests,
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        engine = StreamingEngine(make_request(stream=False), registry=registry, client=client, settings=settings)
        completion = await engine.complete()
    assert completion.text == "ok"
    assert len(requests) == 3


@pytest.mark.asyncio
async def test_complete_does_not_retry_by_default(registry):
    requests = []
    handler = sequence_handler([httpx.Response(429, text="slow down")], requests)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ProviderError):
            await StreamingEngine(make_request(stream=False), registry=registry, client=client, settings=Settings()).complete()
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_streaming_is_never_retried(registry):
    settings = Settings()
    settings.http.max_attempts = 5
    provider = CannedProvider([b"oops"], status=503)
    async with provider.client() as client:
        events = await collect(StreamingEngine(make_request(), registry=registry, client=client, settings=settings))
    assert len(events) == 1
    assert len(provider.requests) == 1
