import httpx
import pytest

from codepad.config import HttpConfig
from codepad.errors import ProviderError
from codepad.streaming.http import RetryPolicy, excerpt, post_json, status_message

from conftest import sequence_handler


FAST = RetryPolicy(max_attempts=2, base_ms=1, factor=1.0, jitter=False)


@pytest.mark.asyncio
async def test_post_json_retries_then_succeeds():
    requests = []
    handler = sequence_handler(
        [httpx.Response(429, text="rate limited"), httpx.Response(200, json={"ok": True})],
        requests,
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        data = await post_json(
            client,
            "https://example.com/v1/chat/completions",
            payload={"ok": True},
            headers={"Content-Type": "application/json"},
            retry=FAST,
        )
    assert data == {"ok": True}
    assert len(requests) == 2


@pytest.mark.asyncio
async def test_post_json_raises_after_exhaust():
    requests = []
    handler = sequence_handler([httpx.Response(500, text="oops")], requests)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ProviderError) as ei:
            await post_json(client, "https://example.com/v1", payload={}, headers={}, retry=FAST)
    assert ei.value.status == 500
    assert ei.value.body == "oops"
    assert str(ei.value) == "HTTP 500: Internal Server Error: oops (status 500)"
    assert len(requests) == 2


@pytest.mark.asyncio
async def test_post_json_does_not_retry_client_errors():
    requests = []
    handler = sequence_handler([httpx.Response(400, text="bad request")], requests)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ProviderError):
            await post_json(client, "https://example.com/v1", payload={}, headers={}, retry=FAST)
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_post_json_retries_network_errors():
    calls = {"n": 0}

    def flaky(request):
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"ok": 1})

    async with httpx.AsyncClient(transport=httpx.MockTransport(flaky)) as client:
        data = await post_json(client, "https://example.com/v1", payload={}, headers={}, retry=FAST)
    assert data == {"ok": 1}


@pytest.mark.asyncio
async def test_post_json_rejects_non_json():
    requests = []
    handler = sequence_handler([httpx.Response(200, text="<html>")], requests)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ProviderError, match="Invalid JSON"):
            await post_json(client, "https://example.com/v1", payload={}, headers={}, retry=FAST)


def test_retry_policy_from_config():
    cfg = HttpConfig(max_attempts=0, retry_status_codes={408, 429}, retry_include_5xx=False)
    policy = RetryPolicy.from_config(cfg)
    assert policy.max_attempts == 1
    assert policy.should_retry(408, None)
    assert not policy.should_retry(503, None)
    assert policy.should_retry(None, httpx.ReadTimeout("slow"))


def test_backoff_grows_and_is_capped():
    policy = RetryPolicy(base_ms=500, factor=2.0, jitter=False)
    assert policy.delay(1) == 0.5
    assert policy.delay(2) == 1.0
    assert policy.delay(10) == 10.0


def test_status_message_and_excerpt():
    resp = httpx.Response(502)
    assert status_message(resp) == "HTTP 502: Bad Gateway"
    assert status_message(resp, "  upstream down \n") == "HTTP 502: Bad Gateway: upstream down"
    assert excerpt("a" * 10, limit=4) == "aaaa…"
