"""Shared helpers for canned provider traffic."""

from typing import Callable, Iterable, List, Optional

import httpx
import pytest

from codepad.config import Settings
from codepad.providers.registry import ProviderRegistry
from codepad.session.credentials import InMemoryCredentialStore


OPENAI_SCENARIO_A = (
    b'data: {"choices":[{"delta":{"content":"4"}}]}\n\n'
    b"data: [DONE]\n\n"
)

OLLAMA_SCENARIO_B = (
    b'{"response":"Hi"}\n'
    b'{"response":" there"}\n'
    b'{"done":true,"done_reason":"stop"}\n'
)


async def byte_chunks(chunks: Iterable[bytes]):
    for chunk in chunks:
        yield chunk


class CannedProvider:
    """MockTransport handler replaying a fixed body, recording every request."""

    def __init__(
        self,
        chunks: Iterable[bytes] = (),
        status: int = 200,
        json_body: Optional[dict] = None,
        fail_after: Optional[int] = None,
    ) -> None:
        self.chunks = list(chunks)
        self.status = status
        self.json_body = json_body
        self.fail_after = fail_after
        self.requests: List[httpx.Request] = []

    async def _body(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i >= self.fail_after:
                raise httpx.ReadError("connection reset by peer")
            yield chunk

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.json_body is not None:
            return httpx.Response(self.status, json=self.json_body)
        return httpx.Response(self.status, content=self._body())

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def sequence_handler(responses: List[httpx.Response], requests: List[httpx.Request]) -> Callable:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responses[min(len(requests), len(responses)) - 1]

    return handler


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture
def credentials() -> InMemoryCredentialStore:
    return InMemoryCredentialStore({"openai": "sk-test-openai-key", "anthropic": "sk-ant-test"})


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    for name in (
        "OPENAI_API_KEY",
        "OPENROUTER_API_KEY",
        "GROQ_API_KEY",
        "TOGETHER_API_KEY",
        "ANTHROPIC_API_KEY",
        "CHAT_PROVIDER",
        "CHAT_MODEL",
        "HTTP_MAX_ATTEMPTS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    s = Settings()
    s.storage.conversation_file = tmp_path / "conversation.json"
    s.chat.provider = "openai"
    s.chat.model = "gpt-4o-mini"
    s.http.backoff_base_ms = 1
    s.http.backoff_jitter = False
    return s
