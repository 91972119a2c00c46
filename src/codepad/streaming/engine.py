"""
Streaming engine - one provider request turned into normalized events.

The engine owns the HTTP lifecycle of exactly one request: it builds the
provider-specific request, reads the body incrementally, decodes bytes with a
persistent incremental decoder (so multi-byte characters split across reads
survive), reassembles lines and hands each complete line to the provider's
chunk parser. Consumers iterate ``stream()`` and see events as they arrive.
"""

import codecs
from contextlib import aclosing
from typing import AsyncIterator, List, Optional, Tuple

import httpx
import structlog

from ..config import Settings
from ..errors import ConfigurationError, ProviderError
from ..models.events import ErrorEvent, ErrorKind, NormalizedEvent
from ..models.messages import ChatRequest, Completion
from ..providers.registry import ProviderConfig, ProviderRegistry
from ..providers.wire import HttpRequest, WireProtocol, protocol_for
from ..streaming.parsers import ChunkParser
from .http import RetryPolicy, build_timeout, post_json, status_message


logger = structlog.get_logger(__name__)


def _parse(parse_line: ChunkParser, line: str) -> List[NormalizedEvent]:
    return parse_line(line) if line.strip() else []


class LineBuffer:
    """Splits decoded text into lines, holding back the unfinished tail."""

    def __init__(self) -> None:
        self._tail = ""

    def feed(self, text: str) -> List[str]:
        if not text:
            return []
        parts = (self._tail + text).split("\n")
        self._tail = parts.pop()
        return [p[:-1] if p.endswith("\r") else p for p in parts]

    def flush(self) -> Optional[str]:
        tail, self._tail = self._tail, ""
        tail = tail.rstrip("\r")
        return tail if tail.strip() else None


class StreamingEngine:
    """
    Single-use, forward-only, cancellable event stream for one ``ChatRequest``.

    ``stream()`` never raises for provider or transport problems: they arrive
    as a single ``ErrorEvent``. The sequence ends at the first terminal event.
    ``cancel()`` may be called at any time, from any task, any number of times.
    """

    def __init__(
        self,
        request: ChatRequest,
        *,
        registry: ProviderRegistry,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.request = request
        self.registry = registry
        self._client = client
        self._http = (settings or Settings()).http
        self._response: Optional[httpx.Response] = None
        self._cancelled = False
        self._consumed = False
        self.log = logger.bind(provider=request.provider_id, model=request.model)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _resolve(self) -> Tuple[ProviderConfig, WireProtocol]:
        provider = self.registry.get(self.request.provider_id)
        return provider, protocol_for(provider)

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=build_timeout(self._http))

    async def stream(self) -> AsyncIterator[NormalizedEvent]:
        """Yield normalized events until a terminal event, exhaustion or cancellation."""
        if self._consumed:
            raise RuntimeError("StreamingEngine.stream() can only be consumed once")
        self._consumed = True

        try:
            provider, protocol = self._resolve()
        except ConfigurationError as e:
            self.log.warning("stream rejected", reason=str(e))
            yield ErrorEvent(str(e), kind=ErrorKind.CONFIGURATION)
            return

        if self._cancelled:
            return

        http_request = protocol.build_request(provider, self.request, True)
        client = self._client or self._new_client()
        try:
            async with aclosing(self._read_events(client, http_request, protocol.parse_line)) as events:
                async for event in events:
                    if self._cancelled:
                        return
                    yield event
                    if event.is_terminal:
                        return
        finally:
            await self._release()
            if self._client is None:
                await client.aclose()

    async def _read_events(
        self,
        client: httpx.AsyncClient,
        http_request: HttpRequest,
        parse_line: ChunkParser,
    ) -> AsyncIterator[NormalizedEvent]:
        try:
            self.log.info("stream request", url=http_request.url)
            request = client.build_request(
                http_request.method,
                http_request.url,
                json=http_request.body,
                headers=http_request.headers,
            )
            response = await client.send(request, stream=True)
            self._response = response
            if self._cancelled:
                return

            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                self.log.warning("stream rejected by provider", status=response.status_code)
                yield ErrorEvent(status_message(response, body), status=response.status_code)
                return

            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            buffer = LineBuffer()
            async for chunk in response.aiter_bytes():
                if self._cancelled:
                    return
                for line in buffer.feed(decoder.decode(chunk)):
                    for event in _parse(parse_line, line):
                        yield event

            lines = buffer.feed(decoder.decode(b"", final=True))
            tail = buffer.flush()
            if tail is not None:
                lines.append(tail)
            for line in lines:
                for event in _parse(parse_line, line):
                    yield event
        except Exception as e:
            if self._cancelled:
                return
            self.log.warning("stream failed", error=str(e), error_type=type(e).__name__)
            yield ErrorEvent(f"Streaming error: {e}" if str(e) else f"Streaming error: {type(e).__name__}")

    async def cancel(self) -> None:
        """Stop producing events and release the connection. Never raises."""
        if not self._cancelled:
            self.log.info("stream cancelled")
        self._cancelled = True
        await self._release()

    async def _release(self) -> None:
        response, self._response = self._response, None
        if response is None:
            return
        try:
            await response.aclose()
        except Exception:
            self.log.debug("error closing response", exc_info=True)

    async def complete(self) -> Completion:
        """Single non-streaming request; raises ConfigurationError or ProviderError."""
        provider, protocol = self._resolve()
        http_request = protocol.build_request(provider, self.request, False)
        client = self._client or self._new_client()
        self.log.info("completion request", url=http_request.url)
        try:
            data = await post_json(
                client,
                http_request.url,
                payload=http_request.body,
                headers=http_request.headers,
                retry=RetryPolicy.from_config(self._http),
            )
        finally:
            if self._client is None:
                await client.aclose()

        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(f"Provider error: {message}")
        try:
            return protocol.extract_completion(data)
        except (AttributeError, TypeError, KeyError, IndexError) as e:
            raise ProviderError(f"Unexpected response shape: {e}") from e
