from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

import httpx
import structlog

from ..config import HttpConfig
from ..errors import ProviderError


log = structlog.get_logger(__name__)

BODY_EXCERPT_CHARS = 300


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    base_ms: int = 500
    factor: float = 2.0
    jitter: bool = True
    status_codes: Set[int] = field(default_factory=lambda: {429})
    include_5xx: bool = True

    @classmethod
    def from_config(cls, cfg: HttpConfig) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, cfg.max_attempts),
            base_ms=cfg.backoff_base_ms,
            factor=cfg.backoff_factor,
            jitter=cfg.backoff_jitter,
            status_codes=set(cfg.retry_status_codes),
            include_5xx=cfg.retry_include_5xx,
        )

    def should_retry(self, status: Optional[int], exc: Optional[BaseException]) -> bool:
        if status is not None:
            if status in self.status_codes:
                return True
            if self.include_5xx and 500 <= status < 600:
                return True
        if exc is not None:
            # Connect errors, read timeouts, dropped connections
            return True
        return False

    def delay(self, attempt: int) -> float:
        delay = self.base_ms * (self.factor ** max(attempt - 1, 0)) / 1000.0
        if self.jitter:
            delay *= (0.5 + random.random())  # 0.5x to 1.5x
        return min(delay, 10.0)  # cap to 10s between tries


def build_timeout(cfg: HttpConfig) -> httpx.Timeout:
    return httpx.Timeout(cfg.timeout, connect=cfg.connect_timeout)


def excerpt(text: str, limit: int = BODY_EXCERPT_CHARS) -> str:
    text = text.strip()
    if len(text) > limit:
        return text[:limit] + "…"
    return text


def status_message(response: httpx.Response, body: str = "") -> str:
    message = f"HTTP {response.status_code}"
    if response.reason_phrase:
        message += f": {response.reason_phrase}"
    detail = excerpt(body)
    if detail:
        message += f": {detail}"
    return message


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    payload: Dict[str, Any],
    headers: Dict[str, str],
    retry: RetryPolicy,
) -> Dict[str, Any]:
    """POST a JSON body and return the decoded JSON response, retrying per policy."""
    attempt = 0
    while True:
        attempt += 1
        try:
            log.debug("POST", url=url, attempt=attempt)
            resp = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            log.warning("request failed", url=url, attempt=attempt, error=str(e))
            if attempt >= retry.max_attempts or not retry.should_retry(None, e):
                raise ProviderError(f"Network error: {e}") from e
        else:
            if resp.is_success:
                try:
                    data = resp.json()
                except ValueError as e:
                    raise ProviderError("Invalid JSON in provider response", status=resp.status_code, body=excerpt(resp.text)) from e
                if not isinstance(data, dict):
                    raise ProviderError("Unexpected provider response shape", status=resp.status_code, body=excerpt(resp.text))
                return data
            body = resp.text
            log.warning("provider returned error status", url=url, status=resp.status_code, attempt=attempt)
            if attempt >= retry.max_attempts or not retry.should_retry(resp.status_code, None):
                raise ProviderError(status_message(resp, body), status=resp.status_code, body=excerpt(body))
        await asyncio.sleep(retry.delay(attempt))
