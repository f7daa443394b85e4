import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import fakeredis
import httpx
import pytest

from app.config import Settings
from app.services.gemini_client import GeminiClient
from app.services.retry_transport import RetryTransport


class Clock:
    """Settable stand-in for utcnow."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def gemini_envelope(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.fixture
def clock():
    return Clock(datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def r():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def settings():
    return Settings(
        gemini_api_key="test-key",
        gemini_base_url="https://gemini.test/v1beta",
        auth_url="https://auth.test",
        auth_api_key="anon",
        retry_base_delay_ms=1,
    )


@pytest.fixture
def gemini_replies():
    """
    MockTransport handler answering generateContent with the given texts in
    turn (the last one repeats). Request bodies are kept on ``.seen``.
    """
    def build(*texts: str):
        queue = list(texts)
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append({"url": str(request.url), "body": json.loads(request.content)})
            text = queue.pop(0) if len(queue) > 1 else queue[0]
            return httpx.Response(200, json=gemini_envelope(text))

        handler.seen = seen
        return handler

    return build


@pytest.fixture
def make_gemini():
    def build(handler, max_attempts: int = 3, sleep=None) -> GeminiClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = RetryTransport(http, max_attempts=max_attempts, base_delay_ms=10, sleep=sleep or AsyncMock())
        return GeminiClient(transport, api_key="test-key", base_url="https://gemini.test/v1beta")

    return build
