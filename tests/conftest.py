from __future__ import annotations

import json
import os
from collections.abc import AsyncIterator
from pathlib import Path

import anyio
import httpx
import pytest

# Must be set before app.main is imported, it loads config at import time.
os.environ["RELAY_CONFIG"] = str(Path(__file__).parent / "config.test.yaml")

from app.config import UpstreamConfig  # noqa: E402
from app.schemas import GenerationRequest  # noqa: E402
from app.upstream.client import UpstreamClient  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def upstream_config() -> UpstreamConfig:
    return UpstreamConfig(
        base_url="https://upstream.test/api/v3/chat/completions",
        api_key="test-key",
        default_model="deepseek-test",
        timeout=5,
    )


@pytest.fixture
def generation_fields() -> dict:
    return {
        "model_id": "deepseek-v3",
        "text": "Original article body.",
        "channels": "WeChat",
        "direction": "product launch",
        "requirements": "friendly tone",
        "num": 2,
        "seo_keywords": "relay, streaming",
        "scope": "marketing",
    }


@pytest.fixture
def generation_request(generation_fields) -> GenerationRequest:
    return GenerationRequest(**generation_fields)


def sse_body(*deltas: str, done: bool = True) -> bytes:
    """Build an upstream streaming body carrying the given deltas."""
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": d}}]}, ensure_ascii=False)
        for d in deltas
    ]
    if done:
        lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode()


class RecordingUpstream:
    """httpx.MockTransport handler that records every request it receives."""

    def __init__(self, response: httpx.Response | None = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response

    def client(self, config: UpstreamConfig) -> UpstreamClient:
        return UpstreamClient(config, transport=httpx.MockTransport(self))

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


class StalledBody(httpx.AsyncByteStream):
    """Streaming body that sends ``first``, then waits for ``release`` before ``rest``."""

    def __init__(self, first: bytes, rest: bytes = b""):
        self.first = first
        self.rest = rest
        self.release = anyio.Event()
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self.first
        await self.release.wait()
        yield self.rest

    async def aclose(self) -> None:
        self.closed = True


class BrokenBody(httpx.AsyncByteStream):
    """Streaming body that sends ``sent`` and then fails with a connection reset."""

    def __init__(self, sent: bytes):
        self.sent = sent

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self.sent
        raise httpx.ReadError("connection reset by peer")
