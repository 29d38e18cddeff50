"""Shared fixtures: isolated config loaders and connectors over httpx.MockTransport."""

from __future__ import annotations

import json
import os
from typing import Any, Callable
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from semantic_flow.config import EnvLoader
from semantic_flow.retry import RetryController


@pytest.fixture(autouse=True)
def clean_env():
    """No test sees the developer's AI_* variables."""
    keep = {k: v for k, v in os.environ.items() if not k.startswith(("AI_", "PACKAGE_INFO", "CORS_"))}
    with patch.dict(os.environ, keep, clear=True):
        yield


def make_loader(**settings: Any) -> EnvLoader:
    """Loader over the given settings and the bundled prompt defaults, ignoring .env files."""
    return EnvLoader(settings=settings or None, env_candidates=[])


def json_response(body: Any, status: int = 200, headers: dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(status, json=body, headers=headers)


class Recorder:
    """MockTransport handler that replays queued responses and keeps every request."""

    def __init__(self, *responses: httpx.Response | Callable[[httpx.Request], httpx.Response]) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        nxt = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return nxt(request) if callable(nxt) else nxt

    @property
    def last_body(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


def make_connector(cls, recorder: Recorder, retry: RetryController | None = None, **settings: Any):
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return cls(
        loader=make_loader(**settings),
        http_client=client,
        retry=retry or RetryController(sleep=AsyncMock()),
    )


def openai_reply(content: str, **extra: Any) -> dict[str, Any]:
    body = {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
        "model": "gpt-4o",
    }
    body.update(extra)
    return body
