from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
from fastapi.testclient import TestClient

from open_chat_bridge import main as main_module
from open_chat_bridge.main import app
from open_chat_bridge.settings import get_settings

KIMI_BASE_URL = "https://kimi.test"
MOMENTUM_BASE_URL = "https://momentum.test"
DEFAULT_AUTH = {"Authorization": "Bearer sk-default"}

UpstreamHandler = Callable[[httpx.Request], Any]


def set_default_test_env(monkeypatch: Any) -> None:
    monkeypatch.setenv("DEFAULT_AUTHKEYS", "sk-default")
    monkeypatch.setenv("KIMI_TOKENS", "kimi-token-1,kimi-token-2")
    monkeypatch.setenv("MOMENTUM_SESSIONS", "momentum-session-1,momentum-session-2")
    monkeypatch.setenv("KIMI_BASE_URL", KIMI_BASE_URL)
    monkeypatch.setenv("MOMENTUM_BASE_URL", MOMENTUM_BASE_URL)


def build_test_client(
    monkeypatch: Any, handler: UpstreamHandler | None = None, **env: Any
) -> TestClient:
    set_default_test_env(monkeypatch)
    for key, value in env.items():
        monkeypatch.setenv(key, str(value))
    get_settings.cache_clear()

    def unexpected_upstream_call(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected upstream call: {request.method} {request.url}")

    transport = httpx.MockTransport(handler or unexpected_upstream_call)
    monkeypatch.setattr(
        main_module,
        "_build_http_client",
        lambda settings: httpx.AsyncClient(transport=transport),
    )
    return TestClient(app)


async def chunked(parts: list[bytes]) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


def split_every(data: bytes, size: int) -> list[bytes]:
    return [data[index : index + size] for index in range(0, len(data), size)]


def sse_payloads(body: str) -> list[str]:
    return [
        frame[len("data: ") :]
        for frame in body.split("\n\n")
        if frame.startswith("data: ")
    ]
