from __future__ import annotations

import logging
import sys
from typing import Any

import httpx

from open_chat_bridge.main import _setup_optional_tracing
from open_chat_bridge.settings import Settings


def test_tracing_disabled_by_default_is_a_no_op(caplog: Any) -> None:
    client = httpx.AsyncClient()
    with caplog.at_level(logging.INFO):
        _setup_optional_tracing(http_client=client, settings=Settings(_env_file=None))

    assert "observability_" not in caplog.text


def test_tracing_without_opentelemetry_installed_logs_and_continues(
    monkeypatch: Any, caplog: Any
) -> None:
    monkeypatch.setitem(sys.modules, "opentelemetry", None)
    settings = Settings(_env_file=None, observability_tracing_enabled=True)

    with caplog.at_level(logging.WARNING):
        _setup_optional_tracing(http_client=httpx.AsyncClient(), settings=settings)

    assert "observability_tracing_unavailable" in caplog.text
