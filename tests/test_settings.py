from __future__ import annotations

from typing import Any

from open_chat_bridge.settings import Settings


def test_defaults(monkeypatch: Any) -> None:
    for name in (
        "DEFAULT_AUTHKEYS",
        "KIMI_TOKENS",
        "MOMENTUM_SESSIONS",
        "DEFAULT_MODEL",
        "CORS_ALLOW_ORIGINS",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.default_authkeys_list == ["sk-default", "sk-false"]
    assert settings.kimi_tokens_list == []
    assert settings.momentum_sessions_list == []
    assert settings.default_model == "momentum"
    assert settings.cors_allow_origins_list == ["*"]


def test_csv_values_are_trimmed_and_blank_entries_dropped(monkeypatch: Any) -> None:
    monkeypatch.setenv("KIMI_TOKENS", " t1 , ,t2,")
    monkeypatch.setenv("MOMENTUM_SESSIONS", "s1")
    monkeypatch.setenv("DEFAULT_AUTHKEYS", "k1,k2")

    settings = Settings(_env_file=None)

    assert settings.kimi_tokens_list == ["t1", "t2"]
    assert settings.momentum_sessions_list == ["s1"]
    assert settings.default_authkeys_list == ["k1", "k2"]


def test_blank_cors_origins_fall_back_to_wildcard(monkeypatch: Any) -> None:
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", " , ")

    assert Settings(_env_file=None).cors_allow_origins_list == ["*"]


def test_environment_overrides_backend_urls(monkeypatch: Any) -> None:
    monkeypatch.setenv("KIMI_BASE_URL", "https://kimi.internal")
    monkeypatch.setenv("BACKEND_READ_TIMEOUT_SECONDS", "9.5")

    settings = Settings(_env_file=None)

    assert settings.kimi_base_url == "https://kimi.internal"
    assert settings.backend_read_timeout_seconds == 9.5
