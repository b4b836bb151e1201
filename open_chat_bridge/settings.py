from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    default_authkeys: str = "sk-default,sk-false"
    kimi_tokens: str = ""
    momentum_sessions: str = ""
    kimi_base_url: str = "https://www.kimi.com"
    momentum_base_url: str = "https://movementlabs.ai"
    default_model: str = "momentum"
    backend_connect_timeout_seconds: float = 5.0
    backend_read_timeout_seconds: float = 120.0
    backend_write_timeout_seconds: float = 30.0
    backend_pool_timeout_seconds: float = 5.0
    cors_allow_origins: str = "*"
    observability_tracing_enabled: bool = False
    observability_service_name: str = "open-chat-bridge"
    observability_otlp_endpoint: str | None = None
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def default_authkeys_list(self) -> list[str]:
        return _split_csv(self.default_authkeys)

    @property
    def kimi_tokens_list(self) -> list[str]:
        return _split_csv(self.kimi_tokens)

    @property
    def momentum_sessions_list(self) -> list[str]:
        return _split_csv(self.momentum_sessions)

    @property
    def cors_allow_origins_list(self) -> list[str]:
        return _split_csv(self.cors_allow_origins) or ["*"]


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
