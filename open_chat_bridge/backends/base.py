from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import httpx

from open_chat_bridge.errors import (
    SessionCreationError,
    UpstreamConnectionError,
    UpstreamRejectedError,
)
from open_chat_bridge.runtime.credential_pool import CredentialPool
from open_chat_bridge.schemas import ChatCompletionRequest
from open_chat_bridge.streaming.frames import FrameDialect

logger = logging.getLogger("uvicorn.error")

ClientGetter = Callable[[], httpx.AsyncClient]


def request_error_details(exc: httpx.RequestError) -> dict[str, Any]:
    error_message = str(exc).strip() or repr(exc)
    error_type = exc.__class__.__name__.strip() or "RequestError"
    return {
        "error": error_message,
        "error_type": error_type,
        "is_timeout": isinstance(exc, httpx.TimeoutException),
    }


class ChatBackend(ABC):
    """One upstream chat service and the way to speak its wire protocol."""

    name: str
    owned_by: str
    dialect: FrameDialect
    supports_sessions: bool = False

    def __init__(
        self,
        *,
        base_url: str,
        default_pool: CredentialPool,
        client_getter: ClientGetter,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.default_pool = default_pool
        self._client_getter = client_getter

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client_getter()

    @property
    @abstractmethod
    def models(self) -> list[str]: ...

    def serves(self, model: str) -> bool:
        return model in self.models

    def validate_request(self, request: ChatCompletionRequest) -> None:
        return None

    async def create_session(self, credential: str) -> str:
        raise SessionCreationError(
            f"Backend '{self.name}' does not support upstream sessions."
        )

    @abstractmethod
    def build_completion_request(
        self,
        request: ChatCompletionRequest,
        *,
        model: str,
        credential: str,
        session_handle: str | None,
    ) -> httpx.Request: ...

    async def open_completion_stream(
        self,
        request: ChatCompletionRequest,
        *,
        model: str,
        credential: str,
        session_handle: str | None,
        request_id: str,
    ) -> httpx.Response:
        upstream_request = self.build_completion_request(
            request,
            model=model,
            credential=credential,
            session_handle=session_handle,
        )
        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.RequestError as exc:
            details = request_error_details(exc)
            logger.warning(
                "upstream_request_error request_id=%s backend=%s error_type=%s is_timeout=%s error=%s",
                request_id,
                self.name,
                details["error_type"],
                details["is_timeout"],
                details["error"],
            )
            raise UpstreamConnectionError(
                f"Could not reach backend '{self.name}' ({details['error_type']})."
            ) from exc

        if not upstream.is_success:
            body = await upstream.aread()
            await upstream.aclose()
            logger.warning(
                "upstream_rejected request_id=%s backend=%s status=%d body=%s",
                request_id,
                self.name,
                upstream.status_code,
                body[:500].decode("utf-8", errors="replace"),
            )
            raise UpstreamRejectedError(upstream.status_code, upstream.reason_phrase)

        logger.info(
            "upstream_connected request_id=%s backend=%s model=%s status=%d",
            request_id,
            self.name,
            model,
            upstream.status_code,
        )
        return upstream
