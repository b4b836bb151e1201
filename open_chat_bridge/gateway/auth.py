from __future__ import annotations

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from open_chat_bridge.backends.base import ChatBackend
from open_chat_bridge.errors import AuthUnavailableError
from open_chat_bridge.runtime.credential_pool import CredentialPool

logger = logging.getLogger("uvicorn.error")


def parse_bearer_credentials(authorization: str | None) -> list[str]:
    if not authorization:
        return []
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return []
    return [item.strip() for item in token.split(",") if item.strip()]


class CredentialResolver:
    """Turns an Authorization header into an upstream credential pool.

    A bearer value matching one of the default auth keys selects the
    backend's shared pool. Any other value list becomes a throwaway pool
    that lives for a single request.
    """

    def __init__(self, default_authkeys: list[str]):
        self.default_authkeys = set(default_authkeys)

    async def authenticate_request(self, request: Request) -> JSONResponse | None:
        if parse_bearer_credentials(request.headers.get("authorization")):
            return None
        return _unauthorized("Invalid or missing Authorization header.")

    def resolve_pool(
        self, authorization: str | None, backend: ChatBackend
    ) -> CredentialPool:
        values = parse_bearer_credentials(authorization)
        if not values:
            raise AuthUnavailableError("Invalid or missing Authorization header.")
        if any(value in self.default_authkeys for value in values):
            logger.debug("credential_pool_selected backend=%s pool=default", backend.name)
            return backend.default_pool
        logger.debug(
            "credential_pool_selected backend=%s pool=request size=%d",
            backend.name,
            len(values),
        )
        return CredentialPool(values, name=f"{backend.name}-request")

    async def acquire_credential(
        self, authorization: str | None, backend: ChatBackend
    ) -> str:
        pool = self.resolve_pool(authorization, backend)
        credential = await pool.acquire_next()
        if credential is None:
            raise AuthUnavailableError("No upstream credentials are available.")
        return credential


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        headers={"WWW-Authenticate": "Bearer"},
        content=AuthUnavailableError(message).to_payload(),
    )
