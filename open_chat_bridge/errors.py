from __future__ import annotations

from typing import Any

from fastapi import status


class GatewayError(RuntimeError):
    """Base class for failures that map onto an outward HTTP error payload."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type: str = "internal_error"
    code: str | None = None

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def headers(self) -> dict[str, str] | None:
        return None

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "param": None,
                "code": self.code,
            },
        }


class InvalidChatRequestError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "invalid_request_error"


class UnknownModelError(GatewayError):
    status_code = status.HTTP_404_NOT_FOUND
    error_type = "model_not_found"
    code = "model_not_found"

    def __init__(self, requested_model: str, available_models: list[str]) -> None:
        super().__init__(f"Model '{requested_model}' not found.")
        self.requested_model = requested_model
        self.available_models = available_models


class AuthUnavailableError(GatewayError):
    """No usable upstream credential could be resolved for the request."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "authentication_error"
    code = "invalid_api_key"

    @property
    def headers(self) -> dict[str, str] | None:
        return {"WWW-Authenticate": "Bearer"}


class UpstreamRejectedError(GatewayError):
    """The upstream backend answered with a non-success status."""

    error_type = "upstream_error"

    def __init__(self, status_code: int, status_text: str) -> None:
        super().__init__("Upstream request failed.")
        self.status_code = status_code
        self.status_text = status_text

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["error"]["status"] = self.status_code
        payload["error"]["status_text"] = self.status_text
        return payload


class UpstreamConnectionError(GatewayError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "upstream_connection_error"


class StreamFaultError(GatewayError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "upstream_stream_error"


class SessionCreationError(GatewayError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "session_creation_error"
