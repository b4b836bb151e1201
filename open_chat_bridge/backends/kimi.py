from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from open_chat_bridge.backends.base import ChatBackend, request_error_details
from open_chat_bridge.errors import InvalidChatRequestError, SessionCreationError
from open_chat_bridge.schemas import ChatCompletionRequest
from open_chat_bridge.streaming.frames import FrameDialect

logger = logging.getLogger("uvicorn.error")

KIMI_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)


@dataclass(slots=True, frozen=True)
class KimiModel:
    upstream_model: str
    use_search: bool


KIMI_MODEL_MAPPING: dict[str, KimiModel] = {
    "k2": KimiModel(upstream_model="k2", use_search=True),
    "k1.5": KimiModel(upstream_model="k1.5", use_search=True),
}


class KimiBackend(ChatBackend):
    name = "kimi"
    owned_by = "kimi.ai"
    dialect = FrameDialect.SSE
    supports_sessions = True

    @property
    def models(self) -> list[str]:
        return list(KIMI_MODEL_MAPPING)

    @staticmethod
    def _headers(credential: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {credential}",
            "User-Agent": KIMI_USER_AGENT,
            "Content-Type": "application/json",
        }

    def validate_request(self, request: ChatCompletionRequest) -> None:
        if request.last_user_message() is None:
            raise InvalidChatRequestError("No user message found in messages.")

    async def create_session(self, credential: str) -> str:
        payload = {
            "name": "未命名会话",
            "born_from": "home",
            "kimiplus_id": "kimi",
            "is_example": False,
            "source": "web",
            "tags": [],
        }
        try:
            response = await self.client.post(
                f"{self.base_url}/api/chat",
                json=payload,
                headers=self._headers(credential),
            )
        except httpx.RequestError as exc:
            details = request_error_details(exc)
            logger.warning(
                "session_create_error backend=%s error_type=%s error=%s",
                self.name,
                details["error_type"],
                details["error"],
            )
            raise SessionCreationError(
                f"Could not create upstream chat session ({details['error_type']})."
            ) from exc

        if not response.is_success:
            logger.warning(
                "session_create_rejected backend=%s status=%d body=%s",
                self.name,
                response.status_code,
                response.text[:500],
            )
            raise SessionCreationError(
                f"Upstream chat session creation failed with status {response.status_code}."
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise SessionCreationError(
                "Upstream chat session response was not valid JSON."
            ) from exc

        chat_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(chat_id, str) or not chat_id.strip():
            logger.warning(
                "session_create_missing_id backend=%s body=%s",
                self.name,
                response.text[:500],
            )
            raise SessionCreationError(
                "Upstream chat session response carried no identifier."
            )

        logger.info("session_created backend=%s handle=%s", self.name, chat_id)
        return chat_id.strip()

    def build_completion_request(
        self,
        request: ChatCompletionRequest,
        *,
        model: str,
        credential: str,
        session_handle: str | None,
    ) -> httpx.Request:
        if not session_handle:
            raise SessionCreationError("No upstream chat session available.")
        mapping = KIMI_MODEL_MAPPING[model]
        user_message = request.last_user_message()
        if user_message is None:
            raise InvalidChatRequestError("No user message found in messages.")
        payload = {
            "model": mapping.upstream_model,
            "use_search": mapping.use_search,
            "messages": [{"role": "user", "content": user_message.text}],
            "kimiplus_id": "kimi",
            "extend": {"sidebar": True},
            "refs": [],
            "history": [],
            "scene_labels": [],
            "use_semantic_memory": False,
            "use_deep_research": False,
        }
        return self.client.build_request(
            method="POST",
            url=f"{self.base_url}/api/chat/{session_handle}/completion/stream",
            json=payload,
            headers=self._headers(credential),
        )
