from __future__ import annotations

import random
from typing import Any

import httpx

from open_chat_bridge.backends.base import ChatBackend
from open_chat_bridge.schemas import ChatCompletionRequest, ChatMessage
from open_chat_bridge.streaming.frames import FrameDialect

MOMENTUM_MODELS = [
    "momentum",
    "gpt-4o-mini",
    "gpt-4o",
    "gpt-4.1-nano",
    "gpt-4.1-mini",
]

BROWSER_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/116.0.0.0 Mobile Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
]


def convert_messages(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    return [
        {
            "role": "assistant" if message.role == "assistant" else "user",
            "content": message.text,
        }
        for message in messages
    ]


def count_user_messages(messages: list[ChatMessage]) -> int:
    return sum(1 for message in messages if message.role != "assistant")


class MomentumBackend(ChatBackend):
    name = "momentum"
    owned_by = "movementlabs"
    dialect = FrameDialect.PREFIXED_LINES

    @property
    def models(self) -> list[str]:
        return list(MOMENTUM_MODELS)

    def build_completion_request(
        self,
        request: ChatCompletionRequest,
        *,
        model: str,
        credential: str,
        session_handle: str | None,
    ) -> httpx.Request:
        headers = {
            "Content-Type": "application/json",
            "x-message-count": str(count_user_messages(request.messages)),
            "User-Agent": random.choice(BROWSER_USER_AGENTS),
            "Referer": f"{self.base_url}/",
            "Cookie": f"__session={credential}",
        }
        return self.client.build_request(
            method="POST",
            url=f"{self.base_url}/api/chat",
            json={"messages": convert_messages(request.messages)},
            headers=headers,
        )
