from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncGenerator, AsyncIterable
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from open_chat_bridge.errors import StreamFaultError
from open_chat_bridge.streaming.events import (
    ContentDelta,
    Done,
    StreamError,
    StreamEvent,
)

logger = logging.getLogger("uvicorn.error")

DONE_FRAME = b"data: [DONE]\n\n"
FINISH_REASON_STOP = "stop"


def new_completion_id() -> str:
    return f"chatcmpl-{uuid4().hex}"


def encode_sse_data(payload: dict[str, Any]) -> bytes:
    body = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"data: {body}\n\n".encode("utf-8")


@dataclass(slots=True)
class ChatCompletionSynthesizer:
    """Renders stream events as chat-completion chunks or one aggregated body.

    One instance serves one request; its completion id and ``created``
    timestamp are shared by every chunk it emits.
    """

    model: str
    completion_id: str = field(default_factory=new_completion_id)
    created: int = field(default_factory=lambda: int(time.time()))

    def chunk_payload(
        self, delta: dict[str, Any], finish_reason: str | None = None
    ) -> dict[str, Any]:
        return {
            "id": self.completion_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [
                {
                    "index": 0,
                    "delta": delta,
                    "finish_reason": finish_reason,
                    "logprobs": None,
                }
            ],
        }

    def role_chunk(self) -> bytes:
        return encode_sse_data(
            self.chunk_payload({"role": "assistant", "content": None})
        )

    def content_chunk(self, text: str) -> bytes:
        return encode_sse_data(self.chunk_payload({"content": text}))

    def finish_chunk(self) -> bytes:
        return encode_sse_data(self.chunk_payload({}, finish_reason=FINISH_REASON_STOP))

    @staticmethod
    def error_chunk(message: str) -> bytes:
        return encode_sse_data({"error": {"message": message, "type": "proxy_error"}})

    async def stream(
        self, events: AsyncIterable[StreamEvent]
    ) -> AsyncGenerator[bytes, None]:
        announced = False
        content_chunks = 0
        text_chars = 0
        async for event in events:
            if isinstance(event, StreamError):
                logger.warning(
                    "chat_stream_aborted completion_id=%s model=%s content_chunks=%d error=%s",
                    self.completion_id,
                    self.model,
                    content_chunks,
                    event.message,
                )
                yield self.error_chunk(event.message)
                yield DONE_FRAME
                return
            if not announced:
                announced = True
                yield self.role_chunk()
            if isinstance(event, ContentDelta):
                content_chunks += 1
                text_chars += len(event.text)
                yield self.content_chunk(event.text)
            elif isinstance(event, Done):
                break

        if not announced:
            yield self.role_chunk()
        yield self.finish_chunk()
        yield DONE_FRAME
        logger.info(
            "chat_stream_complete completion_id=%s model=%s content_chunks=%d text_chars=%d finish_reason=%s",
            self.completion_id,
            self.model,
            content_chunks,
            text_chars,
            FINISH_REASON_STOP,
        )

    async def aggregate(self, events: AsyncIterable[StreamEvent]) -> dict[str, Any]:
        text_parts: list[str] = []
        async for event in events:
            if isinstance(event, StreamError):
                raise StreamFaultError(event.message)
            if isinstance(event, ContentDelta):
                text_parts.append(event.text)
            elif isinstance(event, Done):
                break

        content = "".join(text_parts)
        logger.info(
            "chat_result completion_id=%s model=%s content_chunks=%d text_chars=%d",
            self.completion_id,
            self.model,
            len(text_parts),
            len(content),
        )
        return self.completion_payload(content)

    def completion_payload(self, content: str) -> dict[str, Any]:
        return {
            "id": self.completion_id,
            "object": "chat.completion",
            "created": self.created,
            "model": self.model,
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": FINISH_REASON_STOP,
                }
            ],
            "usage": {
                "prompt_tokens": 0,
                "completion_tokens": 0,
                "total_tokens": 0,
            },
        }
