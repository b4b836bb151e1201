from __future__ import annotations

import codecs
import json
import logging
import re
from collections.abc import AsyncGenerator, AsyncIterable, AsyncIterator
from enum import Enum

import httpx

from open_chat_bridge.streaming.events import (
    DONE,
    IGNORABLE,
    ContentDelta,
    Done,
    StreamError,
    StreamEvent,
)

logger = logging.getLogger("uvicorn.error")

DONE_SENTINEL = "[DONE]"
COMPLETION_EVENT_TYPE = "cmpl"
PREFIXED_SENTINEL = '0:"'

_PREFIXED_FRAME_RE = re.compile(r'^0:"(.*)"')


class FrameDialect(str, Enum):
    # blank-line delimited SSE records with `data:` payload lines
    SSE = "sse"
    # newline delimited records, content records prefixed with 0:"
    PREFIXED_LINES = "prefixed_lines"

    @property
    def terminator(self) -> str:
        if self is FrameDialect.SSE:
            return "\n\n"
        return "\n"


async def iter_frames(
    chunks: AsyncIterable[bytes], dialect: FrameDialect
) -> AsyncIterator[str]:
    """Reassemble logical frames from arbitrarily split byte chunks.

    Frames are yielded in arrival order once their terminator has been
    seen. CRLF line endings are folded to LF first. Whatever is left
    unterminated when ``chunks`` is exhausted is yielded once as a final
    frame. Blank frames are dropped.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    terminator = dialect.terminator
    buffer = ""
    async for chunk in chunks:
        if not chunk:
            continue
        buffer = (buffer + decoder.decode(chunk)).replace("\r\n", "\n")
        while True:
            frame, separator, rest = buffer.partition(terminator)
            if not separator:
                break
            buffer = rest
            if frame.strip():
                yield frame

    buffer = (buffer + decoder.decode(b"", final=True)).replace("\r\n", "\n")
    if buffer.strip():
        yield buffer


def decode_sse_frame(frame: str) -> StreamEvent:
    payload = ""
    for line in frame.split("\n"):
        if line.startswith("data:"):
            payload = line[5:].strip()

    if not payload:
        return IGNORABLE
    if payload == DONE_SENTINEL:
        return DONE

    try:
        parsed = json.loads(payload)
    except ValueError as exc:
        logger.debug("frame_parse_error dialect=sse payload=%r error=%s", payload, exc)
        return IGNORABLE

    if not isinstance(parsed, dict):
        return IGNORABLE
    if parsed.get("event") != COMPLETION_EVENT_TYPE:
        return IGNORABLE
    text = parsed.get("text")
    if not isinstance(text, str) or not text:
        return IGNORABLE
    return ContentDelta(text=text)


def unescape_prefixed_text(value: str) -> str:
    return value.replace("\\n", "\n").replace('\\"', '"').replace("\\\\", "\\")


def decode_prefixed_frame(frame: str) -> StreamEvent:
    if not frame.startswith(PREFIXED_SENTINEL):
        return IGNORABLE
    match = _PREFIXED_FRAME_RE.match(frame)
    if match is None or not match.group(1):
        return IGNORABLE
    return ContentDelta(text=unescape_prefixed_text(match.group(1)))


def decode_frame(frame: str, dialect: FrameDialect) -> StreamEvent:
    if dialect is FrameDialect.SSE:
        return decode_sse_frame(frame)
    return decode_prefixed_frame(frame)


async def iter_stream_events(
    chunks: AsyncIterable[bytes], dialect: FrameDialect
) -> AsyncGenerator[StreamEvent, None]:
    """Decode an upstream byte stream into a finite sequence of stream events.

    The sequence stops after ``Done``. A transport failure while reading is
    reported as one trailing ``StreamError`` instead of an exception.
    """
    frame_count = 0
    try:
        async for frame in iter_frames(chunks, dialect):
            frame_count += 1
            event = decode_frame(frame, dialect)
            yield event
            if isinstance(event, Done):
                return
    except (httpx.RequestError, httpx.StreamError) as exc:
        logger.warning(
            "upstream_stream_error dialect=%s frames=%d error_type=%s error=%s",
            dialect.value,
            frame_count,
            exc.__class__.__name__,
            exc,
        )
        yield StreamError(
            message=f"Upstream stream interrupted ({exc.__class__.__name__})."
        )
