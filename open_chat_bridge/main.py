from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator, AsyncIterable, Awaitable, Callable
from contextlib import aclosing
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import anyio
import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from open_chat_bridge.backends.base import ChatBackend
from open_chat_bridge.backends.registry import BackendRegistry, build_backend_registry
from open_chat_bridge.errors import GatewayError, InvalidChatRequestError
from open_chat_bridge.gateway.auth import CredentialResolver
from open_chat_bridge.runtime.session_cache import SessionCache
from open_chat_bridge.schemas import parse_chat_request
from open_chat_bridge.settings import Settings, get_settings
from open_chat_bridge.streaming.events import StreamEvent
from open_chat_bridge.streaming.frames import iter_stream_events
from open_chat_bridge.streaming.synthesizer import ChatCompletionSynthesizer

app = FastAPI(
    title="Open Chat Bridge",
    description="OpenAI-compatible gateway in front of non-standard chat backends.",
    version="0.1.0",
)

logger = logging.getLogger("uvicorn.error")


@app.middleware("http")
async def auth_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    if not request.url.path.startswith("/v1") or request.method == "OPTIONS":
        return await call_next(request)

    resolver: CredentialResolver | None = getattr(app.state, "credential_resolver", None)
    if resolver is not None:
        auth_error = await resolver.authenticate_request(request)
        if auth_error is not None:
            return auth_error

    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins_list,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


def _build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            timeout=None,
            connect=max(0.1, settings.backend_connect_timeout_seconds),
            read=max(0.1, settings.backend_read_timeout_seconds),
            write=max(0.1, settings.backend_write_timeout_seconds),
            pool=max(0.1, settings.backend_pool_timeout_seconds),
        ),
        limits=httpx.Limits(max_connections=256, max_keepalive_connections=64),
    )


def _setup_optional_tracing(
    *,
    http_client: httpx.AsyncClient,
    settings: Settings,
) -> None:
    if not settings.observability_tracing_enabled:
        return
    try:
        from opentelemetry import trace
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("observability_tracing_unavailable reason=%s", str(exc))
        return

    provider = TracerProvider(
        resource=Resource.create({"service.name": settings.observability_service_name})
    )
    endpoint = settings.observability_otlp_endpoint
    if endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter,
            )

            provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint))
            )
        except ImportError as exc:
            logger.warning(
                "observability_otlp_exporter_unavailable reason=%s", str(exc)
            )
    trace.set_tracer_provider(provider)

    HTTPXClientInstrumentor().instrument_client(http_client)
    logger.info(
        "observability_tracing_enabled service=%s otlp_endpoint=%s",
        settings.observability_service_name,
        endpoint or "-",
    )


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    app.state.settings = settings
    app.state.http_client = _build_http_client(settings)
    _setup_optional_tracing(http_client=app.state.http_client, settings=settings)
    registry = build_backend_registry(settings, client_getter=lambda: app.state.http_client)
    app.state.backend_registry = registry
    app.state.credential_resolver = CredentialResolver(settings.default_authkeys_list)
    app.state.session_caches = {
        backend.name: SessionCache() for backend in registry if backend.supports_sessions
    }
    app.state.started_at = int(time.time())
    logger.info(
        "startup complete backends=%s models=%d default_model=%s default_authkeys=%d",
        ",".join(
            f"{backend.name}:{len(backend.default_pool)}" for backend in registry
        ),
        len(registry.available_models()),
        settings.default_model,
        len(settings.default_authkeys_list),
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    http_client: httpx.AsyncClient | None = getattr(app.state, "http_client", None)
    if http_client is not None:
        await http_client.aclose()
    logger.info("shutdown complete")


@app.exception_handler(GatewayError)
async def gateway_error_handler(_: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
        headers=exc.headers,
    )


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "status": "ok",
        "message": "API is healthy",
        "timestamp": datetime.now(UTC).isoformat(),
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/v1/models")
async def models() -> dict[str, Any]:
    registry: BackendRegistry = app.state.backend_registry
    return registry.models_response(created=app.state.started_at)


async def _resolve_session_handle(
    backend: ChatBackend,
    credential: str,
    conversation_id: str | None,
    request_id: str,
) -> str | None:
    if not backend.supports_sessions:
        if conversation_id is not None:
            logger.info(
                "conversation_ignored request_id=%s backend=%s conversation_id=%s",
                request_id,
                backend.name,
                conversation_id,
            )
        return None

    if conversation_id is None:
        return await backend.create_session(credential)

    session_caches: dict[str, SessionCache] = app.state.session_caches
    return await session_caches[backend.name].get_or_create(
        conversation_id, lambda: backend.create_session(credential)
    )


async def _close_upstream(
    events: AsyncGenerator[StreamEvent, None], upstream: httpx.Response
) -> None:
    try:
        await events.aclose()
    finally:
        await upstream.aclose()


class UpstreamStreamingResponse(StreamingResponse):
    """Streaming response that releases its upstream however the send ends.

    Starlette never closes ``body_iterator``, so a client that disconnects
    before or during the body would otherwise leave the upstream response
    open until garbage collection.
    """

    def __init__(
        self,
        content: AsyncIterable[bytes],
        *,
        on_close: Callable[[], Awaitable[None]],
        **kwargs: Any,
    ) -> None:
        super().__init__(content, **kwargs)
        self._on_close = on_close

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self._on_close()


async def _chat_completion(request: Request, conversation_id: str | None) -> Response:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise InvalidChatRequestError(f"Expected JSON body: {exc}") from exc

    chat_request = parse_chat_request(payload)
    settings: Settings = app.state.settings
    registry: BackendRegistry = app.state.backend_registry
    resolver: CredentialResolver = app.state.credential_resolver

    model = chat_request.model or settings.default_model
    backend = registry.resolve(model)
    backend.validate_request(chat_request)

    request_id = (
        request.headers.get("x-request-id")
        or request.headers.get("x-correlation-id")
        or uuid4().hex[:12]
    )
    logger.info(
        "chat_request request_id=%s backend=%s model=%s stream=%s messages=%d conversation_id=%s",
        request_id,
        backend.name,
        model,
        chat_request.stream,
        len(chat_request.messages),
        conversation_id,
    )

    credential = await resolver.acquire_credential(
        request.headers.get("authorization"), backend
    )
    session_handle = await _resolve_session_handle(
        backend, credential, conversation_id, request_id
    )
    upstream = await backend.open_completion_stream(
        chat_request,
        model=model,
        credential=credential,
        session_handle=session_handle,
        request_id=request_id,
    )

    events = iter_stream_events(upstream.aiter_bytes(), backend.dialect)
    synthesizer = ChatCompletionSynthesizer(model=model)
    response_headers = {
        "x-bridge-request-id": request_id,
        "x-bridge-backend": backend.name,
    }

    if chat_request.stream:

        async def stream_generator() -> AsyncGenerator[bytes, None]:
            try:
                async with aclosing(synthesizer.stream(events)) as frames:
                    async for frame in frames:
                        yield frame
            except (asyncio.CancelledError, GeneratorExit):
                logger.info(
                    "chat_stream_client_disconnected request_id=%s completion_id=%s",
                    request_id,
                    synthesizer.completion_id,
                )
                raise

        stream_body = stream_generator()

        async def release() -> None:
            try:
                await stream_body.aclose()
            finally:
                await _close_upstream(events, upstream)

        return UpstreamStreamingResponse(
            content=stream_body,
            on_close=release,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", **response_headers},
        )

    try:
        body = await synthesizer.aggregate(events)
    finally:
        await _close_upstream(events, upstream)
    return JSONResponse(content=body, headers=response_headers)


@app.post("/v1/chat/completions")
async def chat_completions(request: Request) -> Response:
    return await _chat_completion(request, conversation_id=None)


@app.post("/v1/chat/completions/{conversation_id}")
async def chat_completions_with_conversation(
    conversation_id: str, request: Request
) -> Response:
    return await _chat_completion(request, conversation_id=conversation_id)


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "open_chat_bridge.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=False,
    )


if __name__ == "__main__":
    run()
