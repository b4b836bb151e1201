from __future__ import annotations

import asyncio

import pytest

from open_chat_bridge.errors import SessionCreationError
from open_chat_bridge.runtime.session_cache import SessionCache


def test_concurrent_first_use_creates_exactly_one_session() -> None:
    calls = {"count": 0}

    async def create() -> str:
        calls["count"] += 1
        await asyncio.sleep(0.01)
        return f"handle-{calls['count']}"

    async def scenario() -> list[str]:
        cache = SessionCache()
        return list(
            await asyncio.gather(
                *(cache.get_or_create("conv-1", create) for _ in range(10))
            )
        )

    handles = asyncio.run(scenario())

    assert calls["count"] == 1
    assert handles == ["handle-1"] * 10


def test_existing_handle_is_returned_without_calling_factory() -> None:
    async def scenario() -> tuple[str, str, int]:
        cache = SessionCache()
        calls = {"count": 0}

        async def create() -> str:
            calls["count"] += 1
            return "chat-abc"

        first = await cache.get_or_create("conv-1", create)
        second = await cache.get_or_create("conv-1", create)
        return first, second, calls["count"]

    first, second, count = asyncio.run(scenario())

    assert first == second == "chat-abc"
    assert count == 1


def test_distinct_conversations_get_distinct_handles() -> None:
    async def scenario() -> SessionCache:
        cache = SessionCache()
        counter = iter(range(100))

        async def create() -> str:
            await asyncio.sleep(0)
            return f"chat-{next(counter)}"

        await asyncio.gather(
            cache.get_or_create("conv-a", create),
            cache.get_or_create("conv-b", create),
        )
        return cache

    cache = asyncio.run(scenario())

    assert len(cache) == 2
    assert cache.get("conv-a") != cache.get("conv-b")


def test_failed_creation_is_not_cached_and_is_retried() -> None:
    attempts = {"count": 0}

    async def flaky_create() -> str:
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise SessionCreationError("upstream down")
        return "chat-recovered"

    async def scenario() -> tuple[SessionCache, str]:
        cache = SessionCache()
        with pytest.raises(SessionCreationError):
            await cache.get_or_create("conv-1", flaky_create)
        assert "conv-1" not in cache
        handle = await cache.get_or_create("conv-1", flaky_create)
        return cache, handle

    cache, handle = asyncio.run(scenario())

    assert handle == "chat-recovered"
    assert cache.get("conv-1") == "chat-recovered"
    assert attempts["count"] == 2


def test_blank_handle_is_rejected_and_not_cached() -> None:
    async def create() -> str:
        return "  "

    async def scenario() -> SessionCache:
        cache = SessionCache()
        with pytest.raises(SessionCreationError):
            await cache.get_or_create("conv-1", create)
        return cache

    cache = asyncio.run(scenario())

    assert len(cache) == 0


def test_waiters_retry_after_leader_failure() -> None:
    attempts = {"count": 0}

    async def create() -> str:
        attempts["count"] += 1
        await asyncio.sleep(0.01)
        if attempts["count"] == 1:
            raise SessionCreationError("first attempt fails")
        return "chat-second"

    async def scenario() -> list[object]:
        cache = SessionCache()
        return list(
            await asyncio.gather(
                cache.get_or_create("conv-1", create),
                cache.get_or_create("conv-1", create),
                cache.get_or_create("conv-1", create),
                return_exceptions=True,
            )
        )

    results = asyncio.run(scenario())

    assert isinstance(results[0], SessionCreationError)
    assert results[1:] == ["chat-second", "chat-second"]
    assert attempts["count"] == 2


def test_creation_locks_are_dropped_after_success_and_failure() -> None:
    attempts = {"count": 0}

    async def create() -> str:
        attempts["count"] += 1
        await asyncio.sleep(0.01)
        if attempts["count"] == 1:
            raise SessionCreationError("first attempt fails")
        return f"chat-{attempts['count']}"

    async def failing() -> str:
        raise SessionCreationError("never recovers")

    async def scenario() -> SessionCache:
        cache = SessionCache()
        await asyncio.gather(
            *(cache.get_or_create("conv-1", create) for _ in range(5)),
            return_exceptions=True,
        )
        assert cache.pending_creations == 0
        with pytest.raises(SessionCreationError):
            await cache.get_or_create("conv-abandoned", failing)
        return cache

    cache = asyncio.run(scenario())

    assert cache.pending_creations == 0
    assert cache.get("conv-1") == "chat-2"
    assert "conv-abandoned" not in cache
