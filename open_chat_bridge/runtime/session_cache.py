from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from open_chat_bridge.errors import SessionCreationError

logger = logging.getLogger("uvicorn.error")

SessionFactory = Callable[[], Awaitable[str]]


class SessionCache:
    """Maps external conversation ids to upstream session handles.

    Handles are created lazily and at most once per conversation id. The
    check-create-insert sequence for an id runs under that id's lock, so a
    concurrent first use waits for the leader and then reads its handle.
    A failed creation leaves no entry behind and the next call retries.
    An id's lock is dropped as soon as no caller holds or awaits it.
    """

    def __init__(self) -> None:
        self._handles: dict[str, str] = {}
        self._creation_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._handles

    @property
    def pending_creations(self) -> int:
        return len(self._creation_locks)

    def get(self, conversation_id: str) -> str | None:
        return self._handles.get(conversation_id)

    async def get_or_create(
        self, conversation_id: str, create: SessionFactory
    ) -> str:
        handle = self._handles.get(conversation_id)
        if handle is not None:
            logger.debug(
                "session_cache_hit conversation_id=%s handle=%s",
                conversation_id,
                handle,
            )
            return handle

        lock = self._creation_locks.setdefault(conversation_id, asyncio.Lock())
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                return await self._create_locked(conversation_id, create)
        finally:
            self._release_lock(conversation_id)

    async def _create_locked(
        self, conversation_id: str, create: SessionFactory
    ) -> str:
        handle = self._handles.get(conversation_id)
        if handle is not None:
            return handle

        logger.info("session_cache_create conversation_id=%s", conversation_id)
        created = await create()
        if not isinstance(created, str) or not created.strip():
            raise SessionCreationError(
                "Upstream session bootstrap returned no identifier."
            )
        handle = created.strip()
        self._handles[conversation_id] = handle
        logger.info(
            "session_cache_stored conversation_id=%s handle=%s",
            conversation_id,
            handle,
        )
        return handle

    def _release_lock(self, conversation_id: str) -> None:
        remaining = self._lock_users[conversation_id] - 1
        if remaining:
            self._lock_users[conversation_id] = remaining
            return
        del self._lock_users[conversation_id]
        self._creation_locks.pop(conversation_id, None)
