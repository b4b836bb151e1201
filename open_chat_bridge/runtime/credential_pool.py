from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

logger = logging.getLogger("uvicorn.error")


class CredentialPool:
    """Round-robin dispenser over an ordered set of opaque upstream credentials.

    The cursor advance happens under an ``asyncio.Lock`` so concurrent
    callers are served in arrival order and each turn hands out exactly one
    credential. An empty pool never raises; ``acquire_next`` returns ``None``
    and callers decide how to fail the request.
    """

    def __init__(self, credentials: Iterable[str], name: str = "unnamed") -> None:
        self.name = name
        self._credentials: tuple[str, ...] = tuple(
            value for value in (item.strip() for item in credentials) if value
        )
        self._cursor = 0
        self._lock = asyncio.Lock()
        logger.debug(
            "credential_pool_created pool=%s size=%d", self.name, len(self._credentials)
        )

    def __len__(self) -> int:
        return len(self._credentials)

    @property
    def is_empty(self) -> bool:
        return not self._credentials

    @property
    def cursor(self) -> int:
        return self._cursor

    async def acquire_next(self) -> str | None:
        if self.is_empty:
            logger.warning("credential_pool_empty pool=%s", self.name)
            return None

        async with self._lock:
            index = self._cursor
            credential = self._credentials[index]
            self._cursor = (index + 1) % len(self._credentials)
        logger.debug(
            "credential_pool_acquire pool=%s index=%d size=%d",
            self.name,
            index,
            len(self._credentials),
        )
        return credential
