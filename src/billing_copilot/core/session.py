"""Per-conversation serialisation of turns."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from billing_copilot.log import get_logger

logger = get_logger(__name__)


class ConversationLocks:
    """Hands out one asyncio.Lock per conversation id.

    Two turns on the same conversation run one after the other; turns on
    different conversations are independent. Locks are dropped once no turn
    holds or waits for them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, conversation_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._waiters[conversation_id] = self._waiters.get(conversation_id, 0) + 1
        if lock.locked():
            logger.info("conversation_busy", conversation_id=conversation_id)
        try:
            async with lock:
                yield
        finally:
            remaining = self._waiters[conversation_id] - 1
            if remaining:
                self._waiters[conversation_id] = remaining
            else:
                del self._waiters[conversation_id]
                del self._locks[conversation_id]

    def active(self) -> list[str]:
        return list(self._locks)
