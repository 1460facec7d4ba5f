"""Per-document asyncio locks.

Submission and delivery for the same document run one at a time within a
process; different documents never wait on each other.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class DocumentLockRegistry:
    def __init__(self) -> None:
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._waiters: dict[uuid.UUID, int] = {}

    @asynccontextmanager
    async def hold(self, document_id: uuid.UUID) -> AsyncIterator[None]:
        lock = self._locks.setdefault(document_id, asyncio.Lock())
        self._waiters[document_id] = self._waiters.get(document_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[document_id] -= 1
            if self._waiters[document_id] == 0:
                del self._waiters[document_id]
                self._locks.pop(document_id, None)

    def is_locked(self, document_id: uuid.UUID) -> bool:
        lock = self._locks.get(document_id)
        return lock is not None and lock.locked()


document_locks = DocumentLockRegistry()
