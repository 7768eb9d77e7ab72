"""Per-owner mutual exclusion for ledger mutations."""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator


class OwnerLockRegistry:
    """
    One asyncio.Lock per owner.

    Mutations for different owners run concurrently; mutations for the
    same owner run one at a time. The lock is not reentrant.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def acquire(self, owner_id: str) -> AsyncIterator[None]:
        async with self._locks[owner_id]:
            yield
