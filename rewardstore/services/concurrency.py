"""
Per-key concurrency control for store actions.

KeyedLock (server): actions on the same (student, item) pair run one at a
time; actions on different pairs never wait on each other.

SingleFlightGuard (client): a second action on an item is rejected
outright while the first is still in flight.
"""

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from rewardstore.models.failure import OperationInFlightError


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLock:
    """
    A lock per key, created on demand and dropped when unused.

    Unlike a global lock, two keys never contend.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, _Entry] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()


class SingleFlightGuard:
    """Rejects a second operation for a key while one is in progress."""

    def __init__(self) -> None:
        self._in_flight: set[str] = set()

    @asynccontextmanager
    async def claim(self, key: str) -> AsyncIterator[None]:
        """
        Hold the key for the duration of the block.

        Raises:
            OperationInFlightError: key already claimed.
        """
        if key in self._in_flight:
            raise OperationInFlightError(key)
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight
