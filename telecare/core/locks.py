"""Critical sections keyed by scheduling scope.

Conflict-check-then-insert must not interleave for the same scope. Inside one
process an ``asyncio.Lock`` per key serializes callers; on PostgreSQL the
section additionally takes a transaction-scoped advisory lock so that several
worker processes serialize on the same keys. Keys are always taken in sorted
order so two callers needing overlapping key sets cannot deadlock.
"""
import asyncio
import hashlib
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


class KeyedLock:
    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def _acquire_ref(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        return lock

    def _release_ref(self, key: str) -> None:
        self._waiters[key] -= 1
        if self._waiters[key] == 0:
            # drop idle locks so the registry does not grow with every key ever seen
            del self._waiters[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        ordered = sorted(set(keys))
        acquired: list[str] = []
        try:
            for key in ordered:
                lock = self._acquire_ref(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._release_ref(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._release_ref(key)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())


def advisory_key(key: str) -> int:
    # signed 64-bit, as pg_advisory_xact_lock expects
    digest = hashlib.blake2b(key.encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


scope_locks = KeyedLock()
ticket_locks = KeyedLock()


@asynccontextmanager
async def scope_lock(session: AsyncSession, keys: Iterable[str], locks: KeyedLock | None = None) -> AsyncIterator[None]:
    """Hold the scope keys in-process and, on PostgreSQL, for the rest of the session's transaction."""
    ordered = sorted(set(keys))
    async with (locks or scope_locks).hold(*ordered):
        if session.get_bind().dialect.name == "postgresql":
            for key in ordered:
                await session.execute(text("SELECT pg_advisory_xact_lock(:k)"), {"k": advisory_key(key)})
        yield
