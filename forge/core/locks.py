"""FORGE - In-process per-key locks.

Commands lock the set of keys they touch (stock keys, source documents,
sequences) before mutating anything. Keys are acquired in a stable order so
two commands with overlapping key sets cannot deadlock, and commands with
disjoint key sets never wait on each other. Row locks taken by the ledger
(``SELECT ... FOR UPDATE``) cover multi-process deployments on PostgreSQL.
"""
import asyncio
import logging
from collections.abc import AsyncIterator, Hashable, Iterable
from contextlib import asynccontextmanager

from forge.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


def _sort_key(key: Hashable) -> tuple:
    if isinstance(key, tuple):
        return tuple(str(part) for part in key)
    return (str(key),)


class KeyedLock:
    """A registry of asyncio locks created on demand and dropped when idle."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    def _ref(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        return lock

    def _unref(self, key: Hashable) -> None:
        remaining = self._waiters[key] - 1
        if remaining:
            self._waiters[key] = remaining
        else:
            del self._waiters[key]
            del self._locks[key]

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def acquire(self, keys: Iterable[Hashable], timeout: float) -> AsyncIterator[None]:
        ordered = sorted(set(keys), key=_sort_key)
        acquired: list[Hashable] = []
        try:
            for key in ordered:
                lock = self._ref(key)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout)
                except asyncio.TimeoutError:
                    self._unref(key)
                    logger.warning("Lock timeout on %s after %.1fs", key, timeout)
                    raise LockTimeoutError(ordered) from None
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._unref(key)


stock_locks = KeyedLock()
