"""Per-namespace serialization of admission reviews and resizes."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from ..exceptions import NamespaceBusyError
from ..models.domain.expansion import LockMode

__all__ = ["NamespaceLocks"]


class NamespaceLocks:
    """Registry of one lock per namespace.

    Locks are created the first time a namespace is seen. The registry is
    bounded: once it holds more than ``max_size`` locks, the least recently
    used locks that are neither held nor awaited are discarded. A discarded
    lock is recreated on next use, which is safe because nothing refers to
    it any more.

    Parameters
    ----------
    max_size
        Number of locks above which idle locks are discarded.
    """

    def __init__(self, max_size: int = 1024) -> None:
        self._max_size = max_size
        self._locks: OrderedDict[str, asyncio.Lock] = OrderedDict()
        self._waiters: dict[str, int] = {}

    def __contains__(self, namespace: str) -> bool:
        return namespace in self._locks

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def lock(
        self, namespace: str, mode: LockMode = LockMode.BLOCKING
    ) -> AsyncIterator[None]:
        """Hold the lock for a namespace.

        Parameters
        ----------
        namespace
            Namespace to lock.
        mode
            With ``blocking``, wait for any current holder to release the
            lock. With ``reject``, fail immediately if it is held.

        Raises
        ------
        NamespaceBusyError
            Raised in ``reject`` mode if the lock is already held.
        """
        lock = self._get(namespace)
        # Holders and queued waiters are both counted in _waiters.
        if mode == LockMode.REJECT and (
            lock.locked() or namespace in self._waiters
        ):
            raise NamespaceBusyError(namespace)
        self._waiters[namespace] = self._waiters.get(namespace, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[namespace] -= 1
            if not self._waiters[namespace]:
                del self._waiters[namespace]
            self._evict()

    def _get(self, namespace: str) -> asyncio.Lock:
        lock = self._locks.get(namespace)
        if lock is not None:
            self._locks.move_to_end(namespace)
        else:
            lock = asyncio.Lock()
            self._locks[namespace] = lock
        return lock

    def _evict(self) -> None:
        """Discard idle locks, oldest first, until under the size limit."""
        excess = len(self._locks) - self._max_size
        if excess <= 0:
            return
        for namespace in list(self._locks):
            if excess <= 0:
                break
            if namespace in self._waiters:
                continue
            del self._locks[namespace]
            excess -= 1
