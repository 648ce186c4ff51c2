"""
Session cache: the shared, lock-owned endpoint table.

One SessionCache is built by the composition root and handed to both the
convergence manager and the API handlers. It is the only table of live
endpoints in the process. Single operations take the lock themselves;
compound read-modify-write sequences (open-then-record, close-then-delete)
run inside ``hold()`` so a concurrent pass or handler cannot interleave on
the same entry.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from kohakuport.models.tunnel import Endpoint


class SessionCache:
    """Lock-guarded mapping of container id to live Endpoint."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._endpoints: dict[str, Endpoint] = {}

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[dict[str, Endpoint]]:
        """
        Hold the cache lock and expose the raw table.

        The lock is released on every exit path, including exceptions and
        cancellation.
        """
        async with self._lock:
            yield self._endpoints

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    async def get(self, container_id: str) -> Endpoint | None:
        async with self._lock:
            return self._endpoints.get(container_id)

    async def set(self, endpoint: Endpoint) -> None:
        async with self._lock:
            self._endpoints[endpoint.container_id] = endpoint

    async def delete(self, container_id: str) -> Endpoint | None:
        async with self._lock:
            return self._endpoints.pop(container_id, None)

    async def list(self) -> list[Endpoint]:
        async with self._lock:
            return list(self._endpoints.values())

    async def as_dict(self) -> dict[str, Endpoint]:
        async with self._lock:
            return dict(self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)
