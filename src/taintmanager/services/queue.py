"""Queue of nodes waiting to be reconciled."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

__all__ = ["NodeChangeQueue"]


class NodeChangeQueue:
    """Deduplicating queue of node names.

    The resource cache adds a node whenever the node or one of its pods
    changes, and the reconciler takes nodes off the queue and evaluates them.
    A node already waiting in the queue is not added a second time, so a
    burst of pod updates on one node results in a single evaluation. Once a
    node is taken off the queue it may be added again.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._pending: set[str] = set()

    def __contains__(self, name: str) -> bool:
        return name in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    async def get(self) -> str:
        """Wait for and return the next node to reconcile."""
        name = await self._queue.get()
        self._pending.discard(name)
        return name

    def put(self, name: str) -> None:
        """Add a node to the queue unless it is already waiting."""
        if not name or name in self._pending:
            return
        self._pending.add(name)
        self._queue.put_nowait(name)

    def put_all(self, names: Iterable[str]) -> None:
        """Add several nodes to the queue."""
        for name in names:
            self.put(name)
