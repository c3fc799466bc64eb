import asyncio
import logging
from typing import Dict, Set

logger = logging.getLogger(__name__)


class WorkQueue:
    """Deduplicating queue of reconcile keys with per-key exponential backoff.

    A key is never handed to two workers at once: if it is added again while
    being processed, it is queued once more when that processing is done.
    """

    def __init__(self, base_delay: float = 1.0, max_delay: float = 300.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending: Set[str] = set()
        self._processing: Set[str] = set()
        self._dirty: Set[str] = set()
        self._failures: Dict[str, int] = {}

    def add(self, key: str):
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._pending:
            return
        self._pending.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float):
        loop = asyncio.get_running_loop()
        loop.call_later(delay, self.add, key)

    def add_rate_limited(self, key: str) -> float:
        """Re-queue a failed key; returns the delay applied"""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self.base_delay * (2 ** failures), self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str):
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> str:
        key = await self._queue.get()
        self._pending.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str):
        self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    def __len__(self):
        return self._queue.qsize()
