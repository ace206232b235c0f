"""Trigger mechanisms that invoke batch execution after a delay."""

import asyncio
import heapq
import itertools
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


class BatchTrigger(ABC):
    """Schedules future ``run_one(batch_number)`` calls for the coordinator."""

    @abstractmethod
    def arm(self, batch_number: int, delay: float = 0.0) -> bool:
        """Schedule a batch. Returns False when the trigger is unavailable."""

    @abstractmethod
    def cancel_all_pending(self) -> int:
        """Drop every armed batch. Returns how many were dropped."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether armed batches will actually be run."""

    @abstractmethod
    def pending_count(self) -> int:
        """Number of armed batches not yet run."""


class QueueTrigger(BatchTrigger):
    """
    In-process delayed queue.

    Nothing runs on its own: the owner drains it with ``run_pending``. Used by
    the CLI to drive a scan to completion in the foreground.
    """

    def __init__(self, available: bool = True):
        self.available = available
        self._queue: List[Tuple[float, int, int]] = []
        self._sequence = itertools.count()

    def arm(self, batch_number: int, delay: float = 0.0) -> bool:
        if not self.available:
            logger.warning("Trigger unavailable, batch not armed", batch_number=batch_number)
            return False
        due = time.monotonic() + max(delay, 0.0)
        heapq.heappush(self._queue, (due, next(self._sequence), batch_number))
        return True

    def cancel_all_pending(self) -> int:
        dropped = len(self._queue)
        self._queue.clear()
        return dropped

    def is_available(self) -> bool:
        return self.available

    def pending_count(self) -> int:
        return len(self._queue)

    def pop_next(self) -> Optional[Tuple[float, int]]:
        """Remove the earliest armed batch, returning (due, batch_number)."""
        if not self._queue:
            return None
        due, _, batch_number = heapq.heappop(self._queue)
        return due, batch_number

    async def run_pending(
        self,
        run_one: Callable[[int], Awaitable[object]],
        honor_delay: bool = True,
        on_batch: Optional[Callable[[int, object], None]] = None,
    ) -> int:
        """Run armed batches (and whatever they re-arm) until the queue is empty."""
        executed = 0
        while True:
            item = self.pop_next()
            if item is None:
                return executed
            due, batch_number = item
            if honor_delay:
                wait = due - time.monotonic()
                if wait > 0:
                    await asyncio.sleep(wait)
            result = await run_one(batch_number)
            executed += 1
            if on_batch is not None:
                on_batch(batch_number, result)
