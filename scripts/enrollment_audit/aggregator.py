"""Bounded fan-out over a collection of items and a shared result accumulator."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Awaitable, Callable, Generic, Iterable, Mapping, Optional, TypeVar

logger = logging.getLogger("enrollment_audit.aggregator")

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ItemOutcome(Generic[T, R]):
    item: T
    result: Optional[R] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BoundedConcurrentAggregator:
    """Run an async worker over every item with at most max_concurrency in flight.

    A fixed pool of worker tasks drains one shared iterator, so no more than
    max_concurrency workers exist at any instant and each item is taken
    exactly once. Worker exceptions are captured in the returned outcomes;
    run() only returns once every item has been processed. Outcomes are in
    completion order.
    """

    def __init__(self, max_concurrency: int) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency

    async def run(
        self,
        items: Iterable[T],
        worker: Callable[[T], Awaitable[R]],
    ) -> list[ItemOutcome[T, R]]:
        pending = list(items)
        if not pending:
            return []

        source = iter(pending)
        outcomes: list[ItemOutcome[T, R]] = []

        async def drain() -> None:
            for item in source:
                try:
                    result = await worker(item)
                except Exception as exc:
                    logger.debug("Worker failed for %r: %s", item, exc)
                    outcomes.append(ItemOutcome(item=item, error=exc))
                else:
                    outcomes.append(ItemOutcome(item=item, result=result))

        tasks = [
            asyncio.create_task(drain())
            for _ in range(min(self.max_concurrency, len(pending)))
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return outcomes


class Accumulator:
    """Per-key non-negative counts plus a run-wide success flag.

    Every mutation holds a lock and never awaits, so concurrent workers
    cannot interleave a read-modify-write. The success flag only ever goes
    from True to False.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}
        self._success = True

    def add(self, key: str, amount: int = 1) -> int:
        if amount < 0:
            raise ValueError("amount must be non-negative")
        with self._lock:
            value = self._counts.get(key, 0) + amount
            self._counts[key] = value
            return value

    def mark_failed(self) -> None:
        with self._lock:
            self._success = False

    def record(self, ok: bool) -> None:
        if not ok:
            self.mark_failed()

    @property
    def success(self) -> bool:
        return self._success

    def count(self, key: str) -> int:
        return self._counts.get(key, 0)

    def total(self) -> int:
        with self._lock:
            return sum(self._counts.values())

    def snapshot(self) -> Mapping[str, int]:
        """Immutable copy of the counts, for reporting."""
        with self._lock:
            return MappingProxyType(dict(self._counts))
