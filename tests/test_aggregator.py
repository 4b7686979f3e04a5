"""Unit tests for BoundedConcurrentAggregator and Accumulator."""

import asyncio
import threading

import pytest

from scripts.enrollment_audit.aggregator import Accumulator, BoundedConcurrentAggregator


class InFlightTracker:
    def __init__(self) -> None:
        self.current = 0
        self.peak = 0
        self.seen: list[int] = []

    async def __call__(self, item: int) -> int:
        self.current += 1
        self.peak = max(self.peak, self.current)
        try:
            await asyncio.sleep(0.001)
            self.seen.append(item)
            return item * 2
        finally:
            self.current -= 1


class TestBoundedConcurrentAggregator:
    """Tests for the bounded fan-out."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ceiling", [1, 5, 40])
    async def test_each_item_visited_once_within_ceiling(self, ceiling):
        """Every item is processed exactly once and in-flight never exceeds the ceiling."""
        tracker = InFlightTracker()
        outcomes = await BoundedConcurrentAggregator(ceiling).run(range(40), tracker)

        assert sorted(tracker.seen) == list(range(40))
        assert len(outcomes) == 40
        assert tracker.peak <= ceiling
        assert sorted(o.result for o in outcomes) == [i * 2 for i in range(40)]

    @pytest.mark.asyncio
    async def test_ceiling_is_reached(self):
        """With enough items the pool actually runs ceiling workers at once."""
        tracker = InFlightTracker()
        await BoundedConcurrentAggregator(5).run(range(20), tracker)
        assert tracker.peak == 5

    @pytest.mark.asyncio
    async def test_failures_do_not_short_circuit(self):
        """A failing item is reported and the rest still run."""

        async def worker(item: int) -> int:
            if item % 3 == 0:
                raise ValueError(f"bad {item}")
            return item

        outcomes = await BoundedConcurrentAggregator(4).run(range(9), worker)

        failed = sorted(o.item for o in outcomes if not o.ok)
        succeeded = sorted(o.item for o in outcomes if o.ok)
        assert failed == [0, 3, 6]
        assert succeeded == [1, 2, 4, 5, 7, 8]
        assert all(isinstance(o.error, ValueError) for o in outcomes if not o.ok)

    @pytest.mark.asyncio
    async def test_empty_items(self):
        """No items means no outcomes and no worker calls."""

        async def worker(item):
            raise AssertionError("worker must not run")

        assert await BoundedConcurrentAggregator(3).run([], worker) == []

    def test_rejects_non_positive_ceiling(self):
        """A ceiling below one is invalid."""
        with pytest.raises(ValueError):
            BoundedConcurrentAggregator(0)


class TestAccumulator:
    """Tests for the shared counters."""

    def test_add_and_total(self):
        acc = Accumulator()
        acc.add("a")
        acc.add("a", 4)
        acc.add("b", 2)
        assert acc.count("a") == 5
        assert acc.count("missing") == 0
        assert acc.total() == 7

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            Accumulator().add("a", -1)

    def test_success_flag_is_monotonic(self):
        """Once failed, recording successes never restores the flag."""
        acc = Accumulator()
        assert acc.success is True
        acc.record(True)
        assert acc.success is True
        acc.record(False)
        acc.record(True)
        assert acc.success is False

    def test_snapshot_is_read_only_copy(self):
        acc = Accumulator()
        acc.add("a", 1)
        snap = acc.snapshot()
        acc.add("a", 1)
        assert snap["a"] == 1
        with pytest.raises(TypeError):
            snap["a"] = 5

    def test_concurrent_threads_do_not_lose_updates(self):
        """Increments from many threads all land."""
        acc = Accumulator()

        def bump():
            for _ in range(1000):
                acc.add("n")

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert acc.count("n") == 8000

    @pytest.mark.asyncio
    async def test_concurrent_workers_sum_correctly(self):
        """Totals from a bounded fan-out equal the sum of per-item contributions."""
        acc = Accumulator()

        async def worker(item: int) -> None:
            await asyncio.sleep(0)
            acc.add("sum", item)

        await BoundedConcurrentAggregator(7).run(range(100), worker)
        assert acc.count("sum") == sum(range(100))
