"""Tests for the priority request queue."""

import asyncio

import pytest

from governor.app.exceptions import QueueClearedError
from governor.app.services.request_queue import PriorityRequestQueue


def blocking_operation(gate: asyncio.Event, result="blocker"):
    async def run():
        await gate.wait()
        return result
    return run


class TestPriorityRequestQueue:
    """Tests for concurrency bounds and drain order."""

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            PriorityRequestQueue(max_concurrency=0)

    @pytest.mark.asyncio
    async def test_returns_result(self):
        queue = PriorityRequestQueue(max_concurrency=2)

        async def work():
            return 42

        assert await queue.enqueue(work) == 42

    @pytest.mark.asyncio
    async def test_higher_priority_runs_first(self):
        """With one slot busy, [5a, 1, 5b, 3] drain as [5a, 5b, 3, 1]."""
        queue = PriorityRequestQueue(max_concurrency=1)
        gate = asyncio.Event()
        order = []

        def record(name):
            async def run():
                order.append(name)
                return name
            return run

        blocker = queue.enqueue(blocking_operation(gate))
        futures = [
            queue.enqueue(record("5a"), priority=5),
            queue.enqueue(record("1"), priority=1),
            queue.enqueue(record("5b"), priority=5),
            queue.enqueue(record("3"), priority=3),
        ]
        assert queue.queue_size() == 4

        gate.set()
        await blocker
        await asyncio.gather(*futures)

        assert order == ["5a", "5b", "3", "1"]

    @pytest.mark.asyncio
    async def test_concurrency_cap(self):
        queue = PriorityRequestQueue(max_concurrency=4)
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        futures = [queue.enqueue(work) for _ in range(10)]

        assert queue.active_count() == 4
        assert queue.queue_size() == 6

        await asyncio.gather(*futures)

        assert peak == 4
        assert queue.active_count() == 0
        assert queue.queue_size() == 0

    @pytest.mark.asyncio
    async def test_failure_propagates_and_frees_slot(self):
        queue = PriorityRequestQueue(max_concurrency=1)

        async def fail():
            raise ValueError("boom")

        async def succeed():
            return "ok"

        failing = queue.enqueue(fail)
        following = queue.enqueue(succeed)

        with pytest.raises(ValueError):
            await failing
        assert await following == "ok"
        assert queue.get_stats()["total_failed"] == 1

    @pytest.mark.asyncio
    async def test_clear_queue_fails_waiting_only(self):
        queue = PriorityRequestQueue(max_concurrency=1)
        gate = asyncio.Event()

        async def never_runs():
            raise AssertionError("cleared operation must not run")

        running = queue.enqueue(blocking_operation(gate, "done"))
        waiting = [queue.enqueue(never_runs, priority=p) for p in (1, 2, 3)]

        assert queue.clear_queue() == 3
        assert queue.queue_size() == 0

        for future in waiting:
            with pytest.raises(QueueClearedError):
                await future

        gate.set()
        assert await running == "done"
        assert queue.get_stats()["total_cleared"] == 3

    @pytest.mark.asyncio
    async def test_clear_empty_queue(self):
        queue = PriorityRequestQueue(max_concurrency=1)
        assert queue.clear_queue() == 0

    @pytest.mark.asyncio
    async def test_set_max_concurrency_drains(self):
        queue = PriorityRequestQueue(max_concurrency=1)
        gate = asyncio.Event()
        futures = [queue.enqueue(blocking_operation(gate)) for _ in range(3)]
        assert queue.active_count() == 1

        queue.set_max_concurrency(3)

        assert queue.active_count() == 3
        assert queue.queue_size() == 0
        gate.set()
        await asyncio.gather(*futures)

    def test_set_max_concurrency_rejects_zero(self):
        queue = PriorityRequestQueue(max_concurrency=1)
        with pytest.raises(ValueError):
            queue.set_max_concurrency(0)

    @pytest.mark.asyncio
    async def test_wait_idle(self):
        queue = PriorityRequestQueue(max_concurrency=2)
        done = []

        async def work():
            await asyncio.sleep(0)
            done.append(True)

        for _ in range(5):
            queue.enqueue(work)
        await queue.wait_idle()

        assert len(done) == 5
        assert queue.active_count() == 0

    @pytest.mark.asyncio
    async def test_stats(self):
        queue = PriorityRequestQueue(max_concurrency=2)
        gate = asyncio.Event()
        futures = [queue.enqueue(blocking_operation(gate)) for _ in range(3)]

        stats = queue.get_stats()
        assert stats["active"] == 2
        assert stats["waiting"] == 1
        assert stats["limit"] == 2
        assert stats["available"] == 0
        assert stats["utilization"] == 1.0

        gate.set()
        await asyncio.gather(*futures)
        assert queue.get_stats()["total_processed"] == 3
