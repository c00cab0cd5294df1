"""WorkerPool 동시성 제한/디스패치 테스트."""

import asyncio

import pytest

from app.tasks.models import ItemStatus, WorkItem
from app.tasks.pool import MAX_WORKERS, MIN_WORKERS, WorkerPool, clamp_workers
from app.tasks.priority_queue import PriorityQueue


def _item(item_id: str, priority: int = 1) -> WorkItem:
    return WorkItem(
        item_id=item_id,
        task_id="task-1",
        owner="admin",
        source_url=f"https://images.example.com/{item_id}.jpg",
        name=item_id,
        priority=priority,
    )


class RecordingHandler:
    """동시에 처리 중인 아이템 수의 최댓값을 기록하는 핸들러."""

    def __init__(self, queue: PriorityQueue, delay: float = 0.02) -> None:
        self.queue = queue
        self.delay = delay
        self.current = 0
        self.peak = 0
        self.order = []

    async def __call__(self, item: WorkItem) -> None:
        self.current += 1
        self.peak = max(self.peak, self.current)
        self.order.append(item.item_id)
        try:
            await asyncio.sleep(self.delay)
            item.transition(ItemStatus.COMPLETED)
            self.queue.remove(item.item_id)
        finally:
            self.current -= 1


class TestClamp:
    @pytest.mark.parametrize(
        "value, expected",
        [(0, MIN_WORKERS), (-3, MIN_WORKERS), (1, 1), (5, 5), (10, 10), (50, MAX_WORKERS)],
    )
    def test_clamp_workers(self, value, expected):
        assert clamp_workers(value) == expected

    def test_set_max_workers_returns_clamped_value(self):
        pool = WorkerPool(PriorityQueue(), handler=None)

        assert pool.set_max_workers(0) == 1
        assert pool.max_workers == 1
        assert pool.set_max_workers(50) == 10
        assert pool.max_workers == 10


class TestDispatch:
    @pytest.mark.asyncio
    async def test_never_exceeds_max_workers(self):
        """5개 아이템, max_workers=2 → 동시 처리 최대 2개, 모두 완료."""
        queue = PriorityQueue()
        handler = RecordingHandler(queue)
        pool = WorkerPool(queue, handler, max_workers=2, interval=0.01)
        items = [_item(f"item-{i}") for i in range(5)]
        for item in items:
            queue.enqueue(item)

        pool.start()
        await asyncio.wait_for(pool.join(), timeout=5)
        await pool.stop()

        assert handler.peak == 2
        assert len(queue) == 0
        assert all(item.status == ItemStatus.COMPLETED for item in items)
        assert pool.active_workers == 0

    @pytest.mark.asyncio
    async def test_dispatch_claims_only_free_slots(self):
        queue = PriorityQueue()
        handler = RecordingHandler(queue, delay=0.05)
        pool = WorkerPool(queue, handler, max_workers=2)
        for i in range(4):
            queue.enqueue(_item(f"item-{i}"))

        assert pool.dispatch() == 2
        assert pool.dispatch() == 0
        assert pool.active_workers == 2
        assert queue.count(ItemStatus.PROCESSING) == 2

        await pool.stop()

    @pytest.mark.asyncio
    async def test_dispatches_in_priority_order(self):
        queue = PriorityQueue()
        handler = RecordingHandler(queue, delay=0)
        pool = WorkerPool(queue, handler, max_workers=1, interval=0.01)
        queue.enqueue(_item("low", priority=0))
        queue.enqueue(_item("high", priority=3))
        queue.enqueue(_item("normal", priority=1))

        pool.start()
        await asyncio.wait_for(pool.join(), timeout=5)
        await pool.stop()

        assert handler.order == ["high", "normal", "low"]

    @pytest.mark.asyncio
    async def test_raising_handler_releases_slot(self):
        queue = PriorityQueue()
        calls = []

        async def broken(item: WorkItem) -> None:
            calls.append(item.item_id)
            queue.remove(item.item_id)
            raise RuntimeError("boom")

        pool = WorkerPool(queue, broken, max_workers=1, interval=0.01)
        queue.enqueue(_item("a"))
        queue.enqueue(_item("b"))

        pool.start()
        await asyncio.wait_for(pool.join(), timeout=5)
        await pool.stop()

        assert calls == ["a", "b"]
        assert pool.active_workers == 0

    @pytest.mark.asyncio
    async def test_enqueue_wakes_idle_loop(self):
        """긴 interval이어도 wake()로 즉시 디스패치된다."""
        queue = PriorityQueue()
        handler = RecordingHandler(queue, delay=0)
        pool = WorkerPool(queue, handler, max_workers=1, interval=60)
        pool.start()
        await asyncio.sleep(0)

        queue.enqueue(_item("late"))
        pool.wake()
        await asyncio.wait_for(pool.join(), timeout=2)
        await pool.stop()

        assert handler.order == ["late"]


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_returns_after_work(self):
        """처리 직후 stop()을 반복해도 매번 바로 반환된다."""
        queue = PriorityQueue()
        handler = RecordingHandler(queue, delay=0)
        pool = WorkerPool(queue, handler, max_workers=2, interval=0.01)

        for round_no in range(20):
            pool.start()
            queue.enqueue(_item(f"item-{round_no}"))
            pool.wake()
            await asyncio.wait_for(pool.join(), timeout=2)
            await asyncio.wait_for(pool.stop(), timeout=1)

            assert not pool.running

        assert len(handler.order) == 20

    @pytest.mark.asyncio
    async def test_stop_waits_for_inflight_items(self):
        queue = PriorityQueue()
        handler = RecordingHandler(queue, delay=0.05)
        pool = WorkerPool(queue, handler, max_workers=1, interval=60)
        item = _item("slow")
        queue.enqueue(item)

        pool.start()
        await asyncio.sleep(0.01)
        await asyncio.wait_for(pool.stop(), timeout=1)

        assert item.status == ItemStatus.COMPLETED
        assert pool.active_workers == 0

    @pytest.mark.asyncio
    async def test_stop_before_start(self):
        pool = WorkerPool(PriorityQueue(), handler=None)

        await asyncio.wait_for(pool.stop(), timeout=1)

        assert not pool.running
