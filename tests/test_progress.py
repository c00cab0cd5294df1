"""진행률 계산 / ProgressAggregator 테스트."""

import pytest

from app.tasks.events import EventBus, EventType
from app.tasks.models import TaskKind, TaskRecord, TaskStatus, WorkItem
from app.tasks.progress import (
    ProgressAggregator,
    discovery_progress,
    filter_item_progress,
    filter_progress,
    processing_progress,
)


class TestWeights:
    def test_discovery_maps_to_first_30_percent(self):
        assert discovery_progress(0) == 0
        assert discovery_progress(50) == 15
        assert discovery_progress(100) == 30
        assert discovery_progress(150) == 30

    def test_processing_maps_to_40_to_100(self):
        assert processing_progress(0, 10) == 40
        assert processing_progress(5, 10) == 70
        assert processing_progress(10, 10) == 100
        assert processing_progress(0, 0) == 100

    def test_filter_weights(self):
        assert filter_progress(0, 2) == 20
        assert filter_progress(1, 2) == 40
        assert filter_progress(1, 2, percent=100) == 60
        assert filter_item_progress(0, 5) == 60
        assert filter_item_progress(5, 5) == 95


def _running_task(total: int) -> TaskRecord:
    task = TaskRecord(
        task_id="task-1",
        owner="admin",
        name="Full automation",
        kind=TaskKind.FULL_AUTOMATION,
        total_items=total,
    )
    task.transition(TaskStatus.RUNNING)
    return task


def _item(n: int) -> WorkItem:
    return WorkItem(
        item_id=f"item-{n}",
        task_id="task-1",
        owner="admin",
        source_url=f"https://images.example.com/{n}.jpg",
        name=f"item-{n}",
    )


class TestAggregator:
    @pytest.mark.asyncio
    async def test_progress_never_decreases_while_running(self, store):
        aggregator = ProgressAggregator(store, EventBus())
        task = _running_task(total=4)
        await store.create_task(task)

        await aggregator.report(task, 40, "queued")
        await aggregator.report(task, 25, "late discovery update")

        assert task.progress == 40
        assert (await store.get_task("task-1")).progress == 40

    @pytest.mark.asyncio
    async def test_completion_counts_and_finishes(self, store):
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append, [EventType.AUTOMATION_PROGRESS])
        aggregator = ProgressAggregator(store, bus)
        task = _running_task(total=2)
        await store.create_task(task)

        assert await aggregator.record_completion(task, _item(1)) is False
        assert task.progress == 70
        assert await aggregator.record_completion(task, _item(2)) is True

        assert task.status == TaskStatus.COMPLETED
        assert task.progress == 100
        assert task.processed_items == 2
        assert task.completed_at is not None
        assert seen[-1].data == {
            "taskId": "task-1",
            "progress": 100,
            "message": "Image processed: item-2 (2/2)",
            "stage": "processing",
        }

    @pytest.mark.asyncio
    async def test_failed_items_settle_task(self, store):
        """최종 실패 아이템도 완료 판정에 포함되지만 processed_items는 늘지 않는다."""
        aggregator = ProgressAggregator(store, EventBus())
        task = _running_task(total=2)
        await store.create_task(task)

        await aggregator.record_completion(task, _item(1))
        finished = await aggregator.record_failure(task, _item(2))

        assert finished is True
        assert task.status == TaskStatus.COMPLETED
        assert task.processed_items == 1
        assert task.failed_items == 1

    @pytest.mark.asyncio
    async def test_report_after_completion_is_not_emitted(self, store):
        """완료된 작업에 늦게 도착한 진행률 보고는 저장/발행되지 않는다."""
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append, [EventType.AUTOMATION_PROGRESS])
        aggregator = ProgressAggregator(store, bus)
        task = _running_task(total=1)
        await store.create_task(task)
        await aggregator.record_completion(task, _item(1))
        emitted = len(seen)

        assert await aggregator.report(task, 40, "All images queued", stage="queued") == 100

        assert len(seen) == emitted
        assert seen[-1].data["progress"] == 100
        assert (await store.get_task("task-1")).progress == 100

    @pytest.mark.asyncio
    async def test_terminal_task_ignores_updates(self, store):
        aggregator = ProgressAggregator(store, EventBus())
        task = _running_task(total=3)
        await store.create_task(task)
        await aggregator.report(task, 20, "scraping")
        await aggregator.fail(task, "scraper crashed")

        assert await aggregator.record_completion(task, _item(1)) is False
        await aggregator.report(task, 90, "ignored")

        assert task.status == TaskStatus.FAILED
        assert task.error == "scraper crashed"
        assert task.processed_items == 0
        assert task.progress == 20

    @pytest.mark.asyncio
    async def test_complete_empty_task(self, store):
        aggregator = ProgressAggregator(store, EventBus())
        task = _running_task(total=0)
        await store.create_task(task)

        await aggregator.complete(task, "No products to process")

        stored = await store.get_task("task-1")
        assert stored.status == TaskStatus.COMPLETED
        assert stored.progress == 100
