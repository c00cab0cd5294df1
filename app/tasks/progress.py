"""Progress Aggregator

작업 진행률은 두 단계의 가중 합이다.
  - 완전 자동화: 수집 0~30%, 큐 등록 완료 40%, 아이템 처리 40~100%
  - 필터 자동화: 로그인 10%, 필터별 추출 20~60%, 아이템 처리 60~95%, 완료 100%
running 상태에서 진행률은 감소하지 않는다.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from app.tasks.events import EventBus, EventType
from app.tasks.models import TaskRecord, TaskStatus, WorkItem
from app.tasks.store import BaseStore

logger = logging.getLogger(__name__)

SCRAPING_SHARE = 30
QUEUED_PROGRESS = 40
PROCESSING_SHARE = 100 - QUEUED_PROGRESS

FILTER_LOGIN_PROGRESS = 10
FILTER_START = 20
FILTER_SHARE = 40
FILTER_PROCESS_START = FILTER_START + FILTER_SHARE
FILTER_PROCESS_SHARE = 35


def discovery_progress(percent: float) -> int:
    """수집 단계 진행률(0~100)을 작업 진행률(0~30)로 환산한다."""
    percent = max(0.0, min(100.0, percent))
    return int(percent * SCRAPING_SHARE / 100)


def processing_progress(processed: int, total: int) -> int:
    if total <= 0:
        return 100
    return min(100, QUEUED_PROGRESS + int(processed / total * PROCESSING_SHARE))


def filter_progress(index: int, count: int, percent: float = 0) -> float:
    """index번째 필터(0부터)의 percent 지점 진행률 (20~60%)"""
    span = FILTER_SHARE / max(count, 1)
    return FILTER_START + index * span + max(0.0, min(100.0, percent)) / 100 * span


def filter_item_progress(index: int, count: int) -> float:
    """index번째 아이템 처리 시작 시점 진행률 (60~95%)"""
    return FILTER_PROCESS_START + index / max(count, 1) * FILTER_PROCESS_SHARE


class ProgressAggregator:
    """아이템 완료를 작업 카운터/진행률에 반영하고 automationProgress를 발행한다."""

    def __init__(self, store: BaseStore, bus: EventBus) -> None:
        self.store = store
        self.bus = bus

    async def report(
        self,
        task: TaskRecord,
        progress: float,
        message: str,
        stage: str | None = None,
    ) -> int:
        """진행률을 갱신하고 발행한다. 종료된 작업은 저장/발행하지 않는다."""
        if task.is_terminal:
            return task.progress
        task.progress = max(task.progress, min(100, int(progress)))
        await self.store.save_task(task)
        self._emit(task, message, stage)
        return task.progress

    async def set_total(self, task: TaskRecord, total: int, progress: float, message: str) -> None:
        task.total_items = total
        task.processed_items = min(task.processed_items, total)
        await self.report(task, progress, message, stage="queuing")

    async def record_completion(
        self,
        task: TaskRecord,
        item: WorkItem,
        progress: float | None = None,
    ) -> bool:
        """성공한 아이템을 반영한다. 작업이 완료되면 True."""
        if task.is_terminal:
            logger.warning(f"Task {task.task_id} already {task.status.value}; ignoring completion of {item.item_id}")
            return False

        # 카운터 변경은 await 이전에 동기적으로 끝낸다
        task.processed_items = min(task.total_items, task.processed_items + 1)
        if progress is None:
            progress = processing_progress(task.processed_items, task.total_items)
        task.progress = max(task.progress, min(100, int(progress)))
        finished = self._settle(task)

        await self.store.save_task(task)
        self._emit(
            task,
            f"Image processed: {item.name} ({task.processed_items}/{task.total_items})",
            "processing",
        )
        return finished

    async def record_failure(self, task: TaskRecord, item: WorkItem) -> bool:
        """최종 실패한 아이템을 반영한다. processed_items는 변하지 않는다."""
        if task.is_terminal:
            return False
        task.failed_items += 1
        finished = self._settle(task)
        await self.store.save_task(task)
        if finished:
            self._emit(task, f"Automation finished ({task.failed_items} failed)", "processing")
        return finished

    async def complete(self, task: TaskRecord, message: str) -> None:
        if task.status == TaskStatus.FAILED:
            return
        if task.status == TaskStatus.PENDING:
            task.transition(TaskStatus.RUNNING)
        task.progress = 100
        task.transition(TaskStatus.COMPLETED)
        await self.store.save_task(task)
        self._emit(task, message, "completed")

    async def fail(self, task: TaskRecord, error: str) -> None:
        if task.is_terminal:
            return
        task.error = error
        task.transition(TaskStatus.FAILED)
        await self.store.save_task(task)

    def _settle(self, task: TaskRecord) -> bool:
        if task.status != TaskStatus.RUNNING:
            return False
        if task.processed_items + task.failed_items < task.total_items:
            return False
        task.progress = 100
        task.transition(TaskStatus.COMPLETED)
        return True

    def _emit(self, task: TaskRecord, message: str, stage: str | None) -> None:
        data: Dict[str, Any] = {
            "taskId": task.task_id,
            "progress": task.progress,
            "message": message,
        }
        if stage is not None:
            data["stage"] = stage
        self.bus.publish(EventType.AUTOMATION_PROGRESS, data)
