"""Bounded Worker Pool (디스패치 루프)"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from app.tasks.models import ItemStatus, WorkItem
from app.tasks.priority_queue import PriorityQueue

logger = logging.getLogger(__name__)

MIN_WORKERS = 1
MAX_WORKERS = 10

ItemHandler = Callable[[WorkItem], Awaitable[None]]


def clamp_workers(value: int) -> int:
    return max(MIN_WORKERS, min(MAX_WORKERS, int(value)))


class WorkerPool:
    """
    동시 처리 아이템 수를 max_workers 이하로 제한하는 워커 풀.

    디스패치 결정(아이템 claim + 카운터 증가)은 동기 함수 dispatch() 안에서만
    일어나므로 같은 아이템이 두 번 claim되지 않는다. 파이프라인 실행은
    asyncio 태스크로 동시에 진행된다.

    디스패치 루프는 interval마다 깨어나며, wake() 호출(enqueue, 워커 종료)
    시에는 즉시 깨어난다.
    """

    def __init__(
        self,
        queue: PriorityQueue,
        handler: ItemHandler,
        max_workers: int = 3,
        interval: float = 1.0,
    ) -> None:
        self.queue = queue
        self.handler = handler
        self.interval = interval
        self._max_workers = clamp_workers(max_workers)
        self._active = 0
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._loop_task: Optional[asyncio.Task] = None
        self._stopping = False
        self._inflight: Set[asyncio.Task] = set()

    @property
    def active_workers(self) -> int:
        return self._active

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def set_max_workers(self, value: int) -> int:
        """[1, 10]로 제한해 적용한다. 다음 디스패치 사이클부터 반영된다."""
        self._max_workers = clamp_workers(value)
        logger.info(f"Max concurrent workers set to {self._max_workers}")
        self.wake()
        return self._max_workers

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._loop_task = asyncio.create_task(self._run())
        logger.info(f"Worker pool started (max_workers={self._max_workers})")

    async def stop(self) -> None:
        """
        디스패치 루프를 멈추고 실행 중인 파이프라인이 끝날 때까지 기다린다.

        루프 태스크를 cancel하지 않고 _stopping 플래그와 wakeup으로 종료시킨다.
        """
        self._stopping = True
        self._wakeup.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("Worker pool stopped.")

    def wake(self) -> None:
        self._update_idle()
        self._wakeup.set()

    def dispatch(self) -> int:
        """빈 슬롯만큼 pending 아이템을 claim하고 파이프라인을 시작한다."""
        started = 0
        now = asyncio.get_running_loop().time()
        while self._active < self._max_workers:
            item = self.queue.peek_next_pending(now)
            if item is None:
                break
            item.transition(ItemStatus.PROCESSING)
            self._active += 1
            task = asyncio.create_task(self._execute(item))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            started += 1
        self._update_idle()
        return started

    async def join(self) -> None:
        """큐가 비고 실행 중인 워커가 없을 때까지 기다린다."""
        self._update_idle()
        await self._idle.wait()

    async def _run(self) -> None:
        while not self._stopping:
            self.dispatch()
            self._wakeup.clear()
            waiter = asyncio.ensure_future(self._wakeup.wait())
            try:
                await asyncio.wait({waiter}, timeout=self.interval)
            finally:
                if not waiter.done():
                    waiter.cancel()

    async def _execute(self, item: WorkItem) -> None:
        try:
            await self.handler(item)
        except Exception:
            logger.exception(f"Unhandled error while processing item {item.item_id}")
        finally:
            self._active -= 1
            self.wake()

    def _update_idle(self) -> None:
        if self._active == 0 and len(self.queue) == 0:
            self._idle.set()
        else:
            self._idle.clear()
