"""Queue Manager (자동화 오케스트레이터)

수집 → 배경 제거 → 저장 파이프라인을 여러 아이템에 대해 순서대로 조율한다.

- 완전 자동화: 수집 결과를 큐에 넣고 워커 풀(동시 처리 제한)이 처리한다.
- 필터 자동화: 하나의 브라우저 세션을 공유하므로 필터와 아이템을 순차 인라인 처리한다.

두 경로 모두 같은 PipelineRunner를 사용한다.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Coroutine, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

from app import config
from app.clients.scraper import BaseScraper, ScrapedProduct
from app.tasks.errors import ConfigurationError, DiscoveryError
from app.tasks.events import EventBus, EventType, Subscriber
from app.tasks.logs import AutomationLogger
from app.tasks.models import (
    FilterCredentials,
    GeneralSettings,
    ItemRecord,
    ItemStatus,
    QueueStatus,
    ScrapingSettings,
    StorageSettings,
    TaskKind,
    TaskRecord,
    TaskStatus,
    TransformSettings,
    WorkItem,
)
from app.tasks.pipeline import PipelineRunner
from app.tasks.pool import WorkerPool
from app.tasks.priority_queue import PriorityQueue
from app.tasks.progress import (
    FILTER_LOGIN_PROGRESS,
    FILTER_PROCESS_START,
    QUEUED_PROGRESS,
    SCRAPING_SHARE,
    ProgressAggregator,
    discovery_progress,
    filter_item_progress,
    filter_progress,
)
from app.tasks.retry import RetryPolicy
from app.tasks.store import BaseStore

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 1


class QueueManager:
    """자동화 작업과 처리 큐를 소유하는 오케스트레이터"""

    def __init__(
        self,
        store: BaseStore,
        scraper: BaseScraper,
        downloader,
        remover,
        writer,
        bus: EventBus | None = None,
        max_workers: int = config.MAX_CONCURRENT_WORKERS,
        dispatch_interval: float = config.DISPATCH_INTERVAL_SECONDS,
        max_retries: int = config.MAX_RETRIES,
        retry_delay: float = config.RETRY_DELAY_SECONDS,
        default_api_key: str | None = None,
    ) -> None:
        self.store = store
        self.scraper = scraper
        self.bus = bus or EventBus()
        self.log = AutomationLogger(store)
        self.queue = PriorityQueue(self.bus)
        self.retry_policy = RetryPolicy(delay_seconds=retry_delay)
        self.runner = PipelineRunner(store, self.log, downloader, remover, writer)
        self.progress = ProgressAggregator(store, self.bus)
        self.pool = WorkerPool(
            self.queue,
            self._process_item,
            max_workers=max_workers,
            interval=dispatch_interval,
        )
        self.max_retries = max_retries
        self.default_api_key = config.PIXIAN_API_KEY if default_api_key is None else default_api_key

        # 진행 중인 작업 (live 레코드) 과 작업별 처리 설정
        self._tasks: Dict[str, TaskRecord] = {}
        self._task_settings: Dict[str, Tuple[TransformSettings, StorageSettings]] = {}
        self._background: Set[asyncio.Task] = set()

    # ============================================================
    # 수명 주기 / 구독
    # ============================================================

    async def start(self) -> None:
        """디스패치 루프를 시작한다."""
        self.pool.start()

    async def stop(self) -> None:
        """백그라운드 수집과 실행 중인 파이프라인이 끝나길 기다린 뒤 멈춘다."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.pool.stop()
        await self.scraper.stop()

    def subscribe(
        self,
        callback: Subscriber,
        event_types: Iterable[EventType] | None = None,
    ) -> Callable[[], None]:
        return self.bus.subscribe(callback, event_types)

    async def wait_idle(self, timeout: float | None = None) -> None:
        """백그라운드 수집이 끝나고 큐가 빌 때까지 기다린다."""
        await asyncio.wait_for(self._wait_idle(), timeout=timeout)

    async def _wait_idle(self) -> None:
        while True:
            if self._background:
                await asyncio.gather(*list(self._background), return_exceptions=True)
                continue
            await self.pool.join()
            if not self._background:
                return

    # ============================================================
    # 작업
    # ============================================================

    async def create_task(
        self,
        owner: str,
        kind: TaskKind,
        name: str,
        config_snapshot: Dict[str, Any] | None = None,
    ) -> TaskRecord:
        record = TaskRecord(
            task_id=str(uuid.uuid4()),
            owner=owner,
            name=name,
            kind=kind,
            config=config_snapshot or {},
        )
        await self.store.create_task(record)
        return record

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        live = self._tasks.get(task_id)
        if live is not None:
            return live.model_copy(deep=True)
        return await self.store.get_task(task_id)

    async def start_full_automation(
        self,
        owner: str,
        scraping_config: ScrapingSettings,
        transform_config: TransformSettings | None = None,
        storage_config: StorageSettings | None = None,
    ) -> TaskRecord:
        """
        완전 자동화를 시작한다.

        설정 검증(API 키 등)은 작업 생성 전에 동기적으로 수행되며 실패 시
        ConfigurationError를 발생시킨다. 수집과 처리는 백그라운드에서 진행되고
        생성된 작업을 즉시 반환한다.
        """
        transform = await self._resolve_transform(owner, transform_config)
        storage = await self._resolve_storage(owner, storage_config)

        task = await self.create_task(
            owner,
            TaskKind.FULL_AUTOMATION,
            "Full automation",
            self._snapshot(scraping_config, transform, storage),
        )
        task.transition(TaskStatus.RUNNING)
        await self.store.save_task(task)
        self._track(task, transform, storage)

        await self.log.info(task.task_id, "Full automation started", owner=owner)

        snapshot = task.model_copy(deep=True)
        self.run_in_background(self._run_full_automation(task, scraping_config))
        return snapshot

    async def start_filtered_automation(
        self,
        task_id: str,
        owner: str,
        filters: List[str],
        credentials: FilterCredentials,
    ) -> None:
        """
        필터 자동화를 실행한다 (완료될 때까지 대기).

        필터는 하나의 브라우저 세션을 공유하므로 목록 순서대로 처리하고,
        수집된 아이템도 워커 풀을 거치지 않고 순서대로 처리한다.
        실행 중 오류는 작업 상태/로그로만 보고한다. 설정 검증에 실패하면
        작업을 failed로 표시한 뒤 ConfigurationError를 다시 발생시킨다.
        """
        task = self._tasks.get(task_id) or await self.store.get_task(task_id)
        if task is None:
            raise ConfigurationError(f"Task {task_id} not found")
        if task.is_terminal:
            raise ConfigurationError(f"Task {task_id} is already {task.status.value}")

        try:
            transform, storage = await self.validate_filtered_automation(owner, filters, credentials)
        except ConfigurationError as e:
            await self.progress.fail(task, str(e))
            await self.log.error(task_id, f"Filter automation failed: {e}", error=repr(e))
            raise

        self._track(task, transform, storage)
        try:
            await self._run_filtered_automation(task, filters, credentials, transform, storage)
        finally:
            self._untrack(task.task_id)

    async def validate_filtered_automation(
        self,
        owner: str,
        filters: List[str],
        credentials: FilterCredentials,
    ) -> Tuple[TransformSettings, StorageSettings]:
        """필터 자동화 설정을 검증한다. 실패 시 ConfigurationError."""
        if not filters:
            raise ConfigurationError("At least one filter is required")
        if not credentials.username or not credentials.password:
            raise ConfigurationError("Admin username and password are required")

        api_key = credentials.pixian_api_key
        transform = await self._resolve_transform(
            owner,
            TransformSettings(api_key=api_key) if api_key else None,
        )
        storage = await self._resolve_storage(owner, None)
        return transform, storage

    def run_in_background(self, coro: Coroutine[Any, Any, None]) -> None:
        """백그라운드 코루틴을 실행한다 (stop/wait_idle이 완료를 기다린다)."""
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background automation failed: {exc!r}", exc_info=exc)

    # ============================================================
    # 큐
    # ============================================================

    def add_to_queue(self, item: WorkItem) -> None:
        self.queue.enqueue(item)
        self.pool.wake()

    def get_queue_status(self) -> QueueStatus:
        active = self.pool.active_workers
        return QueueStatus(
            total_items=len(self.queue),
            pending_items=self.queue.count(ItemStatus.PENDING),
            processing_items=self.queue.count(ItemStatus.PROCESSING),
            active_workers=active,
            max_workers=self.pool.max_workers,
            is_processing=active > 0,
        )

    def set_max_concurrent_workers(self, value: int) -> int:
        """[1, 10]으로 제한해 적용하고 적용된 값을 반환한다."""
        return self.pool.set_max_workers(value)

    async def stop_scraping(self) -> None:
        """진행 중인 브라우저 세션을 중단한다."""
        await self.scraper.stop()

    # ============================================================
    # 완전 자동화
    # ============================================================

    async def _run_full_automation(self, task: TaskRecord, scraping: ScrapingSettings) -> None:
        task_id = task.task_id
        try:
            await self.log.info(task_id, "Product image scraping started", stage="scraping")

            async def on_progress(percent: float, message: str) -> None:
                await self.progress.report(task, discovery_progress(percent), message, stage="scraping")

            products = await self.scraper.discover(scraping, on_progress)

            await self.progress.set_total(
                task, len(products), SCRAPING_SHARE, f"{len(products)} products discovered"
            )
            if not products:
                await self.log.warning(task_id, "No products discovered", stage="scraping")
                await self.progress.complete(task, "No products to process")
                self._untrack(task_id)
                return

            await self.log.info(
                task_id,
                f"Adding {len(products)} product images to the processing queue",
                stage="queuing", product_count=len(products),
            )
            max_retries = await self._max_retries_for(task.owner)
            for product in products:
                item = await self._create_item(task, product, max_retries)
                self.add_to_queue(item)

            # 큐 등록 도중 모든 아이템이 끝났을 수 있다
            if not task.is_terminal:
                await self.progress.report(task, QUEUED_PROGRESS, "All images queued", stage="queued")
            await self.log.success(
                task_id, "All images added to the processing queue",
                stage="queued", queue_size=len(self.queue),
            )
        except Exception as e:
            logger.error(f"Full automation {task_id} failed: {e}")
            self._purge_task_items(task_id)
            await self.progress.fail(task, str(e))
            await self.log.error(task_id, f"Automation failed: {e}", error=repr(e))
            self._untrack(task_id)

    async def _process_item(self, item: WorkItem) -> None:
        """
        워커 풀 핸들러: 아이템 하나를 처리하고 성공/재시도/최종 실패를 반영한다.

        아이템 상태 전이와 큐 제거는 저장소 쓰기보다 먼저 일어나므로 저장소
        오류가 나도 아이템이 processing 상태로 남지 않는다.
        """
        task = self._tasks.get(item.task_id)
        if task is None or task.is_terminal:
            await self._discard_orphan(item)
            return

        self.bus.publish(EventType.ITEM_STARTED, {"item": item.model_dump(mode="json")})

        try:
            await self.log.info(
                item.task_id,
                f"Processing attempt {item.retries + 1}/{item.max_retries + 1}: {item.name}",
                item_id=item.item_id, attempt=item.retries + 1,
            )
            transform, storage = self._task_settings[item.task_id]
            await self.store.update_item(item.item_id, status=ItemStatus.PROCESSING)
            await self.runner.run(item, transform, storage)
        except Exception as e:
            await self._handle_processing_error(task, item, e)
            return

        item.transition(ItemStatus.COMPLETED)
        self.queue.remove(item.item_id)
        self.bus.publish(EventType.ITEM_COMPLETED, {"item": item.model_dump(mode="json")})

        finished = await self._guarded(
            self.progress.record_completion(task, item), f"Recording completion of {item.item_id}"
        )
        await self._settle(task, finished)

    async def _handle_processing_error(
        self,
        task: TaskRecord,
        item: WorkItem,
        error: Exception,
    ) -> None:
        decision = self.retry_policy.record_failure(item, now=asyncio.get_running_loop().time())
        if decision.retry:
            self.pool.wake()
        else:
            self.queue.remove(item.item_id)
            self.bus.publish(EventType.ITEM_FAILED, {"item": item.model_dump(mode="json")})

        await self._guarded(
            self.log.error(
                item.task_id,
                f"Image processing failed: {item.name} (attempt {decision.attempt}/{decision.max_attempts})",
                error=str(error), item_id=item.item_id, retries=item.retries,
            ),
            f"Logging failure of {item.item_id}",
        )
        if decision.retry:
            return

        await self._guarded(
            self.store.update_item(
                item.item_id,
                status=ItemStatus.FAILED,
                metadata={"error": str(error), "retries": item.retries},
            ),
            f"Marking item {item.item_id} failed",
        )
        finished = await self._guarded(
            self.progress.record_failure(task, item), f"Recording failure of {item.item_id}"
        )
        await self._settle(task, finished)

    async def _discard_orphan(self, item: WorkItem) -> None:
        """소속 작업이 종료되었거나 추적되지 않는 아이템을 최종 실패 처리한다."""
        item.transition(ItemStatus.FAILED)
        self.queue.remove(item.item_id)
        self.bus.publish(EventType.ITEM_FAILED, {"item": item.model_dump(mode="json")})
        await self._guarded(
            self.store.update_item(
                item.item_id,
                status=ItemStatus.FAILED,
                metadata={"error": "Task is no longer active"},
            ),
            f"Marking item {item.item_id} failed",
        )
        await self._guarded(
            self.log.warning(
                item.task_id,
                f"Skipped {item.name}: task is no longer active",
                item_id=item.item_id,
            ),
            f"Logging skipped item {item.item_id}",
        )

    async def _settle(self, task: TaskRecord, finished: bool | None) -> None:
        # 저장 실패로 결과를 모르면 메모리상의 상태로 판단한다
        if finished is None:
            finished = task.status == TaskStatus.COMPLETED and task.task_id in self._tasks
        if finished:
            await self._finish(task)

    async def _finish(self, task: TaskRecord) -> None:
        self._untrack(task.task_id)
        await self._guarded(
            self.log.success(
                task.task_id,
                f"Automation completed: {task.processed_items} processed, {task.failed_items} failed",
                processed_items=task.processed_items, failed_items=task.failed_items,
            ),
            f"Logging completion of task {task.task_id}",
        )

    @staticmethod
    async def _guarded(awaitable: Awaitable[Any], description: str) -> Any:
        """저장소 쓰기 실패를 기록만 하고 None을 반환한다 (아이템 상태는 이미 확정됨)."""
        try:
            return await awaitable
        except Exception:
            logger.exception(f"{description} failed")
            return None

    # ============================================================
    # 필터 자동화
    # ============================================================

    async def _run_filtered_automation(
        self,
        task: TaskRecord,
        filters: List[str],
        credentials: FilterCredentials,
        transform: TransformSettings,
        storage: StorageSettings,
    ) -> None:
        task_id = task.task_id
        try:
            if task.status == TaskStatus.PENDING:
                task.transition(TaskStatus.RUNNING)
            await self.log.info(
                task_id, f"Filter automation started: {', '.join(filters)}",
                filters=filters, owner=task.owner,
            )

            products = await self._extract_filters(task, filters, credentials)

            await self.progress.set_total(
                task, len(products), FILTER_PROCESS_START, f"{len(products)} images to process"
            )
            for index, product in enumerate(products):
                await self.progress.report(
                    task,
                    filter_item_progress(index, len(products)),
                    f"Removing background: {product.name} ({index + 1}/{len(products)})",
                    stage="processing",
                )
                item = await self._create_item(task, product, max_retries=0)
                await self._process_inline(task, item, transform, storage, index, len(products))

            await self.progress.complete(
                task, f"Automation complete! {len(products)} images processed"
            )
            await self.log.success(
                task_id,
                f"Filter automation completed: {len(products)} images",
                total_products=len(products), filters=filters,
                processed_items=task.processed_items, failed_items=task.failed_items,
            )
        except Exception as e:
            logger.error(f"Filter automation {task_id} failed: {e}")
            await self.progress.fail(task, str(e))
            await self.log.error(task_id, f"Filter automation failed: {e}", error=repr(e))

    async def _extract_filters(
        self,
        task: TaskRecord,
        filters: List[str],
        credentials: FilterCredentials,
    ) -> List[ScrapedProduct]:
        session_id = await self.scraper.open_session(headless=True)
        try:
            await self.progress.report(task, FILTER_LOGIN_PROGRESS, "Logging in to admin", stage="login")
            if not await self.scraper.login(session_id, credentials.username, credentials.password):
                raise DiscoveryError("Admin login failed")

            products: List[ScrapedProduct] = []
            for index, filter_name in enumerate(filters):
                await self.progress.report(
                    task,
                    filter_progress(index, len(filters)),
                    f"Processing filter \"{filter_name}\"",
                    stage="filtering",
                )

                async def on_progress(percent: float, message: str, index: int = index) -> None:
                    await self.progress.report(
                        task, filter_progress(index, len(filters), percent), message, stage="filtering"
                    )

                found = await self.scraper.extract_by_filter(session_id, filter_name, on_progress)
                products.extend(found)
                await self.log.info(
                    task.task_id,
                    f"Filter \"{filter_name}\": {len(found)} thumbnails extracted",
                    filter=filter_name, product_count=len(found),
                )
            return products
        finally:
            try:
                await self.scraper.close_session(session_id)
            except DiscoveryError as e:
                logger.warning(f"Closing browser session {session_id} failed: {e}")

    async def _process_inline(
        self,
        task: TaskRecord,
        item: WorkItem,
        transform: TransformSettings,
        storage: StorageSettings,
        index: int,
        count: int,
    ) -> None:
        item.transition(ItemStatus.PROCESSING)
        self.bus.publish(EventType.ITEM_STARTED, {"item": item.model_dump(mode="json")})
        try:
            await self.store.update_item(item.item_id, status=ItemStatus.PROCESSING)
            await self.runner.run(item, transform, storage)
        except Exception as e:
            item.transition(ItemStatus.FAILED)
            await self.log.warning(
                task.task_id,
                f"\"{item.name}\" background removal failed: {e}",
                item_id=item.item_id, error=str(e),
            )
            await self.store.update_item(
                item.item_id, status=ItemStatus.FAILED, metadata={"error": str(e)}
            )
            self.bus.publish(EventType.ITEM_FAILED, {"item": item.model_dump(mode="json")})
            await self.progress.record_failure(task, item)
            return

        item.transition(ItemStatus.COMPLETED)
        self.bus.publish(EventType.ITEM_COMPLETED, {"item": item.model_dump(mode="json")})
        await self.progress.record_completion(task, item, progress=filter_item_progress(index + 1, count))

    # ============================================================
    # 내부 도우미
    # ============================================================

    async def _create_item(
        self,
        task: TaskRecord,
        product: ScrapedProduct,
        max_retries: int,
    ) -> WorkItem:
        item_id = str(uuid.uuid4())
        await self.store.create_item(
            ItemRecord(
                item_id=item_id,
                task_id=task.task_id,
                owner=task.owner,
                source_url=product.image_url,
                name=product.name,
                category=product.category,
                metadata={
                    "product_name": product.name,
                    "product_url": product.product_url,
                    "category": product.category,
                    "price": product.price,
                },
            )
        )
        return WorkItem(
            item_id=item_id,
            task_id=task.task_id,
            owner=task.owner,
            source_url=product.image_url,
            name=product.name,
            category=product.category,
            priority=DEFAULT_PRIORITY,
            max_retries=max_retries,
        )

    async def _resolve_transform(
        self,
        owner: str,
        given: TransformSettings | None,
    ) -> TransformSettings:
        if given is not None:
            return given
        stored = await self.store.get_setting(owner, "pixian")
        if stored:
            try:
                return TransformSettings.model_validate(stored)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid Pixian settings: {e}") from e
        if self.default_api_key:
            return TransformSettings(api_key=self.default_api_key)
        raise ConfigurationError("Pixian API key is not configured")

    async def _resolve_storage(
        self,
        owner: str,
        given: StorageSettings | None,
    ) -> StorageSettings:
        if given is not None:
            return given
        stored = await self.store.get_setting(owner, "storage")
        if stored:
            try:
                return StorageSettings.model_validate(stored)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid storage settings: {e}") from e
        return StorageSettings(path=config.UPLOADS_DIR)

    async def _max_retries_for(self, owner: str) -> int:
        stored = await self.store.get_setting(owner, "general")
        if stored:
            return GeneralSettings.model_validate(stored).retry_attempts
        return self.max_retries

    @staticmethod
    def _snapshot(
        scraping: ScrapingSettings,
        transform: TransformSettings,
        storage: StorageSettings,
    ) -> Dict[str, Any]:
        # 비밀 값은 저장하지 않는다
        return {
            "scraping": scraping.model_dump(),
            "transform": transform.model_dump(exclude={"api_key"}),
            "storage": storage.model_dump(exclude={"ftp_password"}),
        }

    def _track(self, task: TaskRecord, transform: TransformSettings, storage: StorageSettings) -> None:
        self._tasks[task.task_id] = task
        self._task_settings[task.task_id] = (transform, storage)

    def _untrack(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)
        self._task_settings.pop(task_id, None)

    def _purge_task_items(self, task_id: str) -> None:
        for item in self.queue.items():
            if item.task_id == task_id and item.status == ItemStatus.PENDING:
                self.queue.remove(item.item_id)
