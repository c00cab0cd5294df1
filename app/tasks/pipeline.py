"""Pipeline Stage Runner (fetch → transform → persist)"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn

from app.clients.downloader import ImageDownloader
from app.clients.pixian_client import BackgroundRemovalResult, PixianClient
from app.storage.writer import StorageWriter
from app.tasks.errors import StageError
from app.tasks.logs import AutomationLogger
from app.tasks.models import ItemStatus, StorageSettings, TransformSettings, WorkItem
from app.tasks.store import BaseStore

FETCH = "fetch"
TRANSFORM = "transform"
PERSIST = "persist"


@dataclass
class PipelineResult:
    processed_url: str
    processing_time_ms: int
    original_size: int
    processed_size: int
    quality: int


class PipelineRunner:
    """
    아이템 하나에 대해 세 단계를 순서대로 실행한다.

    각 단계는 시작 시 info, 종료 시 success/error 로그를 남긴다. 어떤 단계의
    실패든 StageError로 감싸 다시 발생시키며, 재시도 판단은 호출자가 한다.
    """

    def __init__(
        self,
        store: BaseStore,
        log: AutomationLogger,
        downloader: ImageDownloader,
        remover: PixianClient,
        writer: StorageWriter,
    ) -> None:
        self.store = store
        self.log = log
        self.downloader = downloader
        self.remover = remover
        self.writer = writer

    async def run(
        self,
        item: WorkItem,
        transform_settings: TransformSettings,
        storage_settings: StorageSettings,
    ) -> PipelineResult:
        image = await self.fetch(item)
        result = await self.transform(item, image, transform_settings)
        return await self.persist(item, result, storage_settings)

    async def fetch(self, item: WorkItem) -> bytes:
        await self.log.info(
            item.task_id,
            f"Image download started: {item.name}",
            stage=FETCH, item_id=item.item_id, source_url=item.source_url,
        )
        try:
            image = await self.downloader.download(item.source_url)
        except Exception as e:
            await self._fail(item, FETCH, e)

        await self.log.success(
            item.task_id,
            f"Image downloaded: {item.name}",
            stage=FETCH, item_id=item.item_id, original_size=len(image),
        )
        return image

    async def transform(
        self,
        item: WorkItem,
        image: bytes,
        settings: TransformSettings,
    ) -> BackgroundRemovalResult:
        await self.log.info(
            item.task_id,
            f"Background removal started: {item.name}",
            stage=TRANSFORM, item_id=item.item_id, original_size=len(image),
        )
        try:
            result = await self.remover.remove_background(image, f"{item.name}.jpg", settings)
        except Exception as e:
            await self._fail(item, TRANSFORM, e)

        if not result.success or result.processed_bytes is None:
            await self._fail(item, TRANSFORM, StageError(TRANSFORM, result.error or "Background removal failed"))

        await self.log.success(
            item.task_id,
            f"Background removed: {item.name}",
            stage=TRANSFORM,
            item_id=item.item_id,
            processing_time_ms=result.processing_time_ms,
            quality=result.quality,
        )
        return result

    async def persist(
        self,
        item: WorkItem,
        result: BackgroundRemovalResult,
        settings: StorageSettings,
    ) -> PipelineResult:
        await self.log.info(
            item.task_id,
            f"Saving processed image: {item.name}",
            stage=PERSIST, item_id=item.item_id, storage_type=settings.type,
        )
        try:
            processed_url = await self.writer.save(
                result.processed_bytes,
                f"processed_{item.item_id}.png",
                settings,
            )
            await self.store.update_item(
                item.item_id,
                processed_url=processed_url,
                status=ItemStatus.COMPLETED,
                processing_time_ms=result.processing_time_ms,
                original_size=result.original_size,
                processed_size=result.processed_size,
                quality=result.quality,
            )
        except Exception as e:
            await self._fail(item, PERSIST, e)

        await self.log.success(
            item.task_id,
            f"Image processing completed: {item.name}",
            stage=PERSIST,
            item_id=item.item_id,
            processed_url=processed_url,
            processing_time_ms=result.processing_time_ms,
            original_size=result.original_size,
            processed_size=result.processed_size,
            quality=result.quality,
        )
        return PipelineResult(
            processed_url=processed_url,
            processing_time_ms=result.processing_time_ms,
            original_size=result.original_size,
            processed_size=result.processed_size,
            quality=result.quality,
        )

    async def _fail(self, item: WorkItem, stage: str, error: Exception) -> NoReturn:
        reason = error.reason if isinstance(error, StageError) else str(error) or type(error).__name__
        await self.log.error(
            item.task_id,
            f"{stage} failed: {item.name} ({reason})",
            stage=stage, item_id=item.item_id, error=reason,
        )
        if isinstance(error, StageError):
            raise error
        raise StageError(stage, reason) from error
