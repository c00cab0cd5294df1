"""대시보드 통계 / 처리 현황 / 처리 이미지 조회 라우터"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends

from app.routers.deps import get_owner, get_queue_manager
from app.schemas import (
    DashboardStatsResponse,
    ItemResponse,
    LogEntryResponse,
    ProcessingStatusResponse,
)
from app.tasks.models import ItemRecord, ItemStatus, LogEntry
from app.tasks.orchestrator import QueueManager

router = APIRouter()


def _item_response(item: ItemRecord) -> ItemResponse:
    return ItemResponse(
        item_id=item.item_id,
        name=item.name,
        source_url=item.source_url,
        processed_url=item.processed_url,
        status=item.status,
        processing_time_ms=item.processing_time_ms,
        quality=item.quality,
    )


def _log_response(log: LogEntry) -> LogEntryResponse:
    return LogEntryResponse(
        level=log.level,
        message=log.message,
        metadata=log.metadata,
        timestamp=log.timestamp,
    )


@router.get("/dashboard/stats", response_model=DashboardStatsResponse)
async def get_dashboard_stats(
    owner: str = Depends(get_owner),
    manager: QueueManager = Depends(get_queue_manager),
) -> DashboardStatsResponse:
    stats = await manager.store.get_dashboard_stats(owner)
    return DashboardStatsResponse(**stats.model_dump())


@router.get("/dashboard/processing-status", response_model=ProcessingStatusResponse)
async def get_processing_status(
    owner: str = Depends(get_owner),
    manager: QueueManager = Depends(get_queue_manager),
) -> ProcessingStatusResponse:
    """처리 중인 이미지 1개, 대기 이미지 최대 10개, 최근 로그 5개"""
    status = await manager.store.get_processing_status(owner)
    return ProcessingStatusResponse(
        current_processing=_item_response(status.current_processing) if status.current_processing else None,
        queue_items=[_item_response(item) for item in status.queue_items],
        recent_logs=[_log_response(log) for log in status.recent_logs],
    )


@router.get("/images", response_model=List[ItemResponse])
async def list_images(
    status: Optional[ItemStatus] = None,
    owner: str = Depends(get_owner),
    manager: QueueManager = Depends(get_queue_manager),
) -> List[ItemResponse]:
    """소유자의 처리 이미지를 최신순으로 조회한다 (status로 필터링)."""
    items = await manager.store.list_items(owner=owner, status=status)
    return [_item_response(item) for item in items]
