"""Task 상태/로그/아이템 조회 라우터"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from app.routers.deps import get_queue_manager
from app.schemas import ItemResponse, LogEntryResponse, TaskStatusResponse
from app.tasks.orchestrator import QueueManager

router = APIRouter()


@router.get("/tasks/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(
    task_id: str,
    manager: QueueManager = Depends(get_queue_manager),
) -> TaskStatusResponse:
    """작업 상태를 조회한다 (Polling용)."""
    record = await manager.get_task(task_id)

    if not record:
        raise HTTPException(status_code=404, detail="Task not found")

    return TaskStatusResponse(
        task_id=record.task_id,
        kind=record.kind,
        status=record.status,
        progress=record.progress,
        total_items=record.total_items,
        processed_items=record.processed_items,
        failed_items=record.failed_items,
        created_at=record.created_at,
        updated_at=record.updated_at,
        completed_at=record.completed_at,
        error=record.error,
    )


@router.get("/tasks/{task_id}/logs", response_model=List[LogEntryResponse])
async def get_task_logs(
    task_id: str,
    limit: int = Query(default=50, ge=1, le=1000),
    manager: QueueManager = Depends(get_queue_manager),
) -> List[LogEntryResponse]:
    """작업 로그를 최신순으로 조회한다."""
    if await manager.get_task(task_id) is None:
        raise HTTPException(status_code=404, detail="Task not found")

    logs = await manager.store.get_logs(task_id, limit=limit)
    return [
        LogEntryResponse(
            level=log.level,
            message=log.message,
            metadata=log.metadata,
            timestamp=log.timestamp,
        )
        for log in logs
    ]


@router.get("/tasks/{task_id}/items", response_model=List[ItemResponse])
async def get_task_items(
    task_id: str,
    manager: QueueManager = Depends(get_queue_manager),
) -> List[ItemResponse]:
    """작업의 처리 이미지 목록을 조회한다."""
    if await manager.get_task(task_id) is None:
        raise HTTPException(status_code=404, detail="Task not found")

    items = await manager.store.list_items(task_id=task_id)
    return [
        ItemResponse(
            item_id=item.item_id,
            name=item.name,
            source_url=item.source_url,
            processed_url=item.processed_url,
            status=item.status,
            processing_time_ms=item.processing_time_ms,
            quality=item.quality,
        )
        for item in items
    ]
