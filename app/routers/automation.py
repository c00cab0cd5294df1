"""자동화 시작/큐 제어 라우터"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from app.routers.deps import get_owner, get_queue_manager
from app.schemas import (
    FilteredAutomationRequest,
    FullAutomationRequest,
    TaskSubmitResponse,
    WorkerLimitRequest,
    WorkerLimitResponse,
)
from app.tasks.errors import ConfigurationError
from app.tasks.models import FilterCredentials, QueueStatus, TaskKind
from app.tasks.orchestrator import QueueManager

router = APIRouter()


@router.post("/automation/start-full", response_model=TaskSubmitResponse)
async def start_full_automation(
    payload: FullAutomationRequest,
    owner: str = Depends(get_owner),
    manager: QueueManager = Depends(get_queue_manager),
) -> TaskSubmitResponse:
    """완전 자동화를 시작한다 (수집/처리는 백그라운드)."""
    try:
        task = await manager.start_full_automation(
            owner, payload.scraping, payload.transform, payload.storage
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return TaskSubmitResponse(
        task_id=task.task_id,
        status=task.status,
        created_at=task.created_at,
        poll_url=f"/ai/tasks/{task.task_id}",
    )


@router.post("/automation/run", response_model=TaskSubmitResponse, status_code=202)
async def run_filtered_automation(
    payload: FilteredAutomationRequest,
    owner: str = Depends(get_owner),
    manager: QueueManager = Depends(get_queue_manager),
) -> TaskSubmitResponse:
    """필터 자동화 작업을 만들고 백그라운드에서 실행한다."""
    credentials = FilterCredentials(
        username=payload.username,
        password=payload.password,
        pixian_api_key=payload.pixian_api_key,
    )
    try:
        await manager.validate_filtered_automation(owner, payload.filters, credentials)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    task = await manager.create_task(
        owner,
        TaskKind.FILTERED_AUTOMATION,
        f"Filter automation: {', '.join(payload.filters)}",
        {"filters": payload.filters},
    )
    manager.run_in_background(
        manager.start_filtered_automation(task.task_id, owner, payload.filters, credentials)
    )

    return TaskSubmitResponse(
        task_id=task.task_id,
        status=task.status,
        created_at=task.created_at,
        poll_url=f"/ai/tasks/{task.task_id}",
    )


@router.get("/automation/queue", response_model=QueueStatus)
async def get_queue_status(manager: QueueManager = Depends(get_queue_manager)) -> QueueStatus:
    return manager.get_queue_status()


@router.put("/automation/workers", response_model=WorkerLimitResponse)
async def set_max_workers(
    payload: WorkerLimitRequest,
    manager: QueueManager = Depends(get_queue_manager),
) -> WorkerLimitResponse:
    """동시 처리 워커 수를 바꾼다 ([1, 10]으로 제한)."""
    return WorkerLimitResponse(max_workers=manager.set_max_concurrent_workers(payload.max_workers))


@router.post("/automation/stop")
async def stop_scraping(manager: QueueManager = Depends(get_queue_manager)) -> Dict[str, str]:
    """진행 중인 브라우저 세션을 중단한다."""
    await manager.stop_scraping()
    return {"status": "stopped"}


@router.get("/automation/tasks")
async def list_tasks(
    owner: str = Depends(get_owner),
    manager: QueueManager = Depends(get_queue_manager),
) -> Dict[str, Any]:
    """사용자의 작업 목록과 큐 상태를 반환한다."""
    tasks = await manager.store.list_tasks(owner)
    live = [await manager.get_task(t.task_id) for t in tasks]
    return {
        "tasks": [t.model_dump(mode="json") for t in live if t is not None],
        "queue": manager.get_queue_status().model_dump(),
    }
