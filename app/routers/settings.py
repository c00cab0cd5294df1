"""사용자 설정 라우터"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import ValidationError

from app.clients.pixian_client import PixianClient
from app.routers.deps import get_owner, get_queue_manager
from app.schemas import ConnectionTestResponse, PixianTestRequest
from app.tasks.models import SETTINGS_MODELS, GeneralSettings, TransformSettings
from app.tasks.orchestrator import QueueManager

router = APIRouter()


def get_pixian_client(request: Request) -> PixianClient:
    return request.app.state.pixian_client


@router.get("/settings")
async def get_settings(
    owner: str = Depends(get_owner),
    manager: QueueManager = Depends(get_queue_manager),
) -> Dict[str, Dict[str, Any]]:
    """저장된 설정을 반환한다. 저장되지 않은 키는 기본값으로 채운다."""
    stored = await manager.store.get_settings(owner)
    result: Dict[str, Dict[str, Any]] = {}
    for key, model in SETTINGS_MODELS.items():
        if key in stored:
            result[key] = stored[key]
        elif key != "pixian":
            result[key] = model().model_dump()
    return result


@router.put("/settings/{key}")
async def update_setting(
    key: str,
    value: Dict[str, Any] = Body(...),
    owner: str = Depends(get_owner),
    manager: QueueManager = Depends(get_queue_manager),
) -> Dict[str, Any]:
    """설정 하나를 검증 후 저장한다."""
    model = SETTINGS_MODELS.get(key)
    if model is None:
        raise HTTPException(status_code=404, detail=f"Unknown settings key: {key}")

    try:
        validated = model.model_validate(value)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))

    data = validated.model_dump()
    await manager.store.upsert_setting(owner, key, data)

    if isinstance(validated, GeneralSettings):
        data["max_concurrent"] = manager.set_max_concurrent_workers(validated.max_concurrent)

    return {"key": key, "value": data}


@router.post("/settings/pixian/test", response_model=ConnectionTestResponse)
async def test_pixian_connection(
    payload: Optional[PixianTestRequest] = None,
    owner: str = Depends(get_owner),
    manager: QueueManager = Depends(get_queue_manager),
    client: PixianClient = Depends(get_pixian_client),
) -> ConnectionTestResponse:
    """Pixian API 연결을 테스트 이미지로 확인한다."""
    api_key = payload.api_key if payload else None
    if not api_key:
        stored = await manager.store.get_setting(owner, "pixian") or {}
        api_key = stored.get("api_key") or manager.default_api_key
    if not api_key:
        return ConnectionTestResponse(success=False, message="Pixian API key is not configured")

    result = await client.test_connection(TransformSettings(api_key=api_key))
    return ConnectionTestResponse(**result)
