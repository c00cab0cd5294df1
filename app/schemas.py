from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.tasks.models import (
    ItemStatus,
    LogLevel,
    ScrapingSettings,
    StorageSettings,
    TaskKind,
    TaskStatus,
    TransformSettings,
)


# ============================================================
# 자동화 요청/응답
# ============================================================

class FullAutomationRequest(BaseModel):
    """완전 자동화 시작 요청 (transform/storage 미지정 시 사용자 설정 사용)"""
    scraping: ScrapingSettings = Field(default_factory=ScrapingSettings)
    transform: Optional[TransformSettings] = None
    storage: Optional[StorageSettings] = None


class FilteredAutomationRequest(BaseModel):
    """필터 자동화 실행 요청"""
    filters: List[str] = Field(min_length=1)
    username: str
    password: str
    pixian_api_key: Optional[str] = None


class TaskSubmitResponse(BaseModel):
    """작업 제출 응답"""
    task_id: str
    status: TaskStatus
    created_at: datetime
    poll_url: str


class TaskStatusResponse(BaseModel):
    """작업 상태 조회 응답"""
    task_id: str
    kind: TaskKind
    status: TaskStatus
    progress: int
    total_items: int
    processed_items: int
    failed_items: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class WorkerLimitRequest(BaseModel):
    max_workers: int


class WorkerLimitResponse(BaseModel):
    max_workers: int


class LogEntryResponse(BaseModel):
    level: LogLevel
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class ItemResponse(BaseModel):
    item_id: str
    name: Optional[str] = None
    source_url: str
    processed_url: Optional[str] = None
    status: ItemStatus
    processing_time_ms: Optional[int] = None
    quality: Optional[int] = None


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str


class PixianTestRequest(BaseModel):
    """연결 테스트 요청 (api_key 미지정 시 저장된 설정 사용)"""
    api_key: Optional[str] = None


class DashboardStatsResponse(BaseModel):
    total_processed: int
    queue_size: int
    success_rate: float
    processing_speed: float
    today_processed: int
    system_status: str


class ProcessingStatusResponse(BaseModel):
    current_processing: Optional[ItemResponse] = None
    queue_items: List[ItemResponse] = Field(default_factory=list)
    recent_logs: List[LogEntryResponse] = Field(default_factory=list)
