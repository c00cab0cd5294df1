"""자동화 작업 / 큐 아이템 모델 정의"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.tasks.errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """작업 상태"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskKind(str, Enum):
    """작업 유형"""
    FULL_AUTOMATION = "full_automation"
    FILTERED_AUTOMATION = "filtered_automation"


class ItemStatus(str, Enum):
    """큐 아이템 상태"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class LogLevel(str, Enum):
    """자동화 로그 레벨"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


# 허용되는 상태 전이 (종료 상태에서는 나갈 수 없다)
TASK_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.FAILED},
    TaskStatus.RUNNING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}

ITEM_TRANSITIONS = {
    ItemStatus.PENDING: {ItemStatus.PROCESSING},
    # processing -> pending 은 재시도 루프
    ItemStatus.PROCESSING: {ItemStatus.PENDING, ItemStatus.COMPLETED, ItemStatus.FAILED},
    ItemStatus.COMPLETED: set(),
    ItemStatus.FAILED: set(),
}


# ============================================================
# 사용자 설정
# ============================================================

class ScrapingSettings(BaseModel):
    """상품 수집(크롬 자동화) 설정"""
    url: str = "https://www.mango.com/kr"
    category: str = "여성의류"
    limit: int = Field(default=50, ge=1, le=500)
    headless: bool = True
    delay_ms: int = Field(default=1000, ge=100, le=5000)


class TransformSettings(BaseModel):
    """Pixian 배경 제거 설정"""
    api_key: str = Field(min_length=1)
    quality: int = Field(default=90, ge=50, le=100)
    format: str = Field(default="png", pattern="^(png|jpg)$")
    timeout_ms: int = Field(default=30000, ge=5000, le=60000)


class StorageSettings(BaseModel):
    """처리 결과 저장소 설정"""
    type: str = Field(default="local", pattern="^(local|s3|ftp)$")
    path: str = "./uploads"
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    ftp_host: Optional[str] = None
    ftp_user: Optional[str] = None
    ftp_password: Optional[str] = None


class GeneralSettings(BaseModel):
    """일반 설정"""
    auto_start: bool = False
    schedule_enabled: bool = False
    schedule_time: str = "09:00"
    max_concurrent: int = Field(default=3, ge=1, le=10)
    retry_attempts: int = Field(default=3, ge=1, le=5)


SETTINGS_MODELS = {
    "scraping": ScrapingSettings,
    "pixian": TransformSettings,
    "storage": StorageSettings,
    "general": GeneralSettings,
}


# ============================================================
# 레코드
# ============================================================

class TaskRecord(BaseModel):
    """자동화 작업 레코드"""
    task_id: str
    owner: str
    name: str
    kind: TaskKind
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    total_items: int = 0
    processed_items: int = 0
    failed_items: int = 0
    config: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return not TASK_TRANSITIONS[self.status]

    def transition(self, status: TaskStatus) -> None:
        """상태를 변경한다. 허용되지 않는 전이는 InvalidTransitionError."""
        status = TaskStatus(status)
        if status == self.status:
            return
        if status not in TASK_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Task {self.task_id}: {self.status.value} -> {status.value} not allowed"
            )
        self.status = status
        self.updated_at = utcnow()
        if self.is_terminal:
            self.completed_at = self.updated_at


class WorkItem(BaseModel):
    """처리 큐에 들어가는 아이템 (이미지/상품 1개)"""
    item_id: str
    task_id: str
    owner: str
    source_url: str
    name: str
    category: Optional[str] = None
    status: ItemStatus = ItemStatus.PENDING
    priority: int = 1
    retries: int = 0
    max_retries: int = 3
    # 큐 삽입 순서 (동일 우선순위 tie-break)
    sequence: int = 0
    # 재시도 지연: 이 시각(loop.time()) 이전에는 디스패치하지 않는다
    available_at: Optional[float] = None

    def transition(self, status: ItemStatus) -> None:
        status = ItemStatus(status)
        if status not in ITEM_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Item {self.item_id}: {self.status.value} -> {status.value} not allowed"
            )
        self.status = status


class ItemRecord(BaseModel):
    """처리 이미지 레코드 (영속)"""
    item_id: str
    task_id: Optional[str] = None
    owner: str
    source_url: str
    processed_url: Optional[str] = None
    name: Optional[str] = None
    category: Optional[str] = None
    status: ItemStatus = ItemStatus.PENDING
    metadata: Dict[str, Any] = Field(default_factory=dict)
    processing_time_ms: Optional[int] = None
    original_size: Optional[int] = None
    processed_size: Optional[int] = None
    quality: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LogEntry(BaseModel):
    """자동화 로그 (append-only)"""
    log_id: str
    task_id: str
    level: LogLevel
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class QueueStatus(BaseModel):
    """큐 상태 스냅샷 (조회 시점 계산)"""
    total_items: int
    pending_items: int
    processing_items: int
    active_workers: int
    max_workers: int
    is_processing: bool


class FilterCredentials(BaseModel):
    """필터 자동화용 관리자 계정 / API 키"""
    username: str = ""
    password: str = ""
    pixian_api_key: Optional[str] = None


class DashboardStats(BaseModel):
    """대시보드 통계 (소유자 기준, 조회 시점 계산)"""
    total_processed: int
    queue_size: int
    success_rate: float
    processing_speed: float
    today_processed: int
    system_status: str = "normal"


class ProcessingStatus(BaseModel):
    """현재 처리 중 아이템 / 대기열 / 최근 로그"""
    current_processing: Optional[ItemRecord] = None
    queue_items: List[ItemRecord] = Field(default_factory=list)
    recent_logs: List[LogEntry] = Field(default_factory=list)
