"""자동화 작업 큐 (수집 → 배경 제거 → 저장)"""

from app.tasks.models import ItemStatus, TaskKind, TaskRecord, TaskStatus, WorkItem
from app.tasks.events import EventBus, EventType
from app.tasks.store import BaseStore, MemoryStore, RedisStore

__all__ = [
    "ItemStatus",
    "TaskKind",
    "TaskRecord",
    "TaskStatus",
    "WorkItem",
    "EventBus",
    "EventType",
    "BaseStore",
    "MemoryStore",
    "RedisStore",
]
