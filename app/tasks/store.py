"""자동화 저장소 (작업/로그/처리 이미지/사용자 설정)

BaseStore 계약을 MemoryStore(기본, 테스트용)와 RedisStore(Redis Hash/List)가 구현한다.
"""

from __future__ import annotations

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.tasks.models import (
    DashboardStats,
    ItemRecord,
    ItemStatus,
    LogEntry,
    LogLevel,
    ProcessingStatus,
    TaskKind,
    TaskRecord,
    TaskStatus,
    utcnow,
)


class BaseStore(ABC):
    """영속 저장소 계약"""

    # --- 작업 ---
    @abstractmethod
    async def create_task(self, record: TaskRecord) -> TaskRecord: ...

    @abstractmethod
    async def get_task(self, task_id: str) -> Optional[TaskRecord]: ...

    @abstractmethod
    async def save_task(self, record: TaskRecord) -> None: ...

    @abstractmethod
    async def list_tasks(self, owner: str) -> List[TaskRecord]: ...

    # --- 로그 ---
    @abstractmethod
    async def add_log(
        self,
        task_id: str,
        level: LogLevel,
        message: str,
        metadata: Dict[str, Any] | None = None,
    ) -> LogEntry: ...

    @abstractmethod
    async def get_logs(self, task_id: str | None = None, limit: int = 10) -> List[LogEntry]:
        """최신 로그부터 limit개를 반환한다."""

    # --- 처리 이미지 ---
    @abstractmethod
    async def create_item(self, record: ItemRecord) -> ItemRecord: ...

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[ItemRecord]: ...

    @abstractmethod
    async def update_item(self, item_id: str, **fields: Any) -> ItemRecord: ...

    @abstractmethod
    async def list_items(
        self,
        owner: str | None = None,
        task_id: str | None = None,
        status: ItemStatus | None = None,
    ) -> List[ItemRecord]: ...

    # --- 사용자 설정 ---
    @abstractmethod
    async def get_setting(self, owner: str, key: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    async def upsert_setting(self, owner: str, key: str, value: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def get_settings(self, owner: str) -> Dict[str, Dict[str, Any]]: ...

    # --- 대시보드 ---
    async def get_dashboard_stats(self, owner: str) -> DashboardStats:
        """
        소유자의 처리 이미지로 대시보드 통계를 계산한다.

        - success_rate: completed / 전체 * 100 (이미지가 없으면 100)
        - processing_speed: 완료 이미지 평균 처리 시간 기준 분당 처리 수
        - today_processed: 오늘(UTC 자정 이후) 완료된 이미지 수
        """
        items = await self.list_items(owner=owner)
        completed = [item for item in items if item.status == ItemStatus.COMPLETED]
        pending = [item for item in items if item.status == ItemStatus.PENDING]

        midnight = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        today = [item for item in completed if item.updated_at >= midnight]

        total_time = sum(item.processing_time_ms or 0 for item in completed)
        average = total_time / len(completed) if completed else 0
        speed = 60000 / average if average > 0 else 0
        success_rate = len(completed) / len(items) * 100 if items else 100

        return DashboardStats(
            total_processed=len(completed),
            queue_size=len(pending),
            success_rate=round(success_rate, 1),
            processing_speed=round(speed, 1),
            today_processed=len(today),
        )

    async def get_processing_status(self, owner: str) -> ProcessingStatus:
        processing = await self.list_items(owner=owner, status=ItemStatus.PROCESSING)
        queued = await self.list_items(owner=owner, status=ItemStatus.PENDING)
        return ProcessingStatus(
            current_processing=processing[0] if processing else None,
            queue_items=queued[:10],
            recent_logs=await self.get_logs(None, limit=5),
        )

    @staticmethod
    def _new_log(task_id: str, level: LogLevel, message: str, metadata: Dict[str, Any] | None) -> LogEntry:
        return LogEntry(
            log_id=str(uuid.uuid4()),
            task_id=task_id,
            level=level,
            message=message,
            metadata=metadata or {},
        )


def _filter_items(
    items: List[ItemRecord],
    owner: str | None,
    task_id: str | None,
    status: ItemStatus | None,
) -> List[ItemRecord]:
    result = [
        item for item in items
        if (owner is None or item.owner == owner)
        and (task_id is None or item.task_id == task_id)
        and (status is None or item.status == status)
    ]
    return sorted(result, key=lambda item: item.created_at, reverse=True)


class MemoryStore(BaseStore):
    """프로세스 메모리 저장소"""

    def __init__(self) -> None:
        self._tasks: Dict[str, TaskRecord] = {}
        self._logs: List[LogEntry] = []
        self._items: Dict[str, ItemRecord] = {}
        self._settings: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def create_task(self, record: TaskRecord) -> TaskRecord:
        self._tasks[record.task_id] = record.model_copy(deep=True)
        return record

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        record = self._tasks.get(task_id)
        return record.model_copy(deep=True) if record else None

    async def save_task(self, record: TaskRecord) -> None:
        record.updated_at = utcnow()
        self._tasks[record.task_id] = record.model_copy(deep=True)

    async def list_tasks(self, owner: str) -> List[TaskRecord]:
        tasks = [t.model_copy(deep=True) for t in self._tasks.values() if t.owner == owner]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    async def add_log(self, task_id, level, message, metadata=None) -> LogEntry:
        entry = self._new_log(task_id, level, message, metadata)
        self._logs.append(entry)
        return entry

    async def get_logs(self, task_id: str | None = None, limit: int = 10) -> List[LogEntry]:
        logs = [log for log in self._logs if task_id is None or log.task_id == task_id]
        return list(reversed(logs))[:limit]

    async def create_item(self, record: ItemRecord) -> ItemRecord:
        self._items[record.item_id] = record.model_copy(deep=True)
        return record

    async def get_item(self, item_id: str) -> Optional[ItemRecord]:
        record = self._items.get(item_id)
        return record.model_copy(deep=True) if record else None

    async def update_item(self, item_id: str, **fields: Any) -> ItemRecord:
        existing = self._items.get(item_id)
        if existing is None:
            raise KeyError(f"Item {item_id} not found")
        updated = existing.model_copy(update={**fields, "updated_at": utcnow()}, deep=True)
        self._items[item_id] = updated
        return updated.model_copy(deep=True)

    async def list_items(self, owner=None, task_id=None, status=None) -> List[ItemRecord]:
        items = [i.model_copy(deep=True) for i in self._items.values()]
        return _filter_items(items, owner, task_id, status)

    async def get_setting(self, owner: str, key: str) -> Optional[Dict[str, Any]]:
        value = self._settings.get(owner, {}).get(key)
        return dict(value) if value is not None else None

    async def upsert_setting(self, owner: str, key: str, value: Dict[str, Any]) -> None:
        self._settings.setdefault(owner, {})[key] = dict(value)

    async def get_settings(self, owner: str) -> Dict[str, Dict[str, Any]]:
        return {k: dict(v) for k, v in self._settings.get(owner, {}).items()}


class RedisStore(BaseStore):
    """Redis Hash/List 기반 저장소"""

    TASK_PREFIX = "task:"
    OWNER_TASKS_PREFIX = "tasks:owner:"
    LOG_PREFIX = "logs:"
    ALL_LOGS_KEY = "logs:all"
    ITEM_PREFIX = "item:"
    ITEM_INDEX_KEY = "items"
    SETTINGS_PREFIX = "settings:"
    DEFAULT_TTL = 7 * 24 * 3600  # 7일
    MAX_GLOBAL_LOGS = 1000

    def __init__(self, redis=None):
        if redis is None:
            from app.tasks.redis_client import get_redis
            redis = get_redis()
        self.redis = redis

    # --- 작업 ---
    async def create_task(self, record: TaskRecord) -> TaskRecord:
        await self.save_task(record)
        await self.redis.sadd(f"{self.OWNER_TASKS_PREFIX}{record.owner}", record.task_id)
        return record

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        data = await self.redis.hgetall(f"{self.TASK_PREFIX}{task_id}")
        if not data:
            return None
        return self._deserialize(data)

    async def save_task(self, record: TaskRecord) -> None:
        record.updated_at = utcnow()
        key = f"{self.TASK_PREFIX}{record.task_id}"
        await self.redis.hset(key, mapping=self._serialize(record))
        await self.redis.expire(key, self.DEFAULT_TTL)

    async def list_tasks(self, owner: str) -> List[TaskRecord]:
        task_ids = await self.redis.smembers(f"{self.OWNER_TASKS_PREFIX}{owner}")
        tasks = []
        for task_id in task_ids:
            record = await self.get_task(task_id)
            if record is not None:
                tasks.append(record)
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    # --- 로그 ---
    async def add_log(self, task_id, level, message, metadata=None) -> LogEntry:
        entry = self._new_log(task_id, level, message, metadata)
        payload = entry.model_dump_json()
        await self.redis.rpush(f"{self.LOG_PREFIX}{task_id}", payload)
        await self.redis.rpush(self.ALL_LOGS_KEY, payload)
        await self.redis.ltrim(self.ALL_LOGS_KEY, -self.MAX_GLOBAL_LOGS, -1)
        return entry

    async def get_logs(self, task_id: str | None = None, limit: int = 10) -> List[LogEntry]:
        key = f"{self.LOG_PREFIX}{task_id}" if task_id else self.ALL_LOGS_KEY
        raw = await self.redis.lrange(key, -limit, -1)
        return [LogEntry.model_validate_json(r) for r in reversed(raw)]

    # --- 처리 이미지 ---
    async def create_item(self, record: ItemRecord) -> ItemRecord:
        await self.redis.set(f"{self.ITEM_PREFIX}{record.item_id}", record.model_dump_json())
        await self.redis.sadd(self.ITEM_INDEX_KEY, record.item_id)
        return record

    async def get_item(self, item_id: str) -> Optional[ItemRecord]:
        raw = await self.redis.get(f"{self.ITEM_PREFIX}{item_id}")
        if not raw:
            return None
        return ItemRecord.model_validate_json(raw)

    async def update_item(self, item_id: str, **fields: Any) -> ItemRecord:
        existing = await self.get_item(item_id)
        if existing is None:
            raise KeyError(f"Item {item_id} not found")
        updated = existing.model_copy(update={**fields, "updated_at": utcnow()})
        # model_copy(update=...)는 검증하지 않으므로 다시 검증한다
        updated = ItemRecord.model_validate(updated.model_dump())
        await self.redis.set(f"{self.ITEM_PREFIX}{item_id}", updated.model_dump_json())
        return updated

    async def list_items(self, owner=None, task_id=None, status=None) -> List[ItemRecord]:
        item_ids = await self.redis.smembers(self.ITEM_INDEX_KEY)
        items = []
        for item_id in item_ids:
            record = await self.get_item(item_id)
            if record is not None:
                items.append(record)
        return _filter_items(items, owner, task_id, status)

    # --- 사용자 설정 ---
    async def get_setting(self, owner: str, key: str) -> Optional[Dict[str, Any]]:
        raw = await self.redis.hget(f"{self.SETTINGS_PREFIX}{owner}", key)
        return json.loads(raw) if raw else None

    async def upsert_setting(self, owner: str, key: str, value: Dict[str, Any]) -> None:
        await self.redis.hset(
            f"{self.SETTINGS_PREFIX}{owner}",
            key,
            json.dumps(value, ensure_ascii=False),
        )

    async def get_settings(self, owner: str) -> Dict[str, Dict[str, Any]]:
        data = await self.redis.hgetall(f"{self.SETTINGS_PREFIX}{owner}")
        return {k: json.loads(v) for k, v in data.items()}

    def _serialize(self, record: TaskRecord) -> Dict[str, str]:
        """TaskRecord를 Redis Hash 형식으로 직렬화한다."""
        return {
            "task_id": record.task_id,
            "owner": record.owner,
            "name": record.name,
            "kind": TaskKind(record.kind).value,
            "status": TaskStatus(record.status).value,
            "progress": str(record.progress),
            "total_items": str(record.total_items),
            "processed_items": str(record.processed_items),
            "failed_items": str(record.failed_items),
            "config": json.dumps(record.config, ensure_ascii=False),
            "error": record.error or "",
            "created_at": record.created_at.isoformat(),
            "updated_at": record.updated_at.isoformat(),
            "completed_at": record.completed_at.isoformat() if record.completed_at else "",
        }

    def _deserialize(self, data: Dict[str, str]) -> TaskRecord:
        """Redis Hash 데이터를 TaskRecord로 역직렬화한다."""
        return TaskRecord(
            task_id=data["task_id"],
            owner=data["owner"],
            name=data.get("name", ""),
            kind=TaskKind(data["kind"]),
            status=TaskStatus(data["status"]),
            progress=int(data.get("progress") or 0),
            total_items=int(data.get("total_items") or 0),
            processed_items=int(data.get("processed_items") or 0),
            failed_items=int(data.get("failed_items") or 0),
            config=json.loads(data["config"]) if data.get("config") else {},
            error=data.get("error") or None,
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
        )
