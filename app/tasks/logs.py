"""자동화 로그 기록기 (저장소 + 프로세스 로거 동시 기록)"""

from __future__ import annotations

import logging
from typing import Any

from app.tasks.models import LogEntry, LogLevel
from app.tasks.store import BaseStore

logger = logging.getLogger("app.automation")

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class AutomationLogger:
    def __init__(self, store: BaseStore) -> None:
        self.store = store

    async def log(self, task_id: str, level: LogLevel, message: str, **metadata: Any) -> LogEntry:
        logger.log(_PY_LEVELS[LogLevel(level)], f"[{task_id}] {message}")
        return await self.store.add_log(task_id, level, message, metadata)

    async def info(self, task_id: str, message: str, **metadata: Any) -> LogEntry:
        return await self.log(task_id, LogLevel.INFO, message, **metadata)

    async def success(self, task_id: str, message: str, **metadata: Any) -> LogEntry:
        return await self.log(task_id, LogLevel.SUCCESS, message, **metadata)

    async def warning(self, task_id: str, message: str, **metadata: Any) -> LogEntry:
        return await self.log(task_id, LogLevel.WARNING, message, **metadata)

    async def error(self, task_id: str, message: str, **metadata: Any) -> LogEntry:
        return await self.log(task_id, LogLevel.ERROR, message, **metadata)
