"""자동화 이벤트 발행/구독 (observer)

QueueManager가 이벤트를 발행하고, WebSocket 브로드캐스터나 테스트 하네스가
구독자로 등록된다. 이벤트 이름과 payload 키는 외부 구독자에게 그대로 전달된다.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from app.tasks.models import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """이벤트 이름"""
    AUTOMATION_PROGRESS = "automationProgress"
    ITEM_STARTED = "itemProcessingStarted"
    ITEM_COMPLETED = "itemProcessingCompleted"
    ITEM_FAILED = "itemProcessingFailed"
    QUEUE_UPDATED = "queueUpdated"


@dataclass
class AutomationEvent:
    type: EventType
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


Subscriber = Callable[[AutomationEvent], Any]


class EventBus:
    """동기 publish / 다중 subscribe 이벤트 버스.

    publish는 호출 순서대로 구독자에게 즉시 전달한다. 코루틴 구독자는
    현재 이벤트 루프에 태스크로 예약된다.
    """

    def __init__(self) -> None:
        self._subscribers: List[Tuple[Subscriber, Optional[Set[EventType]]]] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(
        self,
        callback: Subscriber,
        event_types: Iterable[EventType] | None = None,
    ) -> Callable[[], None]:
        """구독자를 등록하고 해제 함수를 반환한다."""
        types = {EventType(t) for t in event_types} if event_types is not None else None
        entry = (callback, types)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event_type: EventType, data: Dict[str, Any]) -> AutomationEvent:
        event = AutomationEvent(type=EventType(event_type), data=data)
        for callback, types in list(self._subscribers):
            if types is not None and event.type not in types:
                continue
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_subscriber_done)
            except Exception:
                # 구독자 오류가 파이프라인을 멈추게 하지 않는다
                logger.exception(f"Subscriber failed on {event.type.value}")
        return event

    def open_stream(self, maxsize: int = 1000) -> Tuple[asyncio.Queue, Callable[[], None]]:
        """이벤트를 asyncio.Queue로 받는 구독을 연다 (WebSocket 브로드캐스트용)."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

        def _put(event: AutomationEvent) -> None:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Event stream full, dropping {event.type.value}")

        return queue, self.subscribe(_put)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _on_subscriber_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async subscriber failed: {task.exception()}")
