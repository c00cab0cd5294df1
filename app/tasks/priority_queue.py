"""우선순위 큐 (인메모리)

우선순위 내림차순, 동일 우선순위는 삽입 순서. 큐 크기는 수백 단위라
모든 연산을 O(n) 선형 탐색으로 처리한다.
"""

from __future__ import annotations

import itertools
from typing import Dict, Iterator, List, Optional

from app.tasks.events import EventBus, EventType
from app.tasks.models import ItemStatus, WorkItem


def _order_key(item: WorkItem):
    return (-item.priority, item.sequence)


class PriorityQueue:
    """WorkItem 우선순위 큐"""

    def __init__(self, bus: EventBus | None = None) -> None:
        self._items: Dict[str, WorkItem] = {}
        self._sequence = itertools.count()
        self._bus = bus

    def enqueue(self, item: WorkItem) -> None:
        """아이템을 추가한다 (같은 id가 있으면 교체)."""
        item.sequence = next(self._sequence)
        self._items[item.item_id] = item
        self._notify(item)

    def peek_next_pending(self, now: float | None = None) -> Optional[WorkItem]:
        """디스패치 가능한 pending 아이템 중 최우선 아이템을 반환한다 (제거하지 않음)."""
        best: Optional[WorkItem] = None
        for item in self._items.values():
            if item.status != ItemStatus.PENDING:
                continue
            if item.available_at is not None and now is not None and item.available_at > now:
                continue
            if best is None or _order_key(item) < _order_key(best):
                best = item
        return best

    def remove(self, item_id: str) -> Optional[WorkItem]:
        item = self._items.pop(item_id, None)
        if item is not None:
            self._notify(item)
        return item

    def get(self, item_id: str) -> Optional[WorkItem]:
        return self._items.get(item_id)

    def items(self) -> List[WorkItem]:
        """우선순위 순서의 스냅샷"""
        return sorted(self._items.values(), key=_order_key)

    def count(self, status: ItemStatus) -> int:
        return sum(1 for item in self._items.values() if item.status == status)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[WorkItem]:
        return iter(self.items())

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def _notify(self, item: WorkItem) -> None:
        if self._bus is not None:
            self._bus.publish(
                EventType.QUEUE_UPDATED,
                {"queueSize": len(self._items), "item": item.model_dump(mode="json")},
            )
