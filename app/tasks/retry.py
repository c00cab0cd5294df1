"""재시도 정책"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from app.tasks.models import ItemStatus, WorkItem


@dataclass
class RetryDecision:
    retry: bool
    attempt: int
    max_attempts: int
    available_at: Optional[float] = None


class RetryPolicy:
    """
    실패한 아이템을 다시 큐에 넣을지, 최종 실패로 처리할지 결정한다.

    max_retries=3 이면 최초 시도 + 재시도 3회로 최대 4번 처리된다.
    재시도 시 우선순위를 1 낮춰(최소 0) 새 아이템보다 뒤로 보낸다.
    """

    def __init__(self, delay_seconds: float = 0.0, demote_by: int = 1) -> None:
        self.delay_seconds = delay_seconds
        self.demote_by = demote_by

    def record_failure(self, item: WorkItem, now: float | None = None) -> RetryDecision:
        """processing 상태의 아이템에 실패를 기록하고 다음 상태로 전이시킨다."""
        attempt = item.retries + 1
        max_attempts = item.max_retries + 1

        if item.retries >= item.max_retries:
            item.transition(ItemStatus.FAILED)
            return RetryDecision(retry=False, attempt=attempt, max_attempts=max_attempts)

        item.retries += 1
        item.priority = max(0, item.priority - self.demote_by)
        item.available_at = None
        if self.delay_seconds > 0 and now is not None:
            item.available_at = now + self.delay_seconds
        item.transition(ItemStatus.PENDING)
        return RetryDecision(
            retry=True,
            attempt=attempt,
            max_attempts=max_attempts,
            available_at=item.available_at,
        )
