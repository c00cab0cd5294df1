from __future__ import annotations

from fastapi import Header, Request

from app.tasks.orchestrator import QueueManager


def get_queue_manager(request: Request) -> QueueManager:
    # create_app()이 app.state에 올려둔 QueueManager를 반환한다.
    return request.app.state.queue_manager


def get_owner(x_user_id: str | None = Header(default=None)) -> str:
    # 인증은 범위 밖이므로 X-User-Id 헤더를 소유자로 사용한다.
    return x_user_id or "admin"
