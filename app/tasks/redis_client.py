"""Redis 클라이언트 관리"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as redis

from app import config

_redis_client: Optional[redis.Redis] = None


def get_redis(url: str | None = None) -> redis.Redis:
    """Redis 클라이언트 싱글톤을 반환한다 (STORE_BACKEND=redis 일 때만 사용)."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            url or config.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    """Redis 연결을 종료한다."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
