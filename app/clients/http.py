from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (500, 502, 503, 504)


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    max_retries: int = 2,
    **kwargs: Any,
) -> httpx.Response:
    # 연결 오류/타임아웃/5xx 응답은 max_retries까지 재시도하고, 그 외 응답은 그대로 반환한다.
    attempt = 0
    while True:
        try:
            response = await client.request(method, url, **kwargs)
        except (httpx.TransportError,) as e:
            if attempt >= max_retries:
                raise
            logger.warning(f"{method} {url} failed ({e!r}), retrying")
        else:
            if response.status_code not in RETRYABLE_STATUS or attempt >= max_retries:
                return response
            logger.warning(f"{method} {url} returned {response.status_code}, retrying")

        await asyncio.sleep(1.5 * (attempt + 1))
        attempt += 1
