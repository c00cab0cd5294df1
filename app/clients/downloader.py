from __future__ import annotations

from typing import Optional

import httpx

from app.clients.http import request_with_retries

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class ImageDownloadError(RuntimeError):
    pass


class ImageDownloader:
    def __init__(
        self,
        timeout: float = 30,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.transport = transport

    async def download(self, url: str) -> bytes:
        # 원본 상품 이미지를 내려받는다. 2xx 이외의 응답은 오류로 처리한다.
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                response = await request_with_retries(
                    client, "GET", url, max_retries=self.max_retries
                )
        except httpx.HTTPError as e:
            raise ImageDownloadError(f"Image download error: {e!r}") from e

        if not response.is_success:
            raise ImageDownloadError(
                f"Image download failed: {response.status_code} {response.reason_phrase}"
            )
        return response.content
