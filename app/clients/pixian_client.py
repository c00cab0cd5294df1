from __future__ import annotations

import base64
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app import config
from app.clients.http import request_with_retries
from app.tasks.errors import ConfigurationError
from app.tasks.models import TransformSettings

# Pixian 연결 테스트용 1x1 PNG
TEST_IMAGE = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


@dataclass
class BackgroundRemovalResult:
    success: bool
    processing_time_ms: int
    original_size: int
    processed_size: int = 0
    quality: int = 0
    processed_bytes: Optional[bytes] = None
    error: Optional[str] = None


def content_type_for(filename: str) -> str:
    ext = filename.lower().rsplit(".", 1)[-1] if "." in filename else ""
    return CONTENT_TYPES.get(ext, "image/jpeg")


def calculate_quality(original_size: int, processed_size: int) -> int:
    # 원본 대비 결과 크기 비율로 품질 점수를 추정한다 (50~100).
    if original_size <= 0:
        return 50
    ratio = processed_size / original_size
    return max(50, min(100, round(70 + 30 * ratio)))


class PixianClient:
    """Pixian AI 배경 제거 클라이언트"""

    def __init__(
        self,
        api_url: str | None = None,
        max_retries: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_url = api_url or config.PIXIAN_API_URL
        self.max_retries = max_retries
        self.transport = transport

    async def remove_background(
        self,
        image: bytes,
        filename: str,
        settings: TransformSettings,
    ) -> BackgroundRemovalResult:
        """
        이미지를 Pixian API에 보내 배경을 제거한다.

        API 오류와 네트워크 오류는 success=False 결과로 반환한다.
        API 키가 없으면 ConfigurationError를 발생시킨다.
        """
        if not settings.api_key:
            raise ConfigurationError("Pixian API key is required")

        started = time.perf_counter()
        files = {"image": (filename, image, content_type_for(filename))}
        headers = {"Authorization": f"Bearer {settings.api_key}"}

        try:
            async with httpx.AsyncClient(
                timeout=settings.timeout_ms / 1000,
                transport=self.transport,
            ) as client:
                response = await request_with_retries(
                    client,
                    "POST",
                    self.api_url,
                    max_retries=self.max_retries,
                    headers=headers,
                    files=files,
                )
        except httpx.HTTPError as e:
            return BackgroundRemovalResult(
                success=False,
                error=f"Processing failed: {e!r}",
                processing_time_ms=self._elapsed_ms(started),
                original_size=len(image),
            )

        elapsed = self._elapsed_ms(started)
        if not response.is_success:
            return BackgroundRemovalResult(
                success=False,
                error=f"Pixian API error ({response.status_code}): {response.text}",
                processing_time_ms=elapsed,
                original_size=len(image),
            )

        processed = response.content
        return BackgroundRemovalResult(
            success=True,
            processed_bytes=processed,
            processing_time_ms=elapsed,
            original_size=len(image),
            processed_size=len(processed),
            quality=calculate_quality(len(image), len(processed)),
        )

    async def test_connection(self, settings: TransformSettings) -> Dict[str, Any]:
        """테스트 이미지로 API 연결을 확인한다."""
        try:
            result = await self.remove_background(TEST_IMAGE, "test.png", settings)
        except ConfigurationError as e:
            return {"success": False, "message": f"Connection failed: {e}"}
        if result.success:
            return {"success": True, "message": "Pixian AI connection succeeded"}
        return {"success": False, "message": f"Connection failed: {result.error}"}

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)
