"""로컬 파일 시스템 저장소"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

from app.storage.registry import register_destination
from app.storage.writer import BaseDestination, sanitize_filename
from app.tasks.models import StorageSettings


@register_destination("local")
class LocalDestination(BaseDestination):
    """업로드 디렉토리에 저장하고 웹 경로(/uploads/...)를 반환한다."""

    async def save(self, data: bytes, filename: str, settings: StorageSettings) -> str:
        uploads_dir = Path(settings.path).resolve()
        # 파일명 중복 방지
        unique_name = f"{int(time.time() * 1000)}_{sanitize_filename(filename)}"
        target = uploads_dir / unique_name
        await asyncio.to_thread(self._write, target, data)
        return f"/uploads/{unique_name}"

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
