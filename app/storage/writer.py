"""처리된 이미지 저장기"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from app.storage.registry import get_destination
from app.tasks.errors import StorageError
from app.tasks.models import StorageSettings

MAX_FILENAME_LENGTH = 100


def sanitize_filename(filename: str) -> str:
    """파일명에서 위험한 문자를 제거한다."""
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", filename)
    cleaned = re.sub(r"_{2,}", "_", cleaned)
    return cleaned[:MAX_FILENAME_LENGTH]


class BaseDestination(ABC):
    """
    저장소 대상의 부모 클래스.

    새 대상을 추가할 때는 이 클래스를 상속받고
    @register_destination 데코레이터를 사용한다.
    """

    @abstractmethod
    async def save(self, data: bytes, filename: str, settings: StorageSettings) -> str:
        """
        이미지를 저장하고 영구 참조(URL/경로)를 반환한다.
        """


class StorageWriter:
    """설정의 type 태그에 따라 저장소 대상을 골라 저장한다."""

    async def save(self, data: bytes, filename: str, settings: StorageSettings) -> str:
        destination = get_destination(settings.type)
        try:
            return await destination.save(data, filename, settings)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Image save failed: {e}") from e


# 대상 등록을 위해 import
import app.storage.local  # noqa: E402,F401
