"""저장소 대상 레지스트리 (대상 자동 등록)"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Type

from app.tasks.errors import StorageError

if TYPE_CHECKING:
    from app.storage.writer import BaseDestination

# 저장소 대상 클래스 레지스트리
DESTINATION_REGISTRY: Dict[str, Type["BaseDestination"]] = {}


def register_destination(destination_type: str):
    """
    저장소 대상 클래스를 레지스트리에 등록하는 데코레이터.

    사용 예:
        @register_destination("s3")
        class S3Destination(BaseDestination):
            async def save(self, data, filename, settings) -> str:
                ...
    """
    def decorator(cls: Type["BaseDestination"]) -> Type["BaseDestination"]:
        DESTINATION_REGISTRY[destination_type] = cls
        return cls
    return decorator


def get_destination(destination_type: str) -> "BaseDestination":
    """
    destination_type에 해당하는 저장소 대상 인스턴스를 생성한다.

    Raises:
        StorageError: 등록되지 않은 destination_type인 경우
    """
    if destination_type not in DESTINATION_REGISTRY:
        raise StorageError(f"Unsupported storage type: {destination_type}")
    return DESTINATION_REGISTRY[destination_type]()


def list_destinations() -> list[str]:
    """등록된 모든 저장소 대상 타입을 반환한다."""
    return list(DESTINATION_REGISTRY.keys())
