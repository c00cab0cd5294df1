"""처리 이미지 저장소 (local 대상 기본 등록)"""

from app.storage.registry import register_destination, get_destination, list_destinations
from app.storage.writer import BaseDestination, StorageWriter, sanitize_filename

__all__ = [
    "BaseDestination",
    "StorageWriter",
    "register_destination",
    "get_destination",
    "list_destinations",
    "sanitize_filename",
]
