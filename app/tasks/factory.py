"""QueueManager 생성 (실제 외부 협력자 연결)"""

from __future__ import annotations

from app import config
from app.clients.downloader import ImageDownloader
from app.clients.pixian_client import PixianClient
from app.clients.scraper import RemoteScraper
from app.storage import StorageWriter
from app.tasks.orchestrator import QueueManager
from app.tasks.store import BaseStore, MemoryStore, RedisStore


def build_store(backend: str | None = None) -> BaseStore:
    """STORE_BACKEND 설정에 맞는 저장소를 생성한다."""
    backend = backend or config.STORE_BACKEND
    if backend == "redis":
        return RedisStore()
    if backend == "memory":
        return MemoryStore()
    raise ValueError(f"Unknown store backend: {backend}")


def build_queue_manager(store: BaseStore | None = None) -> QueueManager:
    return QueueManager(
        store=store or build_store(),
        scraper=RemoteScraper(),
        downloader=ImageDownloader(),
        remover=PixianClient(),
        writer=StorageWriter(),
    )
