"""
공용 fixture와 가짜 협력자.

외부 서비스(브라우저 사이드카, Pixian, 원본 이미지 서버)는 모두 인프로세스
가짜로 대체하고 저장소는 MemoryStore를 사용한다.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Set

import pytest
import pytest_asyncio

from app.clients.pixian_client import BackgroundRemovalResult, calculate_quality
from app.clients.scraper import BaseScraper, ScrapedProduct, report_progress
from app.storage import StorageWriter
from app.tasks.events import AutomationEvent, EventBus
from app.tasks.models import StorageSettings, TransformSettings
from app.tasks.orchestrator import QueueManager
from app.tasks.store import MemoryStore


def make_products(count: int, prefix: str = "item") -> List[ScrapedProduct]:
    return [
        ScrapedProduct(
            name=f"{prefix}-{i}",
            image_url=f"https://images.example.com/{prefix}-{i}.jpg",
            product_url=f"https://shop.example.com/{prefix}-{i}",
            category="여성의류",
        )
        for i in range(count)
    ]


class FakeScraper(BaseScraper):
    def __init__(
        self,
        products: Optional[List[ScrapedProduct]] = None,
        filters: Optional[Dict[str, List[ScrapedProduct]]] = None,
        login_ok: bool = True,
        discover_error: Optional[Exception] = None,
    ) -> None:
        self.products = products or []
        self.filters = filters or {}
        self.login_ok = login_ok
        self.discover_error = discover_error
        self.extracted: List[str] = []
        self.closed: List[str] = []
        self.stopped = False

    async def discover(self, settings, on_progress=None):
        await report_progress(on_progress, 50, "Scraping category page")
        if self.discover_error is not None:
            raise self.discover_error
        await report_progress(on_progress, 100, "Scraping done")
        return list(self.products)

    async def open_session(self, headless: bool = True) -> str:
        return "session-1"

    async def login(self, session_id: str, username: str, password: str) -> bool:
        return self.login_ok

    async def extract_by_filter(self, session_id, filter_name, on_progress=None):
        self.extracted.append(filter_name)
        await report_progress(on_progress, 100, f"{filter_name} extracted")
        return list(self.filters.get(filter_name, []))

    async def close_session(self, session_id: str) -> None:
        self.closed.append(session_id)

    async def stop(self) -> None:
        self.stopped = True


class FakeDownloader:
    def __init__(self, failing: Optional[Set[str]] = None, delay: float = 0) -> None:
        self.failing = failing or set()
        self.delay = delay
        self.calls: List[str] = []

    async def download(self, url: str) -> bytes:
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if url in self.failing:
            raise RuntimeError(f"Image download failed: 404 {url}")
        return b"x" * 1000


class FakeRemover:
    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.filenames: List[str] = []

    async def remove_background(self, image: bytes, filename: str, settings: TransformSettings):
        self.filenames.append(filename)
        if not self.succeed:
            return BackgroundRemovalResult(
                success=False,
                processing_time_ms=5,
                original_size=len(image),
                error="Pixian API error (500): upstream",
            )
        processed = image[: len(image) // 2]
        return BackgroundRemovalResult(
            success=True,
            processing_time_ms=5,
            original_size=len(image),
            processed_size=len(processed),
            quality=calculate_quality(len(image), len(processed)),
            processed_bytes=processed,
        )


class EventRecorder:
    """구독한 이벤트를 발행 순서대로 모은다."""

    def __init__(self) -> None:
        self.events: List[AutomationEvent] = []

    def __call__(self, event: AutomationEvent) -> None:
        self.events.append(event)

    def of(self, event_type) -> List[AutomationEvent]:
        return [e for e in self.events if e.type == event_type]


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def scraper() -> FakeScraper:
    return FakeScraper(products=make_products(3))


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def remover() -> FakeRemover:
    return FakeRemover()


@pytest.fixture
def transform_settings() -> TransformSettings:
    return TransformSettings(api_key="test-key")


@pytest.fixture
def storage_settings(tmp_path) -> StorageSettings:
    return StorageSettings(path=str(tmp_path / "uploads"))


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def build_manager(store, scraper, downloader, remover, recorder):
    """기본 가짜 협력자로 QueueManager를 만든다. 키워드로 일부를 교체할 수 있다."""

    def _build(**overrides) -> QueueManager:
        bus = EventBus()
        bus.subscribe(recorder)
        params = dict(
            store=store,
            scraper=scraper,
            downloader=downloader,
            remover=remover,
            writer=StorageWriter(),
            bus=bus,
            max_workers=3,
            dispatch_interval=0.01,
            max_retries=3,
            retry_delay=0,
            default_api_key="",
        )
        params.update(overrides)
        return QueueManager(**params)

    return _build


@pytest_asyncio.fixture
async def manager(build_manager):
    qm = build_manager()
    await qm.start()
    yield qm
    await qm.stop()
