"""상품 수집 클라이언트 (브라우저 자동화 사이드카)"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel, ValidationError

from app import config
from app.clients.http import request_with_retries
from app.tasks.errors import DiscoveryError
from app.tasks.models import ScrapingSettings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], Union[Awaitable[None], None]]


class ScrapedProduct(BaseModel):
    """수집된 상품"""
    name: str
    image_url: str
    product_url: Optional[str] = None
    category: Optional[str] = None
    price: Optional[Union[str, float]] = None


async def report_progress(on_progress: ProgressCallback | None, percent: float, message: str) -> None:
    if on_progress is None:
        return
    result = on_progress(percent, message)
    if inspect.isawaitable(result):
        await result


class BaseScraper(ABC):
    """
    상품 수집기 계약.

    discover: 카테고리 페이지를 돌며 상품 목록을 수집한다 (완전 자동화).
    open_session / login / extract_by_filter / close_session: 하나의 브라우저
    세션을 공유하며 관리자 필터별로 썸네일을 추출한다 (필터 자동화).
    """

    @abstractmethod
    async def discover(
        self,
        settings: ScrapingSettings,
        on_progress: ProgressCallback | None = None,
    ) -> List[ScrapedProduct]: ...

    @abstractmethod
    async def open_session(self, headless: bool = True) -> str: ...

    @abstractmethod
    async def login(self, session_id: str, username: str, password: str) -> bool: ...

    @abstractmethod
    async def extract_by_filter(
        self,
        session_id: str,
        filter_name: str,
        on_progress: ProgressCallback | None = None,
    ) -> List[ScrapedProduct]: ...

    @abstractmethod
    async def close_session(self, session_id: str) -> None: ...

    @abstractmethod
    async def stop(self) -> None:
        """진행 중인 브라우저 세션을 모두 중단한다."""


class RemoteScraper(BaseScraper):
    """HTTP로 브라우저 자동화 사이드카를 호출하는 수집기"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or config.SCRAPER_BASE_URL).rstrip("/")
        self.timeout = timeout or config.SCRAPER_TIMEOUT
        self.max_retries = max_retries
        self.transport = transport

    async def discover(self, settings, on_progress=None) -> List[ScrapedProduct]:
        await report_progress(on_progress, 0, f"Scraping category {settings.category}")
        data = await self._call("POST", "/discover", json=settings.model_dump())
        products = self._parse_products(data)
        await report_progress(on_progress, 100, f"Scraped {len(products)} products")
        return products

    async def open_session(self, headless: bool = True) -> str:
        data = await self._call("POST", "/sessions", json={"headless": headless})
        session_id = data.get("session_id")
        if not session_id:
            raise DiscoveryError("Browser session initialization failed")
        return session_id

    async def login(self, session_id: str, username: str, password: str) -> bool:
        data = await self._call(
            "POST",
            f"/sessions/{session_id}/login",
            json={"username": username, "password": password},
        )
        return bool(data.get("success"))

    async def extract_by_filter(self, session_id, filter_name, on_progress=None) -> List[ScrapedProduct]:
        await report_progress(on_progress, 0, f"Applying filter \"{filter_name}\"")
        data = await self._call(
            "POST",
            f"/sessions/{session_id}/extract",
            json={"filter": filter_name},
        )
        products = self._parse_products(data)
        await report_progress(on_progress, 100, f"Filter \"{filter_name}\": {len(products)} thumbnails")
        return products

    async def close_session(self, session_id: str) -> None:
        await self._call("DELETE", f"/sessions/{session_id}")

    async def stop(self) -> None:
        try:
            await self._call("POST", "/stop")
        except DiscoveryError as e:
            logger.warning(f"Scraper stop failed: {e}")

    async def _call(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await request_with_retries(
                    client, method, path, max_retries=self.max_retries, **kwargs
                )
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Scraper unreachable: {e!r}") from e

        if not response.is_success:
            raise DiscoveryError(f"Scraper error ({response.status_code}): {response.text}")
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise DiscoveryError(f"Scraper returned invalid JSON: {e}") from e

    def _parse_products(self, data: Dict[str, Any]) -> List[ScrapedProduct]:
        try:
            return [ScrapedProduct.model_validate(p) for p in data.get("products", [])]
        except ValidationError as e:
            raise DiscoveryError(f"Scraper returned malformed products: {e}") from e
