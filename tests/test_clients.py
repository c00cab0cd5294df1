"""HTTP 클라이언트 테스트 (httpx.MockTransport)."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from app.clients.downloader import ImageDownloader, ImageDownloadError
from app.clients.http import request_with_retries
from app.clients.pixian_client import PixianClient, calculate_quality, content_type_for
from app.clients.scraper import RemoteScraper
from app.tasks.errors import ConfigurationError, DiscoveryError
from app.tasks.models import ScrapingSettings, TransformSettings


class TestQuality:
    @pytest.mark.parametrize(
        "original, processed, expected",
        [(1000, 500, 85), (1000, 1000, 100), (1000, 0, 70), (1000, 5000, 100), (0, 10, 50)],
    )
    def test_calculate_quality(self, original, processed, expected):
        assert calculate_quality(original, processed) == expected

    def test_content_type(self):
        assert content_type_for("a.PNG") == "image/png"
        assert content_type_for("a.jpg") == "image/jpeg"
        assert content_type_for("noext") == "image/jpeg"


class TestPixianClient:
    @pytest.mark.asyncio
    async def test_remove_background_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = request.read()
            return httpx.Response(200, content=b"p" * 400)

        client = PixianClient(api_url="https://pixian.test/remove", transport=httpx.MockTransport(handler))

        result = await client.remove_background(b"o" * 1000, "블라우스.jpg", TransformSettings(api_key="k1"))

        assert result.success is True
        assert result.processed_bytes == b"p" * 400
        assert result.original_size == 1000
        assert result.processed_size == 400
        assert result.quality == 82
        assert seen["auth"] == "Bearer k1"
        assert b'name="image"' in seen["body"]

    @pytest.mark.asyncio
    async def test_api_error_returned_as_failure(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="invalid key"))
        client = PixianClient(api_url="https://pixian.test/remove", transport=transport)

        result = await client.remove_background(b"o" * 10, "a.png", TransformSettings(api_key="bad"))

        assert result.success is False
        assert result.error == "Pixian API error (401): invalid key"
        assert result.processed_bytes is None

    @pytest.mark.asyncio
    async def test_network_error_returned_as_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        client = PixianClient(
            api_url="https://pixian.test/remove", max_retries=0, transport=httpx.MockTransport(handler)
        )

        result = await client.remove_background(b"o", "a.png", TransformSettings(api_key="k"))

        assert result.success is False
        assert "Processing failed" in result.error

    @pytest.mark.asyncio
    async def test_missing_key_raises(self):
        settings = TransformSettings.model_construct(api_key="", quality=90, format="png", timeout_ms=30000)

        with pytest.raises(ConfigurationError):
            await PixianClient().remove_background(b"o", "a.png", settings)

    @pytest.mark.asyncio
    async def test_connection_check(self):
        ok = PixianClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"png")))
        bad = PixianClient(transport=httpx.MockTransport(lambda r: httpx.Response(403, text="forbidden")))
        settings = TransformSettings(api_key="k")

        assert (await ok.test_connection(settings))["success"] is True
        failed = await bad.test_connection(settings)
        assert failed["success"] is False
        assert "403" in failed["message"]


class TestDownloader:
    @pytest.mark.asyncio
    async def test_download(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, content=b"jpeg-bytes"))

        data = await ImageDownloader(transport=transport).download("https://images.test/1.jpg")

        assert data == b"jpeg-bytes"

    @pytest.mark.asyncio
    async def test_not_found_raises(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(404))

        with pytest.raises(ImageDownloadError, match="404"):
            await ImageDownloader(transport=transport).download("https://images.test/missing.jpg")


class TestRequestWithRetries:
    @pytest.mark.asyncio
    async def test_retries_server_errors(self, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr("app.clients.http.asyncio.sleep", sleep)
        statuses = iter([503, 502, 200])
        transport = httpx.MockTransport(lambda r: httpx.Response(next(statuses)))

        async with httpx.AsyncClient(transport=transport) as client:
            response = await request_with_retries(client, "GET", "https://x.test/", max_retries=2)

        assert response.status_code == 200
        assert [c.args[0] for c in sleep.await_args_list] == [1.5, 3.0]

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await request_with_retries(client, "GET", "https://x.test/", max_retries=2)

        assert response.status_code == 400
        assert len(calls) == 1


class TestRemoteScraper:
    @pytest.mark.asyncio
    async def test_discover_parses_products(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/discover"
            assert json.loads(request.content)["category"] == "여성의류"
            return httpx.Response(
                200,
                json={
                    "products": [
                        {"name": "셔츠", "image_url": "https://img.test/1.jpg", "price": 39000},
                        {"name": "팬츠", "image_url": "https://img.test/2.jpg", "price": "49,000"},
                    ]
                },
            )

        scraper = RemoteScraper(base_url="http://sidecar.test", transport=httpx.MockTransport(handler))
        progress = []

        products = await scraper.discover(ScrapingSettings(), lambda p, m: progress.append(p))

        assert [p.name for p in products] == ["셔츠", "팬츠"]
        assert progress == [0, 100]

    @pytest.mark.asyncio
    async def test_session_flow(self):
        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/sessions":
                return httpx.Response(200, json={"session_id": "s1"})
            if path == "/sessions/s1/login":
                return httpx.Response(200, json={"success": True})
            if path == "/sessions/s1/extract":
                return httpx.Response(200, json={"products": [{"name": "A", "image_url": "https://img.test/a.jpg"}]})
            if path == "/sessions/s1" and request.method == "DELETE":
                return httpx.Response(204)
            return httpx.Response(404)

        scraper = RemoteScraper(base_url="http://sidecar.test", transport=httpx.MockTransport(handler))

        session_id = await scraper.open_session()
        assert await scraper.login(session_id, "admin", "pw") is True
        found = await scraper.extract_by_filter(session_id, "신상품")
        await scraper.close_session(session_id)

        assert [p.name for p in found] == ["A"]

    @pytest.mark.asyncio
    async def test_sidecar_error_raises_discovery_error(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(400, text="bad category"))
        scraper = RemoteScraper(base_url="http://sidecar.test", transport=transport)

        with pytest.raises(DiscoveryError, match="bad category"):
            await scraper.discover(ScrapingSettings())

    @pytest.mark.asyncio
    async def test_malformed_products_raise(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"products": [{"name": "x"}]}))
        scraper = RemoteScraper(base_url="http://sidecar.test", transport=transport)

        with pytest.raises(DiscoveryError, match="malformed"):
            await scraper.discover(ScrapingSettings())
