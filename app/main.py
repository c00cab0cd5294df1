from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import config
from app.clients.pixian_client import PixianClient
from app.routers import automation as automation_router
from app.routers import dashboard as dashboard_router
from app.routers import events as events_router
from app.routers import settings as settings_router
from app.routers import tasks as tasks_router
from app.tasks.factory import build_queue_manager
from app.tasks.orchestrator import QueueManager
from app.tasks.redis_client import close_redis

logger = logging.getLogger(__name__)


def create_app(
    manager: QueueManager | None = None,
    pixian_client: PixianClient | None = None,
) -> FastAPI:
    # FastAPI 앱과 공통 미들웨어/라우터를 구성한다.
    config.configure_logging()
    manager = manager or build_queue_manager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await manager.start()
        logger.info("Queue manager started")
        try:
            yield
        finally:
            await manager.stop()
            if config.STORE_BACKEND == "redis":
                await close_redis()
            logger.info("Queue manager stopped")

    app = FastAPI(title="image-automation-ai", version="0.1.0", lifespan=lifespan)
    app.state.queue_manager = manager
    app.state.pixian_client = pixian_client or PixianClient()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(automation_router.router, prefix="/ai")
    app.include_router(tasks_router.router, prefix="/ai")
    app.include_router(dashboard_router.router, prefix="/ai")
    app.include_router(settings_router.router, prefix="/ai")
    app.include_router(events_router.router, prefix="/ai")

    @app.get("/ai/health")
    async def health() -> dict[str, str]:
        # 간단한 헬스 체크 엔드포인트.
        return {"status": "ok"}

    return app


app = create_app()
