"""환경 설정 (.env / 환경변수)"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

# Redis / 저장소
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")

# 스크래핑 사이드카 (브라우저 자동화 서비스)
SCRAPER_BASE_URL = os.getenv("SCRAPER_BASE_URL", "http://localhost:3001").rstrip("/")
SCRAPER_TIMEOUT = float(os.getenv("SCRAPER_TIMEOUT", "120"))

# Pixian 배경 제거
PIXIAN_API_URL = os.getenv("PIXIAN_API_URL", "https://api.pixian.ai/api/v2/remove-background")
PIXIAN_API_KEY = os.getenv("PIXIAN_API_KEY", "")

# 저장 경로
UPLOADS_DIR = os.getenv("UPLOADS_DIR", "./uploads")

# 큐 / 워커
MAX_CONCURRENT_WORKERS = int(os.getenv("MAX_CONCURRENT_WORKERS", "3"))
DISPATCH_INTERVAL_SECONDS = float(os.getenv("DISPATCH_INTERVAL_SECONDS", "1.0"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
RETRY_DELAY_SECONDS = float(os.getenv("RETRY_DELAY_SECONDS", "0"))

CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str | None = None) -> None:
    """프로세스 로깅을 설정한다 (엔트리 포인트에서 한 번 호출)."""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
