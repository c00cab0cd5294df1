"""자동화 예외 정의"""

from __future__ import annotations


class AutomationError(Exception):
    """자동화 관련 예외의 부모 클래스"""


class ConfigurationError(AutomationError, ValueError):
    """작업 생성 전 설정 검증 실패 (자격 증명/API 키 누락 등)"""


class DiscoveryError(AutomationError):
    """스크래퍼 연결/로그인/파싱 실패"""


class StorageError(AutomationError):
    """저장소 대상 오류"""


class InvalidTransitionError(AutomationError):
    """상태 머신이 허용하지 않는 상태 전이"""


class StageError(AutomationError):
    """파이프라인 단계(fetch/transform/persist) 실패"""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage} stage failed: {message}")
        self.stage = stage
        self.reason = message
