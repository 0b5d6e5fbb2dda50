"""
core/config.py — News Content Extractor 통합 설정

설정 로드 우선순위:
  1. 환경 변수
  2. .env 파일 (로컬 개발)
  3. Settings 기본값

사용법:
    from core.config import get_settings

    s = get_settings()
    print(s.EXTRACT_TIMEOUT_MS, s.is_production)

─────────────────────────────────────────────────────────────────
[추출기 기본값 가이드]

 EXTRACT_*  값은 ExtractionOptions.from_settings() 가 읽어
 요청 옵션의 기본값으로 사용합니다. 요청 시 전달한 옵션이 항상 우선합니다.

   EXTRACT_TIMEOUT_MS             시도 1회 데드라인 (기본 45초)
   EXTRACT_MAX_RETRIES            전략별 최대 시도 횟수 (기본 3)
   EXTRACT_NAVIGATION_TIMEOUT_MS  리다이렉트 안정화 대기 (기본 30초)
   EXTRACT_CONTENT_WAIT_MS        DOM 준비 후 추가 대기 (기본 5초)
   EXTRACT_REQUESTS_PER_MINUTE    60초 슬라이딩 윈도우 한도 (기본 10)
   EXTRACT_BATCH_CONCURRENCY      배치 청크 크기 (기본 5)
─────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("정수 환경 변수 파싱 실패 [%s=%r], 기본값 %d 사용", key, raw, default)
        return default


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# -------------------------------------------------------
# 설정 데이터클래스
# -------------------------------------------------------

@dataclass(frozen=True)
class Settings:
    # ── 배포 환경 ─────────────────────────────────────────
    ENVIRONMENT: str = "development"

    # ── 추출 동작 ─────────────────────────────────────────
    EXTRACT_TIMEOUT_MS: int            = 45_000
    EXTRACT_MAX_RETRIES: int           = 3
    EXTRACT_NAVIGATION_TIMEOUT_MS: int = 30_000
    EXTRACT_CONTENT_WAIT_MS: int       = 5_000
    EXTRACT_REQUESTS_PER_MINUTE: int   = 10
    EXTRACT_BATCH_CONCURRENCY: int     = 5
    EXTRACT_PROXY_SERVER: Optional[str] = None

    # ── 정적 HTTP ─────────────────────────────────────────
    HTTP_TIMEOUT: int = 10   # 초

    # ── 브라우저 ──────────────────────────────────────────
    BROWSER_HEADLESS: bool = True

    # ── 로깅 ──────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str   = "logs"

    # ── 편의 프로퍼티 ─────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


# -------------------------------------------------------
# 싱글톤 팩토리
# -------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """환경 변수 / .env 에서 Settings 싱글톤을 만들어 반환합니다."""
    defaults = Settings()
    return Settings(
        ENVIRONMENT                   = os.getenv("ENVIRONMENT", defaults.ENVIRONMENT),
        EXTRACT_TIMEOUT_MS            = _env_int("EXTRACT_TIMEOUT_MS", defaults.EXTRACT_TIMEOUT_MS),
        EXTRACT_MAX_RETRIES           = _env_int("EXTRACT_MAX_RETRIES", defaults.EXTRACT_MAX_RETRIES),
        EXTRACT_NAVIGATION_TIMEOUT_MS = _env_int(
            "EXTRACT_NAVIGATION_TIMEOUT_MS", defaults.EXTRACT_NAVIGATION_TIMEOUT_MS
        ),
        EXTRACT_CONTENT_WAIT_MS       = _env_int("EXTRACT_CONTENT_WAIT_MS", defaults.EXTRACT_CONTENT_WAIT_MS),
        EXTRACT_REQUESTS_PER_MINUTE   = _env_int(
            "EXTRACT_REQUESTS_PER_MINUTE", defaults.EXTRACT_REQUESTS_PER_MINUTE
        ),
        EXTRACT_BATCH_CONCURRENCY     = _env_int(
            "EXTRACT_BATCH_CONCURRENCY", defaults.EXTRACT_BATCH_CONCURRENCY
        ),
        EXTRACT_PROXY_SERVER          = os.getenv("EXTRACT_PROXY_SERVER") or None,
        HTTP_TIMEOUT                  = _env_int("HTTP_TIMEOUT", defaults.HTTP_TIMEOUT),
        BROWSER_HEADLESS              = _env_bool("BROWSER_HEADLESS", defaults.BROWSER_HEADLESS),
        LOG_LEVEL                     = os.getenv("LOG_LEVEL", defaults.LOG_LEVEL),
        LOG_DIR                       = os.getenv("LOG_DIR", defaults.LOG_DIR),
    )


# -------------------------------------------------------
# 시작 시 값 검증
# -------------------------------------------------------

def validate_settings(s: Optional[Settings] = None) -> None:
    """앱 시작 시 호출하여 설정 값 범위를 확인합니다."""
    s = s or get_settings()
    problems = []

    if s.EXTRACT_TIMEOUT_MS <= 0:
        problems.append("EXTRACT_TIMEOUT_MS > 0")
    if s.EXTRACT_MAX_RETRIES < 1:
        problems.append("EXTRACT_MAX_RETRIES >= 1")
    if s.EXTRACT_REQUESTS_PER_MINUTE < 1:
        problems.append("EXTRACT_REQUESTS_PER_MINUTE >= 1")
    if s.EXTRACT_BATCH_CONCURRENCY < 1:
        problems.append("EXTRACT_BATCH_CONCURRENCY >= 1")
    if s.HTTP_TIMEOUT <= 0:
        problems.append("HTTP_TIMEOUT > 0")

    if problems:
        raise ValueError(
            f"잘못된 설정 값: {', '.join(problems)} 조건을 만족해야 합니다."
        )

    logger.info("설정 검증 완료 (환경: %s)", s.ENVIRONMENT)
