"""
tests/conftest.py — 공용 픽스처
"""

from __future__ import annotations

import logging

import pytest
import structlog

from core.config import get_settings
from core.logger import clear_log_context
from tests.fakes import FakeClock


def _reset_logging() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def _isolate_state():
    """테스트 간 설정 캐시 · 로그 컨텍스트 · 로깅 설정을 초기화합니다."""
    get_settings.cache_clear()
    clear_log_context()
    yield
    get_settings.cache_clear()
    clear_log_context()
    if structlog.is_configured():
        _reset_logging()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
