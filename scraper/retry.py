"""
scraper/retry.py — 지수 백오프 재시도 정책

대기 시간 = min(base × 2^(attempt-1) + uniform(0, jitter), cap)
    attempt=1 실패 → ~2~3s
    attempt=2 실패 → ~4~5s
    attempt=3 실패 → ~8~9s
    이후           → 15s 상한

지연은 시도 번호에 대해 단조 비감소입니다 (jitter < base 이므로).
InvalidInputError 는 재시도하지 않고 즉시 전파합니다.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import structlog

from scraper.engine import ExtractionError, InvalidInputError

T = TypeVar("T")

logger = structlog.get_logger(__name__)


@dataclass
class RetryPolicy:
    """
    연산을 최대 max_attempts 회 실행합니다.

    operation 은 1부터 시작하는 시도 번호를 인자로 받는 코루틴 함수입니다.
    sleep / rand 는 테스트에서 주입합니다.
    """

    max_attempts: int   = 3
    base_delay:   float = 2.0
    max_delay:    float = 15.0
    jitter:       float = 1.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)
    rand:  Callable[[], float]                = field(default=random.random, repr=False)

    def delay_for(self, attempt: int) -> float:
        """attempt 번째 시도가 실패한 뒤 다음 시도 전 대기 초."""
        raw = self.base_delay * (2 ** (attempt - 1)) + self.rand() * self.jitter
        return min(raw, self.max_delay)

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        label: str = "operation",
    ) -> T:
        """
        Raises:
            InvalidInputError: 즉시 (재시도 없음)
            ExtractionError:   모든 시도 실패 시 마지막 오류
        """
        last_exc: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation(attempt)
            except InvalidInputError:
                raise
            except Exception as exc:
                last_exc = exc
                logger.warning(
                    "attempt_failed",
                    label=label,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )

            if attempt < self.max_attempts:
                delay = self.delay_for(attempt)
                logger.info("backoff", label=label, attempt=attempt, wait_sec=round(delay, 2))
                await self.sleep(delay)

        if isinstance(last_exc, ExtractionError):
            raise last_exc
        raise ExtractionError(
            f"{label}: 최대 시도({self.max_attempts}회) 초과"
        ) from last_exc
