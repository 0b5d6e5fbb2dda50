"""
scraper/unified.py — 통합 추출 라우터 (사이트 감지 → 전략 선택 → General 폴백)

라우팅:
    1. 도메인 테이블 (정확히 일치 또는 '.키' 접미사)
           naver.com  → NaverStrategy       ("Naver")
           google.com → GoogleNewsStrategy  ("GoogleNews")
    2. URL 부분 문자열
           news.naver.com  → Naver
           news.google.com → GoogleNews
    3. 그 외 → GeneralStrategy ("General")

폴백:
    특화 전략이 실패하거나 본문이 비면 General 로 1회 재시도합니다
    (unified.fallback_reason 기록). General 까지 실패하면 None.

배치:
    options.concurrency 크기의 청크를 순차 처리하고, 청크 안의 URL 은
    asyncio.gather 로 동시에 처리합니다. URL 하나의 실패가 배치를 중단시키지 않습니다.

사용 예:
    async with UnifiedExtractor() as extractor:
        result = await extractor.extract("https://n.news.naver.com/article/001/0014000000")
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, Mapping, Optional, Sequence, Union

import structlog

from core.logger import Phase, log_context
from scraper.engine import BaseStrategy, ExtractionOutcome, bare_domain, utc_now_iso
from scraper.general import GeneralStrategy
from scraper.google_news import GoogleNewsStrategy
from scraper.models import (
    BatchError,
    BatchOutcome,
    ExtractionOptions,
    ExtractionRequest,
    UnifiedEnvelope,
    UnifiedResult,
)
from scraper.naver import NaverStrategy

logger = structlog.get_logger(__name__)

OptionsArg = Optional[Union[ExtractionOptions, Mapping[str, Any]]]

GENERAL = "General"

EMPTY_RESULT_ERROR = "Extraction returned null or empty content"

SUPPORTED_SITES: list[str] = [
    "naver.com",
    "news.naver.com",
    "google.com",
    "news.google.com",
    "기타 일반 뉴스 사이트",
]


class UnifiedExtractor:
    """
    URL 별로 전략을 골라 추출하는 오케스트레이터.

    Args:
        options: 기본 옵션 (기본: ExtractionOptions.from_settings())
        naver / google / general: 전략 주입 (테스트용, 기본: 생성)
    """

    def __init__(
        self,
        options: Optional[ExtractionOptions] = None,
        *,
        naver:   Optional[BaseStrategy] = None,
        google:  Optional[BaseStrategy] = None,
        general: Optional[BaseStrategy] = None,
    ) -> None:
        self.options = options or ExtractionOptions.from_settings()
        self.naver   = naver   or NaverStrategy(default_options=self.options)
        self.google  = google  or GoogleNewsStrategy(default_options=self.options)
        self.general = general or GeneralStrategy(default_options=self.options)

        # (도메인 키, 전략, 표시 이름)
        self._domain_table: list[tuple[str, BaseStrategy, str]] = [
            ("naver.com",  self.naver,  "Naver"),
            ("google.com", self.google, "GoogleNews"),
        ]
        self._substring_table: list[tuple[str, BaseStrategy, str]] = [
            ("news.naver.com",  self.naver,  "Naver"),
            ("news.google.com", self.google, "GoogleNews"),
        ]

    async def __aenter__(self) -> "UnifiedExtractor":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close_all()

    # ── 라우팅 ───────────────────────────────────────────────

    @staticmethod
    def extract_domain(url: str) -> Optional[str]:
        """호스트명 ('www.' 제거). 파싱 불가 시 None."""
        return bare_domain(url)

    def detect_site(self, url: str) -> str:
        domain = self.extract_domain(url)
        if domain is None:
            return "Unknown"
        if "naver.com" in domain:
            return "Naver"
        if "google.com" in domain:
            return "GoogleNews"
        return domain

    def select_strategy(self, url: str) -> tuple[BaseStrategy, str]:
        domain = self.extract_domain(url) or ""

        for key, strategy, name in self._domain_table:
            if domain == key or domain.endswith("." + key):
                return strategy, name

        for fragment, strategy, name in self._substring_table:
            if fragment in url:
                return strategy, name

        return self.general, GENERAL

    # ── 단건 추출 ────────────────────────────────────────────

    def _resolve_options(self, options: OptionsArg) -> ExtractionOptions:
        if isinstance(options, ExtractionOptions):
            return options
        return self.options.merged(options)

    async def extract(self, url: str, options: OptionsArg = None) -> Optional[UnifiedResult]:
        """
        URL 하나를 추출합니다.

        Returns:
            UnifiedResult, 또는 모든 전략이 실패하면 None

        Raises:
            InvalidInputError: URL 또는 옵션이 잘못됨 (재시도·폴백 없음)
        """
        request = ExtractionRequest.create(url, options=self._resolve_options(options))
        url, opts = request.url, request.options

        started = time.perf_counter()
        strategy, name = self.select_strategy(url)
        logger.info("strategy_selected", url=url, strategy=name)

        with log_context(url=url, strategy=name):
            outcome = await strategy.try_extract(url, opts)

        extractor_used  = name
        fallback_reason = None

        if not outcome.has_content and strategy is not self.general:
            fallback_reason = self._fallback_reason(name, outcome)
            logger.warning("fallback_to_general", url=url, strategy=name, reason=fallback_reason)
            with log_context(url=url, strategy=GENERAL):
                outcome = await self.general.try_extract(url, opts)
            extractor_used = GENERAL

        if not outcome.has_content:
            logger.error(
                "extraction_failed",
                url=url,
                extractor=extractor_used,
                error=str(outcome.error) if outcome.error else EMPTY_RESULT_ERROR,
            )
            return None

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        result = UnifiedResult(
            **outcome.article.model_dump(),
            unified=UnifiedEnvelope(
                detected_site            = self.detect_site(url),
                extractor_used           = extractor_used,
                total_extraction_time_ms = elapsed_ms,
                requested_url            = url,
                timestamp                = utc_now_iso(),
                fallback_reason          = fallback_reason,
            ),
        )
        logger.info(
            "extraction_complete",
            url=url,
            extractor=extractor_used,
            content_len=len(result.content),
            elapsed_ms=elapsed_ms,
        )
        return result

    @staticmethod
    def _fallback_reason(name: str, outcome: ExtractionOutcome) -> str:
        if outcome.error is not None:
            return f"{name} 추출 실패: {outcome.error}"
        return f"{name} 추출기 콘텐츠 없음"

    # ── 배치 ─────────────────────────────────────────────────

    async def extract_batch(
        self, urls: Sequence[str], options: OptionsArg = None
    ) -> BatchOutcome:
        """
        여러 URL 을 청크 단위로 추출합니다. URL 별 실패는 errors 에 모입니다.

        Raises:
            InvalidInputError: 옵션이 잘못됨 (URL 별 오류는 raise 하지 않음)
        """
        opts     = self._resolve_options(options)
        size     = opts.concurrency
        outcome  = BatchOutcome()
        batch_id = uuid.uuid4().hex[:8]

        with log_context(batch_id=batch_id, phase=Phase.BATCH):
            logger.info("batch_started", total=len(urls), chunk_size=size)

            for start in range(0, len(urls), size):
                chunk = list(urls[start:start + size])
                logger.debug("batch_chunk", start=start, size=len(chunk))

                settled = await asyncio.gather(
                    *(self.extract(u, opts) for u in chunk),
                    return_exceptions=True,
                )
                for url, item in zip(chunk, settled):
                    if isinstance(item, BaseException) and not isinstance(item, Exception):
                        raise item
                    if isinstance(item, Exception):
                        outcome.errors.append(BatchError(url=str(url), error=str(item)))
                    elif item is None:
                        outcome.errors.append(BatchError(url=str(url), error=EMPTY_RESULT_ERROR))
                    else:
                        outcome.results.append(item)

            logger.info(
                "batch_complete",
                succeeded=len(outcome.results),
                failed=len(outcome.errors),
            )
        return outcome

    # ── 정리 ─────────────────────────────────────────────────

    async def close_all(self) -> None:
        """모든 전략의 리소스를 해제합니다. 실패는 로그만 남깁니다. 멱등."""
        with log_context(phase=Phase.CLEANUP):
            for strategy in (self.naver, self.google, self.general):
                try:
                    await strategy.close()
                except Exception as exc:
                    logger.warning(
                        "strategy_close_failed",
                        strategy=strategy.name,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )


# ─────────────────────────────────────────────────────────────
# 모듈 헬퍼
# ─────────────────────────────────────────────────────────────

async def extract(url: str, **options: Any) -> Optional[UnifiedResult]:
    """일회성 추출기를 만들어 URL 하나를 추출하고 정리합니다."""
    opts = ExtractionOptions.from_settings().merged(options)
    async with UnifiedExtractor(opts) as extractor:
        return await extractor.extract(url)


async def extract_batch(urls: Sequence[str], **options: Any) -> BatchOutcome:
    """일회성 추출기를 만들어 배치를 추출하고 정리합니다."""
    opts = ExtractionOptions.from_settings().merged(options)
    async with UnifiedExtractor(opts) as extractor:
        return await extractor.extract_batch(urls)


def get_supported_sites() -> list[str]:
    return list(SUPPORTED_SITES)
