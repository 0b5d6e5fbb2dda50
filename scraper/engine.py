"""
scraper/engine.py — 추출 전략 공통 계약 (Strategy · Errors · Outcome)

설계 원칙:
    전략 계약:
        BaseStrategy.extract(url, options) → ExtractedArticle
            실패 시 ExtractionError 하위 예외를 raise 합니다.
        BaseStrategy.try_extract(url, options) → ExtractionOutcome
            라우터가 소비하는 명시적 Result 타입.
            InvalidInputError 만 그대로 전파하고, 나머지는 실패 outcome 으로 변환합니다.
        BaseStrategy.close()
            브라우저 리소스 해제. 여러 번 호출해도 안전합니다.

    데드라인:
        _with_deadline() 이 모든 시도를 asyncio.wait_for 로 감쌉니다.
        시간 초과 → ExtractionTimeoutError (멈춘 페이지가 배치를 막지 않음)

    에러 핸들링:
        InvalidInputError      → 즉시 전파 (재시도·폴백 없음)
        FetchError             → 네트워크 / 타임아웃 / non-2xx
        BotChallengeError      → 안티봇 마커 감지
        EmptyContentError      → 파싱 성공, 본문 100자 미만
        ExtractionTimeoutError → 시도 데드라인 초과
        BrowserResourceError   → 브라우저/세션 생성 실패 또는 크래시

공개 클래스:
    BaseStrategy       — 공통 파싱 헬퍼 + 데드라인 + Result 변환 (abstract)
    ExtractionOutcome  — 성공(article) 또는 실패(error)
"""

from __future__ import annotations

import abc
import asyncio
import json
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import urlparse

import structlog
from bs4 import BeautifulSoup
from dateutil import parser as dateutil_parser

from scraper.models import ExtractedArticle, ExtractionOptions

T = TypeVar("T")


# ─────────────────────────────────────────────────────────────
# 예외 계층
# ─────────────────────────────────────────────────────────────

class ExtractionError(Exception):
    """기본 추출 예외 (모든 전략 실패의 루트)"""

    kind: str = "extraction"


class InvalidInputError(ExtractionError):
    """
    잘못된 URL 또는 옵션.
    요청 시점에 즉시 전파되며 재시도·폴백 대상이 아닙니다.
    """

    kind = "invalid_input"


class FetchError(ExtractionError):
    """네트워크 오류, HTTP non-2xx, 모든 요청 식별자 실패."""

    kind = "fetch"


class BotChallengeError(ExtractionError):
    """Cloudflare 등 안티봇 챌린지 페이지 감지."""

    kind = "bot_challenge"


class EmptyContentError(ExtractionError):
    """파싱은 성공했지만 본문이 기준 길이(100자) 미만."""

    kind = "empty_content"


class ExtractionTimeoutError(ExtractionError):
    """시도 데드라인 초과."""

    kind = "timeout"


class BrowserResourceError(ExtractionError):
    """헤드리스 브라우저 / 컨텍스트 생성 실패 또는 연결 끊김."""

    kind = "browser_resource"


# ─────────────────────────────────────────────────────────────
# Result 타입
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ExtractionOutcome:
    """try_extract() 반환 타입."""

    strategy: str
    article:  Optional[ExtractedArticle] = None
    error:    Optional[ExtractionError]  = None

    @property
    def ok(self) -> bool:
        return self.article is not None and self.error is None

    @property
    def has_content(self) -> bool:
        return self.ok and bool(self.article.content)

    @classmethod
    def success(cls, strategy: str, article: ExtractedArticle) -> "ExtractionOutcome":
        return cls(strategy=strategy, article=article)

    @classmethod
    def failure(cls, strategy: str, error: ExtractionError) -> "ExtractionOutcome":
        return cls(strategy=strategy, error=error)


# ─────────────────────────────────────────────────────────────
# 공통 유틸
# ─────────────────────────────────────────────────────────────

def utc_now_iso() -> str:
    """현재 시각을 '2024-01-15T05:30:00.123Z' 형식으로 반환합니다."""
    return to_iso_z(datetime.now(timezone.utc))


def to_iso_z(dt: datetime) -> str:
    """
    datetime → UTC 밀리초 ISO 문자열 ('...T..:..:..sssZ').
    naive datetime 은 로컬 시간으로 간주합니다.
    """
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def bare_domain(url: str) -> Optional[str]:
    """URL 의 호스트명 ('www.' 제거). 파싱 불가 시 None."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host


# ─────────────────────────────────────────────────────────────
# BaseStrategy
# ─────────────────────────────────────────────────────────────

class BaseStrategy(abc.ABC):
    """
    추출 전략 공통 기반 클래스 (abstract).

    서브클래스 구현 의무:
        extract(url, options) → ExtractedArticle
            실패 시 ExtractionError 하위 예외를 raise 합니다.
        close()
            브라우저를 소유하는 전략은 오버라이드합니다 (멱등).

    로깅:
        options.verbose 가 True 이면 단계 로그(_step)가 info 로 승격됩니다.
    """

    # 텍스트 날짜 포맷 (dateutil 폴백 이전에 순서대로 시도)
    _DATE_FORMATS: list[str] = [
        "%Y-%m-%dT%H:%M:%S%z",   # ISO 8601 with tz
        "%Y-%m-%dT%H:%M:%S.%f%z",
        "%Y-%m-%dT%H:%M:%S",     # ISO 8601 no tz
        "%Y-%m-%d %H:%M:%S",     # Standard datetime
        "%Y-%m-%d %H:%M",        # Without seconds
        "%Y.%m.%d %H:%M:%S",     # Dot-separated with seconds
        "%Y.%m.%d %H:%M",        # Dot-separated
        "%Y.%m.%d",              # Date only dot
        "%Y-%m-%d",              # Date only dash
        "%Y/%m/%d %H:%M",        # Slash-separated
    ]

    def __init__(
        self,
        default_options: Optional[ExtractionOptions] = None,
        retry_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.default_options = default_options or ExtractionOptions()
        # 재시도 백오프 대기 (테스트에서 가짜 시계 주입)
        self.retry_sleep     = retry_sleep or asyncio.sleep
        self.log = structlog.get_logger(self.__class__.__name__)

    @property
    def name(self) -> str:
        return self.__class__.__name__

    # ── 계약 ─────────────────────────────────────────────────

    @abc.abstractmethod
    async def extract(
        self, url: str, options: Optional[ExtractionOptions] = None
    ) -> ExtractedArticle:
        ...

    async def close(self) -> None:
        """리소스 해제. 기본 구현은 아무것도 하지 않습니다."""
        return None

    async def try_extract(
        self, url: str, options: Optional[ExtractionOptions] = None
    ) -> ExtractionOutcome:
        """
        extract() 를 Result 로 변환합니다.

        Raises:
            InvalidInputError: 잘못된 입력 (변환하지 않고 그대로 전파)
        """
        try:
            article = await self.extract(url, options)
        except InvalidInputError:
            raise
        except ExtractionError as exc:
            self.log.warning(
                "strategy_failed",
                url=url,
                error_type=type(exc).__name__,
                kind=exc.kind,
                error=str(exc),
            )
            return ExtractionOutcome.failure(self.name, exc)
        except Exception as exc:
            self.log.error(
                "unexpected_error",
                url=url,
                error_type=type(exc).__name__,
                error=repr(exc),
            )
            wrapped = ExtractionError(f"{type(exc).__name__}: {exc}")
            wrapped.__cause__ = exc
            return ExtractionOutcome.failure(self.name, wrapped)
        return ExtractionOutcome.success(self.name, article)

    # ── 데드라인 / 로깅 ──────────────────────────────────────

    @staticmethod
    async def _with_deadline(aw: Awaitable[T], timeout_ms: int, what: str = "attempt") -> T:
        """
        aw 를 timeout_ms 데드라인과 경주시킵니다.

        Raises:
            ExtractionTimeoutError: 데드라인 초과
        """
        try:
            return await asyncio.wait_for(aw, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise ExtractionTimeoutError(
                f"{what} 시간 초과 ({timeout_ms}ms)"
            ) from exc

    def _step(self, options: ExtractionOptions, event: str, **kw: Any) -> None:
        if options.verbose:
            self.log.info(event, **kw)
        else:
            self.log.debug(event, **kw)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)

    # ── HTML 헬퍼 ────────────────────────────────────────────

    @staticmethod
    def _soup(html: str) -> BeautifulSoup:
        return BeautifulSoup(html or "", "html.parser")

    @staticmethod
    def _extract_ld_json(soup: BeautifulSoup) -> list[dict[str, Any]]:
        """
        <script type="application/ld+json"> 블록을 dict 목록으로 반환합니다.
        @graph 와 최상위 배열을 펼치고, 파싱 실패 블록은 건너뜁니다.
        """
        blocks: list[dict[str, Any]] = []
        for script in soup.find_all("script", type="application/ld+json"):
            try:
                data = json.loads(script.string or "")
            except (json.JSONDecodeError, TypeError):
                continue
            items = data if isinstance(data, list) else [data]
            for item in items:
                if not isinstance(item, dict):
                    continue
                blocks.append(item)
                graph = item.get("@graph")
                if isinstance(graph, list):
                    blocks.extend(g for g in graph if isinstance(g, dict))
        return blocks

    @staticmethod
    def _meta(soup: BeautifulSoup, selector: str) -> str:
        """meta 태그 content 값 (없으면 "")."""
        tag = soup.select_one(selector)
        if tag is None:
            return ""
        return str(tag.get("content") or "").strip()

    @staticmethod
    def _text(soup: BeautifulSoup, selector: str) -> str:
        tag = soup.select_one(selector)
        return tag.get_text().strip() if tag is not None else ""

    # ── 날짜 파싱 유틸 ───────────────────────────────────────

    @classmethod
    def _parse_datetime(cls, value: str) -> Optional[datetime]:
        """다양한 날짜 문자열을 datetime 으로 파싱합니다."""
        if not value:
            return None
        value = value.strip()

        # 한국 날짜 형식 전처리: "2024년 01월 15일" → "2024-01-15"
        value = re.sub(
            r"(\d{4})년\s*(\d{1,2})월\s*(\d{1,2})일",
            lambda m: f"{m.group(1)}-{int(m.group(2)):02d}-{int(m.group(3)):02d}",
            value,
        )
        value = value.replace("Z", "+0000") if value.endswith("Z") else value

        for fmt in cls._DATE_FORMATS:
            try:
                return datetime.strptime(value, fmt)
            except ValueError:
                continue

        # dateutil fallback
        try:
            return dateutil_parser.parse(value)
        except (ValueError, OverflowError):
            return None

    @classmethod
    def _to_iso_date(cls, value: str) -> str:
        """날짜 문자열 → ISO 8601. 파싱 불가 시 ""."""
        dt = cls._parse_datetime(value)
        return dt.isoformat() if dt else ""
