"""
scraper/throttle.py — 요청 속도 제한 + 정적 HTTP 수집

원격 오리진의 요청 속도를 제한하여 차단을 방지합니다.

지원 방식:
  1. RateLimiter — 60초 슬라이딩 윈도우 (RateWindow) 기반 분당 요청 한도
     한도 초과 시 가장 오래된 요청이 윈도우를 벗어날 때까지 + 1초 버퍼 대기
  2. make_http_session() — urllib3 Retry 어댑터가 장착된 requests.Session
     429 / 5xx 응답은 어댑터 레벨에서 지수 백오프 재시도
  3. fetch_text() — 블로킹 requests 호출을 asyncio.to_thread 로 실행
     이벤트 루프를 막지 않고 HTML 문자열을 반환

사용법:
    limiter = RateLimiter(requests_per_minute=10)
    await limiter.acquire()            # 한도 내면 즉시 통과, 아니면 대기

    session = make_http_session()
    html = await fetch_text(session, url, headers={"User-Agent": ua}, timeout=10)
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Optional

import requests
import structlog
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from scraper.engine import FetchError

logger = structlog.get_logger(__name__)

# ─────────────────────────────────────────────────────────────
# 기본 설정
# ─────────────────────────────────────────────────────────────

_WINDOW_SEC  = 60.0
_BUFFER_SEC  = 1.0    # 윈도우가 열린 직후 경계 충돌 방지

# HTTP 재시도 설정
_RETRY_STATUS_CODES = (429, 500, 502, 503, 504)
_MAX_RETRIES        = 2
_BACKOFF_FACTOR     = 1.0   # 대기: 0, 1, 2, ...초

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

_BASE_HEADERS: dict[str, str] = {
    "Accept":          "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ko-KR,ko;q=0.9,en;q=0.8",
    "Accept-Encoding": "gzip, deflate",
}


# ─────────────────────────────────────────────────────────────
# RateLimiter
# ─────────────────────────────────────────────────────────────

class RateLimiter:
    """
    분당 요청 한도 제한기 (60초 슬라이딩 윈도우).

    RateWindow(최근 60초 요청 시각 deque)는 acquire() 안에서만 변경되며,
    asyncio.Lock 으로 직렬화됩니다. 시계와 sleep 은 테스트를 위해 주입 가능합니다.
    """

    def __init__(
        self,
        requests_per_minute: int = 10,
        window_sec:  float = _WINDOW_SEC,
        buffer_sec:  float = _BUFFER_SEC,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute 는 1 이상이어야 합니다.")
        self.requests_per_minute = requests_per_minute
        self._window  = window_sec
        self._buffer  = buffer_sec
        self._clock   = clock
        self._sleep   = sleep

        # 최근 window_sec 초 요청 타임스탬프
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        ts = self._timestamps
        while ts and now - ts[0] >= self._window:
            ts.popleft()

    async def acquire(self, requests_per_minute: Optional[int] = None) -> float:
        """
        요청 직전에 호출합니다. 필요 시 대기 후 현재 시각을 윈도우에 기록합니다.

        Args:
            requests_per_minute: 이번 호출에 적용할 한도 (기본: 생성 시 값)

        Returns:
            실제 대기한 초 (대기 없으면 0.0)
        """
        limit = requests_per_minute or self.requests_per_minute

        async with self._lock:
            now = self._clock()
            self._evict(now)

            waited = 0.0
            if len(self._timestamps) >= limit:
                waited = max(self._window - (now - self._timestamps[0]) + self._buffer, 0.0)
                logger.info(
                    "rate_limit_wait",
                    rpm=limit,
                    in_window=len(self._timestamps),
                    wait_sec=round(waited, 2),
                )
                await self._sleep(waited)
                now = self._clock()
                # 만료 타임스탬프 재정리
                self._evict(now)

            self._timestamps.append(now)
            return waited

    def stats(self) -> dict[str, float]:
        """현재 윈도우 통계를 반환합니다."""
        now = self._clock()
        recent = [t for t in self._timestamps if now - t < self._window]
        return {
            "requests_last_window": len(recent),
            "limit":                self.requests_per_minute,
            "oldest_age_sec":       round(now - recent[0], 1) if recent else 0.0,
        }


# ─────────────────────────────────────────────────────────────
# 정적 HTTP
# ─────────────────────────────────────────────────────────────

def make_http_session(user_agent: str = DEFAULT_USER_AGENT) -> requests.Session:
    """
    자동 재시도 어댑터(429, 5xx)가 장착된 requests.Session 을 반환합니다.
    User-Agent 는 요청별 headers 로 덮어쓸 수 있습니다.
    """
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent, **_BASE_HEADERS})

    retry = Retry(
        total=_MAX_RETRIES,
        backoff_factor=_BACKOFF_FACTOR,
        status_forcelist=_RETRY_STATUS_CODES,
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://",  adapter)
    return session


def _get(
    session: requests.Session,
    url: str,
    headers: Optional[dict[str, str]],
    timeout: float,
) -> requests.Response:
    return session.get(url, headers=headers, timeout=timeout, allow_redirects=True)


async def fetch_text(
    session: requests.Session,
    url: str,
    headers: Optional[dict[str, str]] = None,
    timeout: float = 10.0,
) -> str:
    """
    HTTP GET → 응답 본문 문자열.

    인코딩 헤더가 없으면(requests 기본 ISO-8859-1) 본문에서 추정한 인코딩을
    사용합니다.

    Raises:
        FetchError: 네트워크 오류, 타임아웃, HTTP non-2xx
    """
    try:
        resp = await asyncio.to_thread(_get, session, url, headers, timeout)
    except requests.exceptions.Timeout as exc:
        logger.warning("http_timeout", url=url, timeout=timeout)
        raise FetchError(f"요청 시간 초과 ({timeout}s): {url}") from exc
    except requests.exceptions.RequestException as exc:
        logger.warning("http_error", url=url, error_type=type(exc).__name__, error=str(exc))
        raise FetchError(f"요청 실패: {url} ({exc})") from exc

    if not resp.ok:
        logger.warning("http_status", url=url, status=resp.status_code)
        raise FetchError(f"HTTP {resp.status_code}: {url}")

    if not resp.encoding or resp.encoding.lower() == "iso-8859-1":
        resp.encoding = resp.apparent_encoding or "utf-8"

    logger.debug("http_ok", url=url, status=resp.status_code, bytes=len(resp.content))
    return resp.text
