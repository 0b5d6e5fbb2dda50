"""
scraper/general.py — 범용 뉴스 추출 전략 (SSR/SPA 감지 + 셀렉터 캐스케이드)

상태 전이:
    Init → TryStaticFetch → (SSR? 방식 표시) → (SPA? → FetchWithBrowser) → Parse → Done

    정적 수집:
        1. 크롤러/모바일 식별자(Googlebot · Bingbot · iPhone Safari)로 SSR 버전 시도
           → SSR 콘텐츠로 판정된 첫 응답 채택
        2. 실패 시 일반 Chrome User-Agent 로 GET

    추출 방식 (performance.method / metadata.extraction_method):
        "Simple Fetch"              정적 수집, SSR 아님
        "SSR/SEO Optimized Fetch"   정적 수집, SSR 판정
        "Playwright (SPA Support)"  SPA 판정 → 브라우저 수집
        "Playwright (Forced)"       force_browser_fetch 옵션

본문 추출:
    우선순위 셀렉터 (0~9, site: daum / general) 중 100자 초과 텍스트를 가진
    최고 우선순위 영역 (동순위면 긴 텍스트). 없으면 body.
    노이즈 제거 → <p> (20자 초과) + 제목 태그 ([제목] 접두) → 부족하면 <div> 보충
    → 공백 정규화 · 중복 제거 · 20자 이하 제거 → "\\n\\n" 결합

재시도:
    RetryPolicy(max_attempts=options.max_retries). 본문 100자 미만은
    EmptyContentError 로 재시도되고, 소진 후 마지막 오류가 전파됩니다.
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Optional

import requests
from bs4 import BeautifulSoup, Tag
from playwright.async_api import Error as PlaywrightError, Page

from core.logger import Phase, log_context
from scraper.browser import BrowserSession
from scraper.engine import (
    BaseStrategy,
    BrowserResourceError,
    EmptyContentError,
    ExtractionError,
    FetchError,
    bare_domain,
    utc_now_iso,
)
from scraper.models import TITLE_NOT_FOUND, ExtractedArticle, ExtractionOptions
from scraper.retry import RetryPolicy
from scraper.scoring import calculate_stats, collapse_whitespace
from scraper.throttle import DEFAULT_USER_AGENT, fetch_text, make_http_session

# ─────────────────────────────────────────────────────────────
# 추출 방식
# ─────────────────────────────────────────────────────────────

METHOD_SIMPLE  = "Simple Fetch"
METHOD_SSR     = "SSR/SEO Optimized Fetch"
METHOD_SPA     = "Playwright (SPA Support)"
METHOD_FORCED  = "Playwright (Forced)"

_MIN_CONTENT_LENGTH = 100

# ─────────────────────────────────────────────────────────────
# 정적 수집 식별자
# ─────────────────────────────────────────────────────────────

# (이름, 헤더)
_SSR_IDENTITIES: list[tuple[str, dict[str, str]]] = [
    ("Googlebot User-Agent", {
        "User-Agent": "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
        "Accept":     "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    }),
    ("Bingbot User-Agent", {
        "User-Agent": "Mozilla/5.0 (compatible; bingbot/2.0; +http://www.bing.com/bingbot.htm)",
        "Accept":     "text/html,application/xhtml+xml",
    }),
    ("Mobile User-Agent", {
        "User-Agent": (
            "Mozilla/5.0 (iPhone; CPU iPhone OS 14_7_1 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/14.1.2 Mobile/15E148 Safari/604.1"
        ),
        "Accept":     "text/html",
    }),
]

# SSR 식별자 시도는 options.http_timeout_sec 보다 길게 기다리지 않습니다.
_SSR_IDENTITY_TIMEOUT_SEC = 8.0

# ─────────────────────────────────────────────────────────────
# 감지 마커
# ─────────────────────────────────────────────────────────────

_CONTENT_CONTAINERS = (
    '.content, .article-content, #content, [role="main"], [itemprop="articleBody"]'
)
_LOADING_MARKERS      = ("Loading...", "loading...", "Please wait")
_LOADING_SELECTORS    = (
    'body[class*="loading"]',
    'div[id*="spinner"]',
    'div[class*="spinner"]',
    'body[data-loading="true"]',
    'div[aria-busy="true"]',
)
_SECURITY_MARKERS = (
    "Cloudflare",
    "Just a moment",
    "Enable JavaScript and cookies",
    "Attention Required!",
    "Verifying you are human",
)
_SPA_SCRIPT_KEYWORDS = ("react", "vue", "angular", "app-root", "main.js", "bundle.js")
_SPA_MOUNT_POINTS    = ("#root", "#app", "div[data-reactroot]")

_WAIT_SELECTORS: list[str] = [
    "article",
    ".article-content",
    ".post-content",
    ".content",
    "main p",
    "h1",
    '[role="main"]',
    '[itemprop="articleBody"]',
]
_WAIT_SELECTOR_MS = 3_000
_FALLBACK_WAIT_MS = 3_000

_BLOCKED_RESOURCE_TYPES = ("image", "stylesheet", "font", "media", "other")

# ─────────────────────────────────────────────────────────────
# 본문 셀렉터
# ─────────────────────────────────────────────────────────────

# (셀렉터, 우선순위, 사이트)
_CONTENT_SELECTORS: list[tuple[str, int, str]] = [
    ("#harmonyContainer", 9, "daum"),
    (".article_view",     9, "daum"),
    ("article",           8, "general"),
    (".article-content",  8, "general"),
    (".article_content",  8, "general"),
    (".post-content",     7, "general"),
    (".news-body",        7, "general"),
    (".article-body",     7, "general"),
    (".content",          6, "general"),
    ("#content",          6, "general"),
    ("main",              5, "general"),
    (".entry-content",    3, "general"),
]

_COMMON_NOISE: list[str] = [
    "script", "style", "nav", "header", "footer",
    ".ad", ".advertisement", ".banner",
    ".social", ".share", ".comment", ".related", ".sidebar",
]
_SITE_NOISE: dict[str, list[str]] = {
    "daum":    [".article_head", ".article_info"],
    "general": [],
}

# ─────────────────────────────────────────────────────────────
# 제목 / 메타 셀렉터
# ─────────────────────────────────────────────────────────────

_TITLE_SELECTORS: list[str] = [
    "h1",
    '[property="og:title"]',
    '[name="twitter:title"]',
    "title",
    ".article-title",
    ".news-title",
    "#title",
]

_AGGREGATOR_TITLE_SELECTORS: list[str] = [
    "article h1",
    "[data-article-title]",
    ".article-title",
    ".news-article-title",
    "main h1",
    'h1[role="heading"]',
    ".content h1",
    '[aria-label*="제목"]',
    '[aria-label*="title"]',
]

MEDIA_NAMES: tuple[str, ...] = (
    "매일경제", "매일 경제", "조선일보", "중앙일보", "동아일보", "한경닷컴",
    "한국경제", "연합뉴스", "경향신문", "한겨레", "서울신문", "문화일보",
    "스포츠조선", "이데일리", "MBC", "KBS", "SBS", "JTBC", "YTN", "TV조선",
    "Google", "구글", "News", "뉴스",
)

# 제목 자리에 나타나는 사이트/브랜드 문자열 (완전 일치)
_BOILERPLATE_TITLES: frozenset[str] = frozenset(
    set(MEDIA_NAMES) | {"Google 뉴스", "Google News", "네이버 뉴스", "다음뉴스", "Daum", "Home", "홈"}
)

_AUTHOR_SELECTORS: list[str] = [
    '[name="author"]',
    '[property="article:author"]',
    ".author",
    ".byline",
    '[rel="author"]',
    ".reporter",
    ".writer",
    ".journalist",
]

_DATE_SELECTORS: list[str] = [
    '[property="article:published_time"]',
    '[name="publishdate"]',
    "time[datetime]",
    ".publish-date",
    ".date",
    ".news-date",
    ".time",
]

_DESCRIPTION_SELECTORS: list[str] = [
    '[property="og:description"]',
    '[name="description"]',
    '[name="twitter:description"]',
]


def _body_text(soup: BeautifulSoup) -> str:
    body = soup.find("body")
    return body.get_text().strip() if body else ""


def is_ssr_content(html: str) -> bool:
    """
    서버 렌더링된 기사 페이지인지 판정합니다.

    (p > 2 OR article OR 본문 컨테이너) AND 로딩 상태 아님
    AND body 텍스트 > 500 AND 보안/챌린지 마커 없음
    """
    if not html or len(html) < 100:
        return False
    soup = BeautifulSoup(html, "html.parser")

    has_content = (
        len(soup.find_all("p")) > 2
        or soup.find("article") is not None
        or soup.select_one(_CONTENT_CONTAINERS) is not None
    )

    not_loading = (
        not any(marker in html for marker in _LOADING_MARKERS)
        and not any(soup.select_one(sel) is not None for sel in _LOADING_SELECTORS)
    )
    for mount in ("#root", "#app"):
        el = soup.select_one(mount)
        if el is not None and len(el.get_text().strip()) < 100:
            not_loading = False

    has_enough_text = len(_body_text(soup)) > 500
    not_security    = not any(marker in html for marker in _SECURITY_MARKERS)

    return has_content and not_loading and has_enough_text and not_security


def is_spa(html: str) -> bool:
    """
    클라이언트 렌더링 셸(SPA)인지 판정합니다.

    스크립트에 프레임워크 키워드 OR 마운트 포인트 내용 < 200 (body < 500)
    OR (SSR 아님 AND body 텍스트 < 300)
    """
    if not html or len(html) < 100:
        return False
    soup = BeautifulSoup(html, "html.parser")

    for script in soup.find_all("script"):
        source = (script.string or "").lower()
        if source and any(keyword in source for keyword in _SPA_SCRIPT_KEYWORDS):
            return True

    body_len = len(_body_text(soup))
    for mount in _SPA_MOUNT_POINTS:
        el = soup.select_one(mount)
        if el is not None and len(el.decode_contents().strip()) < 200 and body_len < 500:
            return True

    return not is_ssr_content(html) and body_len < 300


def is_bot_challenge(soup: BeautifulSoup, html: str) -> bool:
    """Cloudflare 류 챌린지 페이지 (지표 2개 이상)."""
    if not html:
        return False
    title = soup.find("title")
    title_text = title.get_text() if title else ""
    indicators = [
        "Enable JavaScript and cookies to continue" in html,
        "Cloudflare" in html,
        "Ray ID:" in html,
        "challenge-error-text" in html,
        soup.select_one("#challenge-error-text") is not None,
        soup.select_one(".cf-error-details") is not None,
        "Just a moment" in title_text,
    ]
    return sum(indicators) >= 2


def is_media_name(text: str) -> bool:
    return any(name in text for name in MEDIA_NAMES)


# ─────────────────────────────────────────────────────────────
# GeneralStrategy
# ─────────────────────────────────────────────────────────────

class GeneralStrategy(BaseStrategy):
    """
    임의 뉴스 사이트용 범용 전략. 라우터의 최종 폴백이기도 합니다.

    Args:
        session:         정적 HTTP 세션 (기본: make_http_session())
        browser:         전용 BrowserSession (기본: 첫 사용 시 생성)
        default_options: 호출 시 options 가 없을 때 사용할 옵션
        retry_sleep:     재시도 백오프 대기 함수 (기본: asyncio.sleep)
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        browser: Optional[BrowserSession] = None,
        default_options: Optional[ExtractionOptions] = None,
        retry_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        super().__init__(default_options, retry_sleep)
        self._session = session or make_http_session(DEFAULT_USER_AGENT)
        self._browser = browser

    # ── 진입점 ───────────────────────────────────────────────

    async def extract(
        self, url: str, options: Optional[ExtractionOptions] = None
    ) -> ExtractedArticle:
        """
        Raises:
            FetchError / BrowserResourceError / EmptyContentError /
            ExtractionTimeoutError: 모든 시도 실패 시 마지막 오류
        """
        options = options or self.default_options
        started = time.perf_counter()
        policy  = RetryPolicy(max_attempts=options.max_retries, sleep=self.retry_sleep)

        async def attempt(n: int) -> ExtractedArticle:
            self._step(options, "general_attempt", url=url, attempt=n)
            return await self._with_deadline(
                self._extract_once(url, options), options.timeout_ms, what="범용 추출"
            )

        with log_context(url=url, strategy="General"):
            article = await policy.run(attempt, label="general")

        article.performance.extraction_time_ms = self._elapsed_ms(started)
        self.log.info(
            "general_extracted",
            url=url,
            method=article.performance.method,
            title=article.title[:50],
            content_len=len(article.content),
        )
        return article

    async def _extract_once(self, url: str, options: ExtractionOptions) -> ExtractedArticle:
        with log_context(phase=Phase.FETCH):
            html, method = await self._fetch(url, options)

        with log_context(phase=Phase.PARSE):
            article = self.parse(html, url, method)

        if len(article.content) < _MIN_CONTENT_LENGTH:
            raise EmptyContentError(
                f"본문이 너무 짧습니다 ({len(article.content)}자, 방식: {method}): {url}"
            )
        return article

    async def _fetch(self, url: str, options: ExtractionOptions) -> tuple[str, str]:
        if options.force_browser_fetch:
            self._step(options, "general_forced_browser", url=url)
            return await self._fetch_with_browser(url, options), METHOD_FORCED

        html   = await self._fetch_static(url, options)
        method = METHOD_SSR if is_ssr_content(html) else METHOD_SIMPLE

        if is_spa(html):
            self.log.info("spa_detected", url=url)
            return await self._fetch_with_browser(url, options), METHOD_SPA
        return html, method

    # ── 정적 수집 ────────────────────────────────────────────

    async def _fetch_static(self, url: str, options: ExtractionOptions) -> str:
        """
        Raises:
            FetchError: 일반 요청까지 실패
        """
        identity_timeout = min(_SSR_IDENTITY_TIMEOUT_SEC, options.http_timeout_sec)
        for name, headers in _SSR_IDENTITIES:
            try:
                html = await fetch_text(self._session, url, headers=headers, timeout=identity_timeout)
            except FetchError as exc:
                self.log.debug("ssr_identity_failed", identity=name, error=str(exc))
                continue
            if is_ssr_content(html):
                self.log.info("ssr_identity_ok", identity=name)
                return html
            self.log.debug("ssr_identity_not_ssr", identity=name)

        return await fetch_text(
            self._session,
            url,
            headers={"User-Agent": DEFAULT_USER_AGENT},
            timeout=options.http_timeout_sec,
        )

    # ── 브라우저 수집 ────────────────────────────────────────

    def _ensure_browser(self, options: ExtractionOptions) -> BrowserSession:
        if self._browser is None:
            self._browser = BrowserSession(proxy=options.proxy)
        return self._browser

    async def _fetch_with_browser(self, url: str, options: ExtractionOptions) -> str:
        """
        Raises:
            BrowserResourceError: 브라우저 / 페이지 생성 실패
            FetchError:           네비게이션 실패
        """
        browser = self._ensure_browser(options)
        with log_context(phase=Phase.BROWSER):
            page = await browser.new_page()
            try:
                if options.block_subresources:
                    await browser.install_resource_blocking(page, _BLOCKED_RESOURCE_TYPES)
                await page.goto(
                    url,
                    wait_until="networkidle",
                    timeout=options.navigation_timeout_ms,
                )
                await self._wait_for_content(page, options)
                return await page.content()
            except PlaywrightError as exc:
                raise FetchError(f"브라우저 페이지 로드 실패: {url} ({exc})") from exc
            finally:
                try:
                    await page.close()
                except PlaywrightError as exc:
                    self.log.debug("page_close_failed", error=str(exc))

    async def _wait_for_content(self, page: Page, options: ExtractionOptions) -> None:
        for selector in _WAIT_SELECTORS:
            try:
                await page.wait_for_selector(selector, timeout=_WAIT_SELECTOR_MS)
            except PlaywrightError:
                continue
            self._step(options, "content_detected", selector=selector)
            return
        self._step(options, "content_wait_fallback", wait_ms=_FALLBACK_WAIT_MS)
        await page.wait_for_timeout(_FALLBACK_WAIT_MS)

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()

    # ── 파싱 ─────────────────────────────────────────────────

    def parse(self, html: str, url: str, method: str) -> ExtractedArticle:
        """HTML → ExtractedArticle (본문 길이 검사는 호출자 몫)."""
        soup = self._soup(html)

        if is_bot_challenge(soup, html):
            self.log.warning("bot_challenge_detected", url=url, method=method)

        # 본문 추출이 노이즈를 제거하므로 나머지 필드를 먼저 수집
        title       = self.extract_title(soup)
        author      = self._extract_author(soup)
        publish     = self._extract_publish_date(soup)
        description = self._extract_description(soup)
        metadata    = self._extract_metadata(soup)
        content     = self.extract_content(soup)

        metadata.update({
            "source_url":        url,
            "extraction_method": method,
            "domain":            bare_domain(url) or "",
            "timestamp":         utc_now_iso(),
        })
        article = ExtractedArticle(
            title        = title,
            content      = content,
            author       = author,
            publish_date = publish,
            description  = description,
            source_url   = url,
            stats        = calculate_stats(content),
            metadata     = metadata,
        )
        article.performance.method = method
        return article

    def extract_content(self, soup: BeautifulSoup) -> str:
        best: Optional[tuple[Tag, str, int, str]] = None
        best_priority, best_length = -1, 0

        for selector, priority, site in _CONTENT_SELECTORS:
            el = soup.select_one(selector)
            if el is None:
                continue
            length = len(el.get_text().strip())
            if priority > best_priority or (priority == best_priority and length > best_length):
                if length > 100:
                    best = (el, selector, priority, site)
                    best_priority, best_length = priority, length

        if best is not None:
            area, selector, priority, site = best
            self.log.debug("content_area", selector=selector, priority=priority, site=site, length=best_length)
        else:
            area, site = soup.find("body") or soup, "general"
            self.log.debug("content_area_fallback_body")

        for selector in _COMMON_NOISE + _SITE_NOISE.get(site, []):
            for el in area.select(selector):
                el.decompose()

        paragraphs: list[str] = []
        for p in area.find_all("p"):
            text = p.get_text().strip()
            if len(text) > 20:
                paragraphs.append(text)

        for heading in area.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
            text = heading.get_text().strip()
            if 5 < len(text) < 200:
                paragraphs.append(f"[제목] {text}")

        if len(paragraphs) < 3:
            for div in area.find_all("div"):
                text = div.get_text().strip()
                if 30 < len(text) < 1000 and len(div.find_all(True, recursive=False)) < 5:
                    paragraphs.append(text)

        unique: list[str] = []
        seen: set[str] = set()
        for para in paragraphs:
            normalized = collapse_whitespace(para)
            if len(normalized) > 20 and normalized not in seen:
                seen.add(normalized)
                unique.append(normalized)
        return "\n\n".join(unique)

    # ── 제목 ─────────────────────────────────────────────────

    @staticmethod
    def is_aggregator_page(soup: BeautifulSoup) -> bool:
        og_url = soup.select_one('meta[property="og:url"]')
        url    = str(og_url.get("content") or "") if og_url else ""
        title  = soup.find("title")
        text   = title.get_text() if title else ""
        return (
            "news.google.com" in url
            or "Google 뉴스" in text
            or "Google News" in text
        )

    @staticmethod
    def _aggregator_title(soup: BeautifulSoup) -> Optional[str]:
        for selector in _AGGREGATOR_TITLE_SELECTORS:
            el = soup.select_one(selector)
            if el is None:
                continue
            text = el.get_text().strip()
            if len(text) > 5 and not is_media_name(text):
                return text

        for heading in soup.find_all(["h1", "h2", "h3"]):
            text = heading.get_text().strip()
            if 10 < len(text) < 200 and not is_media_name(text):
                return text
        return None

    def extract_title(self, soup: BeautifulSoup) -> str:
        if self.is_aggregator_page(soup):
            if title := self._aggregator_title(soup):
                return title
            self.log.debug("aggregator_title_not_found")

        for selector in _TITLE_SELECTORS:
            el = soup.select_one(selector)
            if el is None:
                continue
            raw   = el.get("content") or el.get_text()
            title = collapse_whitespace(str(raw))
            if len(title) > 3 and title not in _BOILERPLATE_TITLES:
                return title
        return TITLE_NOT_FOUND

    # ── 기타 필드 ────────────────────────────────────────────

    @staticmethod
    def _extract_author(soup: BeautifulSoup) -> str:
        for selector in _AUTHOR_SELECTORS:
            el = soup.select_one(selector)
            if el is None:
                continue
            author = collapse_whitespace(str(el.get("content") or el.get_text()))
            if author:
                return author
        return ""

    @classmethod
    def _extract_publish_date(cls, soup: BeautifulSoup) -> str:
        for selector in _DATE_SELECTORS:
            el = soup.select_one(selector)
            if el is None:
                continue
            raw = str(el.get("content") or el.get("datetime") or el.get_text()).strip()
            if raw and (iso := cls._to_iso_date(raw)):
                return iso
        return ""

    @staticmethod
    def _extract_description(soup: BeautifulSoup) -> str:
        for selector in _DESCRIPTION_SELECTORS:
            el = soup.select_one(selector)
            if el is None:
                continue
            desc = str(el.get("content") or "").strip()
            if desc:
                return desc
        return ""

    @classmethod
    def _extract_metadata(cls, soup: BeautifulSoup) -> dict[str, Any]:
        html_tag = soup.find("html")
        return {
            "site_name":      cls._meta(soup, 'meta[property="og:site_name"]'),
            "language":       (html_tag.get("lang") if html_tag else None)
                              or cls._meta(soup, 'meta[property="og:locale"]'),
            "keywords":       cls._meta(soup, 'meta[name="keywords"]'),
            "total_elements": len(soup.find_all(True)),
            "paragraphs":     len(soup.find_all("p")),
            "images":         len(soup.find_all("img")),
            "links":          len(soup.find_all("a")),
        }
