"""
scraper/google_news.py — Google News 리다이렉트 추적 전략 (Playwright 스텔스)

처리 흐름 (시도 1회):
    rate_limiter.acquire()
    → 스텔스 컨텍스트에서 새 페이지 (이미지·CSS·폰트·미디어·광고/분석 요청 차단)
    → goto(domcontentloaded) → (옵션) 사람 흉내
    → 리다이렉트 안정화: networkidle → readyState complete → content_wait_ms
    → Readability 본문 추출 (enable_markdown 이면 본문 HTML 을 Markdown 으로 변환)
    → 100자 미만이면 스마트 추출 (브라우저 스냅샷 → 파이썬 점수화)
    → 100자 이하이면 EmptyContentError (재시도)

리다이렉트 대기 중 오류는 로그만 남기고 현재 page.url 을 최종 URL 로 사용합니다.

재시도:
    RetryPolicy(max_attempts=options.max_retries), 시도마다 데드라인 적용.
    소진 시 마지막 오류를 raise 합니다 (None 반환 없음).
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import Error as PlaywrightError, Page

from core.logger import Phase, log_context
from scraper.browser import BrowserSession
from scraper.engine import (
    BaseStrategy,
    BotChallengeError,
    EmptyContentError,
    FetchError,
    bare_domain,
    utc_now_iso,
)
from scraper.general import is_bot_challenge
from scraper.models import TITLE_NOT_FOUND, ExtractedArticle, ExtractionOptions
from scraper.readable import extract_readable, to_markdown
from scraper.retry import RetryPolicy
from scraper.scoring import (
    ElementSnapshot,
    calculate_stats,
    clean_text,
    make_description,
    pick_best,
)
from scraper.throttle import RateLimiter

METHOD = "Playwright Stealth Redirect"

EXTRACTOR_TYPE = "enhanced-google-news"

_MIN_CONTENT_LENGTH = 100

_BLOCKED_RESOURCE_TYPES = ("image", "stylesheet", "font", "media")
_BLOCKED_URL_FRAGMENTS  = (
    "googleadservices",
    "googlesyndication",
    "google-analytics",
    "googletagmanager",
)

_READY_STATE_TIMEOUT_MS = 10_000

# ─────────────────────────────────────────────────────────────
# 브라우저 스냅샷 스크립트
# ─────────────────────────────────────────────────────────────

# 후보 요소를 {tag, className, id, text} 로만 뽑아옵니다. 점수화는 scoring.py.
SNAPSHOT_SCRIPT = r"""
() => {
  const generateSelectors = () => {
    const bases = ['article', 'main', 'content', 'body', 'text', 'story',
                   'post', 'news', 'entry', 'excerpt'];
    const prefixes = ['', 'article-', 'post-', 'news-', 'story-', 'content-'];
    const variations = ['', '-content', '-body', '-text', '-main'];
    const selectors = [];
    for (const base of bases) {
      for (const prefix of prefixes) {
        for (const variation of variations) {
          const name = prefix + base + variation;
          selectors.push('.' + name);
          selectors.push('#' + name);
        }
      }
    }
    selectors.push('[role="article"]', '[role="main"]', '[itemtype*="Article"]',
                   '[class*="article"]', '[class*="content"]', '[class*="post"]');
    return selectors;
  };

  const snapshot = (el, text) => ({
    tag: el.tagName.toLowerCase(),
    className: el.getAttribute('class') || '',
    id: el.id || '',
    text: text,
  });

  const titleSelectors = ['h1', 'h2', 'h3', '[role="heading"]', '.title', '.headline',
                          '.header', '#title', '#headline', '#header',
                          '[class*="title"]', '[class*="headline"]'];
  const titles = [];
  for (const selector of titleSelectors) {
    let nodes = [];
    try { nodes = document.querySelectorAll(selector); } catch (e) { continue; }
    nodes.forEach(el => {
      const text = (el.textContent || '').trim();
      if (text) titles.push(snapshot(el, text));
    });
  }

  const noise = ['script', 'style', 'iframe', 'noscript', 'nav', '.ad', '.advertisement',
                 '.banner', '.social', '.share', '.comment', '.navigation', '.menu',
                 '.sidebar', '.footer', '.header', '.related', '[class*="ad"]',
                 '[id*="ad"]', '[class*="social"]'];
  const contents = [];
  for (const selector of generateSelectors()) {
    let nodes = [];
    try { nodes = document.querySelectorAll(selector); } catch (e) { continue; }
    nodes.forEach(el => {
      const clone = el.cloneNode(true);
      for (const n of noise) {
        try { clone.querySelectorAll(n).forEach(x => x.remove()); } catch (e) {}
      }
      const text = (clone.textContent || '').trim();
      if (text) contents.push(snapshot(el, text));
    });
  }

  const firstText = (selectors) => {
    for (const selector of selectors) {
      let el = null;
      try { el = document.querySelector(selector); } catch (e) { continue; }
      if (el) {
        const value = el.getAttribute('datetime') || el.getAttribute('content')
                      || (el.textContent || '').trim();
        if (value) return value;
      }
    }
    return '';
  };

  return {
    titles: titles,
    contents: contents,
    author: firstText(['[rel="author"]', '.author', '.byline', '.writer',
                       '[class*="author"]', '[id*="author"]', '[itemtype*="Person"]']),
    publishDate: firstText(['time', '[datetime]', '.date', '.published', '.timestamp',
                            '[class*="date"]', '[id*="date"]', '[class*="time"]']),
    documentTitle: document.title || '',
  };
}
"""


class GoogleNewsStrategy(BaseStrategy):
    """
    news.google.com 리다이렉트 URL 을 실제 브라우저로 따라가 기사 원문을 추출합니다.

    Args:
        rate_limiter:    공유 RateLimiter (기본: 옵션의 requests_per_minute 로 생성)
        browser:         전용 BrowserSession (기본: 첫 사용 시 생성)
        default_options: 호출 시 options 가 없을 때 사용할 옵션
        retry_sleep:     재시도 백오프 대기 함수 (기본: asyncio.sleep)
    """

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        browser: Optional[BrowserSession] = None,
        default_options: Optional[ExtractionOptions] = None,
        retry_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        super().__init__(default_options, retry_sleep)
        self.rate_limiter = rate_limiter or RateLimiter(
            self.default_options.requests_per_minute
        )
        self._browser = browser

    @classmethod
    def create_rate_limited(
        cls, requests_per_minute: int = 10, **overrides: Any
    ) -> "GoogleNewsStrategy":
        """분당 한도가 지정된 인스턴스. 나머지 키워드는 옵션 덮어쓰기입니다."""
        options = ExtractionOptions().merged(
            {"requests_per_minute": requests_per_minute, **overrides}
        )
        return cls(
            rate_limiter=RateLimiter(options.requests_per_minute),
            default_options=options,
        )

    # ── 진입점 ───────────────────────────────────────────────

    async def extract(
        self, url: str, options: Optional[ExtractionOptions] = None
    ) -> ExtractedArticle:
        """
        Raises:
            EmptyContentError / FetchError / BotChallengeError /
            BrowserResourceError / ExtractionTimeoutError: 모든 시도 실패 시 마지막 오류
        """
        options = options or self.default_options
        started = time.perf_counter()
        policy  = RetryPolicy(max_attempts=options.max_retries, sleep=self.retry_sleep)

        async def attempt(n: int) -> ExtractedArticle:
            await self.rate_limiter.acquire(options.requests_per_minute)
            self._step(options, "google_attempt", url=url, attempt=n)
            article = await self._with_deadline(
                self._extract_once(url, options), options.timeout_ms, what="Google News 추출"
            )
            article.metadata["attempts"] = n
            return article

        with log_context(url=url, strategy="GoogleNews"):
            article = await policy.run(attempt, label="google_news")

        article.performance.extraction_time_ms = self._elapsed_ms(started)
        article.performance.method = METHOD
        self.log.info(
            "google_news_extracted",
            url=url,
            final_url=article.source_url,
            extracted_from=article.metadata.get("extracted_from"),
            content_len=len(article.content),
        )
        return article

    # ── 시도 1회 ─────────────────────────────────────────────

    def _ensure_browser(self, options: ExtractionOptions) -> BrowserSession:
        if self._browser is None:
            self._browser = BrowserSession(proxy=options.proxy)
        return self._browser

    async def _extract_once(self, url: str, options: ExtractionOptions) -> ExtractedArticle:
        browser = self._ensure_browser(options)

        with log_context(phase=Phase.BROWSER):
            page = await browser.new_page()
            try:
                if options.block_subresources:
                    await browser.install_resource_blocking(
                        page, _BLOCKED_RESOURCE_TYPES, _BLOCKED_URL_FRAGMENTS
                    )
                try:
                    await page.goto(
                        url,
                        wait_until="domcontentloaded",
                        timeout=options.navigation_timeout_ms,
                    )
                except PlaywrightError as exc:
                    raise FetchError(f"페이지 이동 실패: {url} ({exc})") from exc

                if options.simulate_human:
                    try:
                        await browser.simulate_human(page)
                    except PlaywrightError as exc:
                        self.log.debug("simulate_human_failed", error=str(exc))

                final_url = await self._wait_for_redirect(page, options)
                html      = await page.content()

                with log_context(phase=Phase.PARSE):
                    return await self._parse_page(page, html, url, final_url, options)
            finally:
                try:
                    await page.close()
                except PlaywrightError as exc:
                    self.log.debug("page_close_failed", error=str(exc))

    async def _wait_for_redirect(self, page: Page, options: ExtractionOptions) -> str:
        """리다이렉트 안정화 대기. 실패해도 현재 URL 로 진행합니다."""
        try:
            await page.wait_for_load_state("networkidle", timeout=options.navigation_timeout_ms)
            await page.wait_for_function(
                "document.readyState === 'complete'", timeout=_READY_STATE_TIMEOUT_MS
            )
            await page.wait_for_timeout(options.content_wait_ms)
        except PlaywrightError as exc:
            self.log.warning("redirect_wait_failed", current_url=page.url, error=str(exc))
        self._step(options, "redirect_settled", final_url=page.url)
        return page.url

    async def _parse_page(
        self,
        page: Page,
        html: str,
        url: str,
        final_url: str,
        options: ExtractionOptions,
    ) -> ExtractedArticle:
        soup = self._soup(html)
        if is_bot_challenge(soup, html):
            raise BotChallengeError(f"안티봇 챌린지 페이지: {final_url}")

        title, content, author, published = TITLE_NOT_FOUND, "", "", ""
        extracted_from = "Playwright+Readability"

        if options.use_boilerplate_removal:
            readable = await asyncio.to_thread(extract_readable, html, final_url)
            if readable is not None:
                title   = readable.title or TITLE_NOT_FOUND
                author  = readable.byline
                if options.enable_markdown:
                    content = to_markdown(readable.content)
                else:
                    content = clean_text(readable.text_content)
                self._step(options, "readability_result", length=len(content))

        if len(content) < _MIN_CONTENT_LENGTH:
            extracted_from = "Playwright+SmartExtract"
            try:
                snapshot = await page.evaluate(SNAPSHOT_SCRIPT)
            except PlaywrightError as exc:
                raise FetchError(f"페이지 스냅샷 실패: {final_url} ({exc})") from exc
            title, content, author, published = self.smart_extract(snapshot or {})
            self._step(options, "smart_extract_result", length=len(content))

        if len(content) <= _MIN_CONTENT_LENGTH:
            raise EmptyContentError(
                f"추출된 본문이 너무 짧습니다 ({len(content)}자): {final_url}"
            )

        if not published:
            published = self._meta(soup, 'meta[property="article:published_time"]')

        return ExtractedArticle(
            title        = title,
            content      = content,
            author       = author,
            publish_date = self._to_iso_date(published) if published else "",
            description  = make_description(content),
            source_url   = final_url,
            stats        = calculate_stats(content),
            metadata     = {
                "final_url":         final_url,
                "original_url":      url,
                "extracted_from":    extracted_from,
                "use_readability":   options.use_boilerplate_removal,
                "content_length":    len(content),
                "extractor_type":    EXTRACTOR_TYPE,
                "domain":            bare_domain(final_url) or "",
                "extraction_method": METHOD,
                "timestamp":         utc_now_iso(),
            },
        )

    @staticmethod
    def smart_extract(snapshot: dict[str, Any]) -> tuple[str, str, str, str]:
        """
        스냅샷 dict → (title, content, author, publish_date).
        후보가 없으면 제목은 documentTitle, 본문은 "" 입니다.
        """
        titles   = [ElementSnapshot.from_dict(d) for d in snapshot.get("titles") or []]
        contents = [ElementSnapshot.from_dict(d) for d in snapshot.get("contents") or []]

        best_title   = pick_best(titles, is_title=True)
        best_content = pick_best(contents)

        title = best_title.text if best_title else str(snapshot.get("documentTitle") or "")
        return (
            title.strip() or TITLE_NOT_FOUND,
            clean_text(best_content.text) if best_content else "",
            str(snapshot.get("author") or "").strip(),
            str(snapshot.get("publishDate") or "").strip(),
        )

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
