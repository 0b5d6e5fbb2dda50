"""
tests/test_google_news.py — Google News 리다이렉트 전략 (스냅샷 점수화 · Readability 경로 · 재시도)
"""

from __future__ import annotations

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

import scraper.google_news as google_news
from scraper.engine import BotChallengeError, EmptyContentError, ExtractionTimeoutError
from scraper.google_news import EXTRACTOR_TYPE, METHOD, GoogleNewsStrategy
from scraper.models import TITLE_NOT_FOUND, ExtractionOptions
from scraper.readable import ReadableArticle
from tests.fakes import FakeBrowserSession, FakePage
from tests.pages import ARTICLE_PARAGRAPHS

GOOGLE_URL = "https://news.google.com/rss/articles/CBMiQWh0dHBzOi8vd3d3LmV4YW1wbGUuY29t?oc=5"
FINAL_URL  = "https://www.example.com/news/2024/01/15/transit"

ARTICLE_TEXT = " ".join(ARTICLE_PARAGRAPHS)

SNAPSHOT = {
    "titles": [
        {"tag": "div", "className": "nav-title", "id": "", "text": "메뉴"},
        {"tag": "h1", "className": "", "id": "", "text": "서울시 대중교통 요금 체계 전면 개편"},
    ],
    "contents": [
        {"tag": "div", "className": "sidebar", "id": "", "text": "관련 기사 " * 40},
        {"tag": "article", "className": "article-body", "id": "", "text": ARTICLE_TEXT},
    ],
    "author": "김기자",
    "publishDate": "2024-01-15T14:30:00+09:00",
    "documentTitle": "서울시 대중교통 요금 체계 전면 개편 - 예시일보",
}

PAGE_HTML = "<html><head><title>예시일보</title></head><body><article>...</article></body></html>"


def _options(**overrides) -> ExtractionOptions:
    base = {
        "max_retries": 1,
        "content_wait_ms": 0,
        "use_boilerplate_removal": False,
    }
    base.update(overrides)
    return ExtractionOptions(**base)


def _strategy(page: FakePage):
    limiter = MagicMock()
    limiter.acquire = AsyncMock(return_value=0.0)
    browser = FakeBrowserSession(page)
    return GoogleNewsStrategy(rate_limiter=limiter, browser=browser), limiter, browser


class TestSmartExtract:
    def test_scores_snapshot_candidates(self):
        title, content, author, published = GoogleNewsStrategy.smart_extract(SNAPSHOT)

        assert title == "서울시 대중교통 요금 체계 전면 개편"
        assert content == ARTICLE_TEXT
        assert author == "김기자"
        assert published == "2024-01-15T14:30:00+09:00"

    def test_falls_back_to_document_title(self):
        title, content, _, _ = GoogleNewsStrategy.smart_extract({"documentTitle": "문서 제목"})
        assert title == "문서 제목"
        assert content == ""

    def test_empty_snapshot(self):
        assert GoogleNewsStrategy.smart_extract({}) == (TITLE_NOT_FOUND, "", "", "")


class TestExtract:
    @pytest.mark.asyncio
    async def test_smart_extraction_path(self):
        page = FakePage(html=PAGE_HTML, final_url=FINAL_URL, snapshot=SNAPSHOT)
        strategy, limiter, browser = _strategy(page)

        article = await strategy.extract(GOOGLE_URL, _options(requests_per_minute=7))

        assert article.source_url == FINAL_URL
        assert article.title == "서울시 대중교통 요금 체계 전면 개편"
        assert article.content == ARTICLE_TEXT
        assert article.description == ARTICLE_TEXT[:200] + "..."
        assert article.author == "김기자"
        assert article.publish_date == "2024-01-15T14:30:00+09:00"
        assert article.performance.method == METHOD
        assert article.metadata["final_url"] == FINAL_URL
        assert article.metadata["original_url"] == GOOGLE_URL
        assert article.metadata["extracted_from"] == "Playwright+SmartExtract"
        assert article.metadata["attempts"] == 1
        assert article.metadata["extractor_type"] == EXTRACTOR_TYPE
        assert article.metadata["content_length"] == len(ARTICLE_TEXT)
        assert article.metadata["domain"] == "example.com"

        limiter.acquire.assert_awaited_once_with(7)
        assert page.goto_calls == [(GOOGLE_URL, "domcontentloaded", 30_000)]
        assert browser.humanized == 1
        blocked_types, blocked_urls = browser.blocked[0]
        assert "image" in blocked_types and "other" not in blocked_types
        assert "googletagmanager" in blocked_urls
        assert page.closed

    @pytest.mark.asyncio
    async def test_readability_path(self, monkeypatch):
        readable = ReadableArticle(
            title="서울시 대중교통 요금 체계 전면 개편",
            content="<div>...</div>",
            text_content="\n".join(ARTICLE_PARAGRAPHS),
            byline="김기자",
            length=len(ARTICLE_TEXT),
            excerpt="요약",
        )
        monkeypatch.setattr(google_news, "extract_readable", lambda html, url: readable)
        page = FakePage(html=PAGE_HTML, final_url=FINAL_URL, snapshot=None)
        strategy, _, _ = _strategy(page)

        article = await strategy.extract(GOOGLE_URL, _options(use_boilerplate_removal=True))

        assert article.metadata["extracted_from"] == "Playwright+Readability"
        assert article.metadata["use_readability"] is True
        assert article.content == ARTICLE_TEXT
        assert article.author == "김기자"

    @pytest.mark.asyncio
    async def test_short_readability_result_falls_back_to_snapshot(self, monkeypatch):
        monkeypatch.setattr(google_news, "extract_readable", lambda html, url: None)
        page = FakePage(html=PAGE_HTML, final_url=FINAL_URL, snapshot=SNAPSHOT)
        strategy, _, _ = _strategy(page)

        article = await strategy.extract(GOOGLE_URL, _options(use_boilerplate_removal=True))

        assert article.metadata["extracted_from"] == "Playwright+SmartExtract"

    @pytest.mark.asyncio
    async def test_redirect_wait_failure_uses_current_url(self):
        page = FakePage(html=PAGE_HTML, final_url=FINAL_URL, snapshot=SNAPSHOT, fail_load_state=True)
        strategy, _, _ = _strategy(page)

        article = await strategy.extract(GOOGLE_URL, _options())

        assert article.source_url == FINAL_URL

    @pytest.mark.asyncio
    async def test_empty_content_raises(self):
        page = FakePage(html=PAGE_HTML, final_url=FINAL_URL, snapshot={"titles": [], "contents": []})
        strategy, _, _ = _strategy(page)

        with pytest.raises(EmptyContentError):
            await strategy.extract(GOOGLE_URL, _options())
        assert page.closed

    @pytest.mark.asyncio
    async def test_bot_challenge_page(self):
        html = (
            "<html><head><title>Just a moment...</title></head>"
            "<body>Enable JavaScript and cookies to continue</body></html>"
        )
        page = FakePage(html=html, final_url=FINAL_URL, snapshot=SNAPSHOT)
        strategy, _, _ = _strategy(page)

        outcome = await strategy.try_extract(GOOGLE_URL, _options())

        assert isinstance(outcome.error, BotChallengeError)
        assert outcome.error.kind == "bot_challenge"

    @pytest.mark.asyncio
    async def test_human_simulation_can_be_disabled(self):
        page = FakePage(html=PAGE_HTML, final_url=FINAL_URL, snapshot=SNAPSHOT)
        strategy, _, browser = _strategy(page)

        await strategy.extract(GOOGLE_URL, _options(simulate_human=False))

        assert browser.humanized == 0

    @pytest.mark.asyncio
    async def test_markdown_option_converts_readability_html(self, monkeypatch):
        body = "".join(f"<p>{paragraph}</p>" for paragraph in ARTICLE_PARAGRAPHS)
        readable = ReadableArticle(
            title="서울시 대중교통 요금 체계 전면 개편",
            content=f"<div><h2>요금 개편 주요 내용</h2>{body}</div>",
            text_content="\n".join(ARTICLE_PARAGRAPHS),
            byline="김기자",
            length=len(ARTICLE_TEXT),
            excerpt="요약",
        )
        monkeypatch.setattr(google_news, "extract_readable", lambda html, url: readable)
        page = FakePage(html=PAGE_HTML, final_url=FINAL_URL, snapshot=None)
        strategy, _, _ = _strategy(page)

        article = await strategy.extract(
            GOOGLE_URL, _options(use_boilerplate_removal=True, enable_markdown=True)
        )

        assert article.metadata["extracted_from"] == "Playwright+Readability"
        assert article.content.startswith("## 요금 개편 주요 내용")
        assert ARTICLE_PARAGRAPHS[0] in article.content
        assert "<p>" not in article.content
        assert article.content != ARTICLE_TEXT


# ─────────────────────────────────────────────────────────────
# 데드라인 · 재시도
# ─────────────────────────────────────────────────────────────

class TestDeadlineAndRetry:
    @pytest.mark.asyncio
    async def test_hanging_attempt_hits_deadline(self):
        async def hang(url, options):
            await asyncio.sleep(30)

        strategy, _, _ = _strategy(FakePage())
        strategy._extract_once = hang

        started = time.monotonic()
        with pytest.raises(ExtractionTimeoutError):
            await strategy.extract(GOOGLE_URL, _options(timeout_ms=100))
        assert time.monotonic() - started < 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_retries", [1, 2, 3])
    async def test_attempts_equal_max_retries(self, clock, max_retries):
        limiter = MagicMock()
        limiter.acquire = AsyncMock(return_value=0.0)
        strategy = GoogleNewsStrategy(
            rate_limiter=limiter,
            browser=FakeBrowserSession(FakePage()),
            retry_sleep=clock.sleep,
        )
        strategy._extract_once = AsyncMock(side_effect=EmptyContentError("본문 없음"))

        with pytest.raises(EmptyContentError):
            await strategy.extract(GOOGLE_URL, _options(max_retries=max_retries))

        assert strategy._extract_once.await_count == max_retries
        assert limiter.acquire.await_count == max_retries
        assert len(clock.sleeps) == max_retries - 1


def test_create_rate_limited():
    strategy = GoogleNewsStrategy.create_rate_limited(5, timeoutMs=20_000)

    assert strategy.rate_limiter.requests_per_minute == 5
    assert strategy.default_options.requests_per_minute == 5
    assert strategy.default_options.timeout_ms == 20_000


@pytest.mark.asyncio
async def test_close_releases_browser():
    strategy, _, browser = _strategy(FakePage())
    await strategy.close()
    await strategy.close()
    assert browser.closed == 2
