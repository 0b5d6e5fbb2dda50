"""
tests/test_naver.py — 네이버 뉴스 전략 (URL 판별 · 노이즈 정제 · 날짜 · 추출 시나리오)
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from scraper.engine import FetchError
from scraper.models import ExtractionOptions
from scraper.naver import NaverStrategy, article_ids, clean_naver_content, parse_naver_date
from tests.fakes import FakeResponse, FakeSession
from tests.pages import naver_article_html


def _local_iso(*args: int) -> str:
    return datetime(*args).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


@pytest.mark.parametrize("url, expected", [
    ("https://news.naver.com/main/read.naver?oid=001&aid=0014000000", True),
    ("https://n.news.naver.com/mnews/article/001/0014000000", True),
    ("https://m.sports.naver.com/news/article", True),
    ("https://blog.naver.com/someone/223000000", False),
    ("https://www.hani.co.kr/arti/society/1.html", False),
])
def test_is_naver_news_url(url, expected):
    assert NaverStrategy.is_naver_news_url(url) is expected


class TestCleanNaverContent:
    def test_removes_ui_noise_and_short_fragments(self):
        raw = "번역하기 정부의 새해 예산안이 오늘 국회 본회의를 통과했습니다. 공유하기 짧다. 12:30"
        assert clean_naver_content(raw) == "정부의 새해 예산안이 오늘 국회 본회의를 통과했습니다"

    def test_is_idempotent(self):
        raw = (
            "[앵커] 정부의 새해 예산안이 오늘 국회 본회의를 통과했습니다!!  "
            "여야는 막판까지 쟁점 예산을 두고 진통을 겪었습니다... ★ 기사목록"
        )
        once = clean_naver_content(raw)
        assert once
        assert clean_naver_content(once) == once

    @pytest.mark.parametrize("raw", [
        "정부의 새해 예산안이 ▲ 오늘 국회 본회의를 통과했습니다",
        "여야는 ■■ 막판까지 ◆ 쟁점 예산을 두고 진통을 겪었습니다. 정부의 ★ 새해 예산안이 통과했습니다",
    ])
    def test_mid_sentence_symbols_collapse_in_one_pass(self, raw):
        once = clean_naver_content(raw)
        assert "  " not in once
        assert clean_naver_content(once) == once

    def test_mid_sentence_symbol_leaves_single_space(self):
        assert clean_naver_content("정부의 새해 예산안이 ▲ 오늘 국회 본회의를 통과했습니다") == (
            "정부의 새해 예산안이 오늘 국회 본회의를 통과했습니다"
        )

    def test_empty_input(self):
        assert clean_naver_content("") == ""


class TestParseNaverDate:
    def test_dotted_with_afternoon_marker(self):
        assert parse_naver_date("2024.01.15. 오후 2:30") == _local_iso(2024, 1, 15, 14, 30)

    def test_dotted_midnight_morning_marker(self):
        assert parse_naver_date("2024.01.15. 오전 12:05") == _local_iso(2024, 1, 15, 0, 5)

    def test_iso_with_offset(self):
        assert parse_naver_date("2024-01-15T14:30:00+09:00") == "2024-01-15T05:30:00.000Z"

    def test_dashed_datetime(self):
        assert parse_naver_date("2024-01-15 09:10:11") == _local_iso(2024, 1, 15, 9, 10, 11)

    def test_date_only(self):
        assert parse_naver_date("2024.01.15") == "2024-01-15T00:00:00.000Z"

    @pytest.mark.parametrize("value", [None, "", "어제", "2024.13.45"])
    def test_unrecognised_returns_none(self, value):
        assert parse_naver_date(value) is None


def test_article_ids_query_and_path_forms():
    assert article_ids("https://news.naver.com/main/read.naver?oid=001&aid=0014000000") == ("001", "0014000000")
    assert article_ids("https://n.news.naver.com/mnews/article/421/0007300000") == ("421", "0007300000")
    assert article_ids("https://n.news.naver.com/") == (None, None)


def test_validity_score():
    assert NaverStrategy.validity_score(naver_article_html()) == 4
    assert NaverStrategy.validity_score("<html><body>hello</body></html>") == 0


class TestNaverExtract:
    URL = "https://n.news.naver.com/mnews/article/001/0014000000"

    @pytest.mark.asyncio
    async def test_dic_area_article(self):
        session = FakeSession(default=FakeResponse(naver_article_html()))
        strategy = NaverStrategy(session=session)

        article = await strategy.extract(self.URL, ExtractionOptions())

        assert article.title == "정부 새해 예산안 국회 통과 소식"
        assert article.content.startswith("정부의 새해 예산안이 오늘 국회 본회의를 통과했습니다")
        assert 400 < len(article.content) <= 500
        assert article.author == "홍길동"
        assert article.publish_date == "2024-01-15T05:30:00.000Z"
        assert article.description == "정부의 새해 예산안이 오늘 국회 본회의를 통과했습니다."
        assert article.metadata["oid"] == "001"
        assert article.metadata["aid"] == "0014000000"
        assert article.metadata["domain"] == "news.naver.com"
        assert article.metadata["detected_charset"] == "utf-8"
        assert article.performance.method == "Naver News Specialized Extractor"
        assert article.stats.characters == len(article.content)
        # Googlebot 응답이 유효하므로 한 번만 요청
        assert len(session.calls) == 1
        assert "Googlebot" in session.calls[0][1]

    @pytest.mark.asyncio
    async def test_falls_through_identities(self):
        session = FakeSession(routes={
            "Googlebot": FakeResponse("unavailable", status_code=503),
            "bingbot":   FakeResponse("<html><body>blocked</body></html>"),
            "Chrome":    FakeResponse(naver_article_html()),
        })
        article = await NaverStrategy(session=session).extract(self.URL, ExtractionOptions())

        assert article.metadata["oid"] == "001"
        assert len(session.calls) == 3
        assert "Googlebot" in session.calls[0][1]
        assert "bingbot" in session.calls[1][1]
        assert "Chrome" in session.calls[2][1]

    @pytest.mark.asyncio
    async def test_all_identities_fail(self):
        session = FakeSession(default=FakeResponse("<html></html>"))
        with pytest.raises(FetchError):
            await NaverStrategy(session=session).extract(self.URL, ExtractionOptions())

    @pytest.mark.asyncio
    async def test_rejects_non_naver_url(self):
        session = FakeSession(default=FakeResponse(naver_article_html()))
        with pytest.raises(FetchError):
            await NaverStrategy(session=session).extract("https://example.com/a", ExtractionOptions())
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_try_extract_returns_failed_outcome(self):
        session = FakeSession(default=FakeResponse("<html></html>"))
        outcome = await NaverStrategy(session=session).try_extract(self.URL, ExtractionOptions())

        assert not outcome.ok
        assert outcome.error.kind == "fetch"
        assert outcome.strategy == "NaverStrategy"
