"""
tests/test_news_content.py — 피드 본문 보강 서비스 + 도구 응답 렌더러
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from processor.news_content import (
    EXTRACTION_FAILED_TEXT,
    NewsContentExtractorService,
    render_tool_response,
)
from scraper.models import ExtractionOptions, FeedItem, UnifiedEnvelope, UnifiedResult

FEED = [
    {"title": "피드 제목 1", "link": "https://www.example.com/1", "pubDate": "Mon, 15 Jan 2024 05:30:00 GMT"},
    {"title": "피드 제목 2", "link": "https://www.example.com/2", "pubDate": "Mon, 15 Jan 2024 06:00:00 GMT"},
    {"title": "피드 제목 3", "link": "https://www.example.com/3"},
]


def _result(url: str, **fields) -> UnifiedResult:
    data = {
        "title": "추출된 제목",
        "content": "추출된 본문 " * 30,
        "author": "김기자",
        "publish_date": "2024-01-15T14:30:00+09:00",
        "description": "요약",
        "source_url": url,
    }
    data.update(fields)
    return UnifiedResult(
        **data,
        unified=UnifiedEnvelope(
            detected_site="example.com",
            extractor_used="General",
            total_extraction_time_ms=120,
            requested_url=url,
            timestamp="2024-01-15T05:30:00.000Z",
        ),
    )


def _mock_extractor(*side_effect) -> MagicMock:
    extractor = MagicMock()
    extractor.extract = AsyncMock(side_effect=list(side_effect))
    extractor.close_all = AsyncMock()
    return extractor


class TestNewsContentExtractorService:
    @pytest.mark.asyncio
    async def test_success_failure_and_error_items(self):
        final_url = "https://www.example.com/1?from=rss"
        extractor = _mock_extractor(_result(final_url), None, RuntimeError("boom"))
        service = NewsContentExtractorService(extractor=extractor, options=ExtractionOptions())

        outputs = await service.extract_contents(FEED)

        ok, empty, failed = outputs
        assert ok.extraction_success
        assert ok.title == "추출된 제목"
        assert ok.link == final_url
        assert ok.author == "김기자"
        assert ok.publish_date == "2024-01-15T14:30:00+09:00"

        assert not empty.extraction_success
        assert empty.title == "피드 제목 2"
        assert empty.link == "https://www.example.com/2"
        assert empty.publish_date == "Mon, 15 Jan 2024 06:00:00 GMT"
        assert empty.content == EXTRACTION_FAILED_TEXT

        assert not failed.extraction_success
        assert failed.content == "추출 오류: boom"
        assert failed.publish_date is None

        extractor.close_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_fields_fall_back_to_feed(self):
        extractor = _mock_extractor(_result("https://www.example.com/1", publish_date="", author=""))
        service = NewsContentExtractorService(extractor=extractor, options=ExtractionOptions())

        [output] = await service.extract_contents([FeedItem(**{"title": "피드", "link": "https://www.example.com/1", "pubDate": "어제"})])

        assert output.publish_date == "어제"
        assert output.author is None

    @pytest.mark.asyncio
    async def test_passes_service_options(self):
        options = ExtractionOptions(max_retries=1)
        extractor = _mock_extractor(None)
        service = NewsContentExtractorService(extractor=extractor, options=options)

        await service.extract_contents([FEED[0]])

        extractor.extract.assert_awaited_once_with("https://www.example.com/1", options)

    def test_default_feed_budget(self):
        service = NewsContentExtractorService(extractor=_mock_extractor())
        assert service.options.timeout_ms == 30_000
        assert service.options.max_retries == 2

    def test_construction_configures_logging(self):
        assert not structlog.is_configured()
        NewsContentExtractorService(extractor=_mock_extractor())
        assert structlog.is_configured()


class TestRenderToolResponse:
    def test_success_payload(self):
        response = render_tool_response(_result("https://www.example.com/1"))

        assert response["isError"] is False
        assert response["content"][0]["type"] == "text"
        payload = json.loads(response["content"][0]["text"])
        assert payload["sourceUrl"] == "https://www.example.com/1"
        assert payload["unified"]["extractorUsed"] == "General"

    def test_list_payload(self):
        response = render_tool_response([_result("https://www.example.com/1")])
        assert json.loads(response["content"][0]["text"])[0]["title"] == "추출된 제목"

    def test_error_payload(self):
        response = render_tool_response(error=ValueError("잘못된 URL"))
        assert response["isError"] is True
        assert "잘못된 URL" in response["content"][0]["text"]

    def test_missing_result_is_an_error(self):
        response = render_tool_response(None)
        assert response["isError"] is True
        assert EXTRACTION_FAILED_TEXT in response["content"][0]["text"]
