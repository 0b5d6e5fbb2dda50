"""
processor/news_content.py — 피드 항목 본문 보강 서비스 + 도구 응답 렌더러

NewsContentExtractorService:
    피드 항목 목록 → 항목별 통합 추출 → NewsContentOutput 목록
    추출 실패 / 오류 항목도 피드 값(title, link, pubDate)으로 채워 반환합니다.
    처리가 끝나면(예외 포함) 추출기의 브라우저 리소스를 정리합니다.
    생성 시 로깅이 설정되지 않았다면 core.logger 기본 설정을 적용합니다.

render_tool_response:
    결과 또는 예외 → {"content": [{"type": "text", "text": ...}], "isError": bool}
    실패는 isError=True 인 텍스트로 표현합니다 (빈 성공 응답 없음).
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Optional, Union

import structlog
from pydantic import BaseModel

from core.logger import Phase, ensure_logging, log_context
from scraper.models import ExtractionOptions, FeedItem, NewsContentOutput
from scraper.unified import UnifiedExtractor

logger = structlog.get_logger(__name__)

EXTRACTION_FAILED_TEXT = "내용 추출에 실패했습니다."

# 피드 보강은 배치보다 짧은 예산으로 동작
_FEED_OVERRIDES: dict[str, Any] = {
    "timeout_ms":  30_000,
    "max_retries": 2,
}


class NewsContentExtractorService:
    """
    Args:
        extractor: 주입할 UnifiedExtractor (기본: 피드용 옵션으로 생성)
        options:   기본 옵션 (기본: Settings 값 + 피드 덮어쓰기)
    """

    def __init__(
        self,
        extractor: Optional[UnifiedExtractor] = None,
        options: Optional[ExtractionOptions] = None,
    ) -> None:
        ensure_logging()
        self.options   = options or ExtractionOptions.from_settings().merged(_FEED_OVERRIDES)
        self.extractor = extractor or UnifiedExtractor(self.options)

    async def extract_contents(
        self, items: Iterable[Union[FeedItem, Mapping[str, Any]]]
    ) -> list[NewsContentOutput]:
        feed = [
            item if isinstance(item, FeedItem) else FeedItem.model_validate(item)
            for item in items
        ]
        outputs: list[NewsContentOutput] = []

        try:
            for item in feed:
                outputs.append(await self._extract_item(item))
        finally:
            await self.extractor.close_all()

        logger.info(
            "feed_contents_extracted",
            total=len(outputs),
            succeeded=sum(1 for o in outputs if o.extraction_success),
        )
        return outputs

    async def _extract_item(self, item: FeedItem) -> NewsContentOutput:
        with log_context(url=item.link, phase=Phase.FETCH):
            try:
                result = await self.extractor.extract(item.link, self.options)
            except Exception as exc:
                logger.warning(
                    "feed_item_failed",
                    url=item.link,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                return NewsContentOutput(
                    title              = item.title,
                    link               = item.link,
                    publish_date       = item.pub_date,
                    content            = f"추출 오류: {exc}",
                    extraction_success = False,
                )

        if result is None:
            logger.info("feed_item_empty", url=item.link)
            return NewsContentOutput(
                title              = item.title,
                link               = item.link,
                publish_date       = item.pub_date,
                content            = EXTRACTION_FAILED_TEXT,
                extraction_success = False,
            )

        return NewsContentOutput(
            title              = result.title or item.title,
            link               = result.source_url,
            publish_date       = result.publish_date or item.pub_date,
            content            = result.content,
            author             = result.author or None,
            description        = result.description or None,
            extraction_success = True,
        )


# ─────────────────────────────────────────────────────────────
# 도구 응답
# ─────────────────────────────────────────────────────────────

def _to_jsonable(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(by_alias=True)
    if isinstance(result, (list, tuple)):
        return [_to_jsonable(r) for r in result]
    return result


def render_tool_response(result: Any = None, error: Optional[BaseException] = None) -> dict[str, Any]:
    """
    결과 또는 오류를 도구 호출 응답 형식으로 변환합니다.

    result 가 None 이고 오류도 없으면 추출 실패로 간주합니다.
    """
    if error is not None:
        text, is_error = f"Error: {error}", True
    elif result is None:
        text, is_error = f"Error: {EXTRACTION_FAILED_TEXT}", True
    else:
        text = json.dumps(_to_jsonable(result), ensure_ascii=False, indent=2)
        is_error = False

    return {
        "content": [{"type": "text", "text": text}],
        "isError": is_error,
    }
