"""
processor 패키지 — 피드 항목 본문 보강 + 도구 응답 변환

파이프라인:
    피드 수집기 ({title, link, pubDate})
        └─► processor.news_content.NewsContentExtractorService.extract_contents()
                ├─ scraper.unified.UnifiedExtractor.extract()  (항목별 본문 추출)
                ├─ 실패 항목은 피드 값으로 채운 NewsContentOutput
                └─ close_all()  (브라우저 정리)

    결과 / 오류
        └─► processor.news_content.render_tool_response()
                └─ {"content": [{"type": "text", "text": ...}], "isError": bool}
"""
