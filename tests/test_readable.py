"""
tests/test_readable.py — readability-lxml 래퍼
"""

from __future__ import annotations

from scraper.readable import extract_readable, to_markdown
from tests.pages import ARTICLE_PARAGRAPHS

PAGE = f"""<!DOCTYPE html>
<html lang="ko">
<head>
<title>서울시 대중교통 요금 체계 전면 개편</title>
<meta name="author" content="김기자">
<meta name="description" content="서울시가 내년부터 대중교통 요금 체계를 개편합니다.">
</head>
<body>
<div id="nav"><a href="/">홈</a> <a href="/society">사회</a></div>
<div class="article-body">
{"".join(f"<p>{p}</p>" for p in ARTICLE_PARAGRAPHS)}
</div>
<div class="footer">Copyright 예시일보</div>
</body>
</html>"""


def test_extracts_main_text_and_metadata():
    article = extract_readable(PAGE, "https://www.example.com/news/1")

    assert article is not None
    assert ARTICLE_PARAGRAPHS[0] in article.text_content
    assert article.length == len(article.text_content)
    assert article.title
    assert article.byline == "김기자"
    assert article.excerpt == "서울시가 내년부터 대중교통 요금 체계를 개편합니다."


def test_blank_html_returns_none():
    assert extract_readable("", "https://www.example.com") is None
    assert extract_readable("   ", "https://www.example.com") is None


def test_to_markdown_keeps_headings_and_paragraphs():
    html = (
        "<div><h2>요금 개편 주요 내용</h2>"
        f"<p>{ARTICLE_PARAGRAPHS[0]}</p><p></p><p></p><p>{ARTICLE_PARAGRAPHS[1]}</p></div>"
    )

    markdown = to_markdown(html)

    assert markdown.startswith("## 요금 개편 주요 내용")
    assert f"{ARTICLE_PARAGRAPHS[0]}\n\n{ARTICLE_PARAGRAPHS[1]}" in markdown
    assert "\n\n\n" not in markdown
    assert "<p>" not in markdown
