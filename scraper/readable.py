"""
scraper/readable.py — readability-lxml 기반 보일러플레이트 제거

HTML + 기준 URL → ReadableArticle{title, content, text_content, byline, length, excerpt}
to_markdown() 은 본문 HTML 을 Markdown 으로 바꿉니다 (enable_markdown 옵션).
사용 가능한 기사를 찾지 못하면 None 을 반환합니다 (예외 아님).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

import structlog
from bs4 import BeautifulSoup
from markdownify import ATX, markdownify
from readability import Document
from readability.readability import Unparseable

from scraper.scoring import clean_text, make_description

logger = structlog.get_logger(__name__)

_BLANK_LINES_RE = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class ReadableArticle:
    title:        str
    content:      str   # 정제된 본문 HTML
    text_content: str
    byline:       str
    length:       int
    excerpt:      str


def _byline(soup: BeautifulSoup) -> str:
    for selector in ('meta[name="author"]', 'meta[property="article:author"]'):
        tag = soup.select_one(selector)
        if tag is not None and tag.get("content"):
            return str(tag["content"]).strip()
    tag = soup.select_one('[rel="author"], .byline, .author')
    return tag.get_text(" ", strip=True) if tag is not None else ""


def _excerpt(soup: BeautifulSoup, text: str) -> str:
    tag = soup.select_one('meta[name="description"], meta[property="og:description"]')
    if tag is not None and tag.get("content"):
        return str(tag["content"]).strip()
    return make_description(clean_text(text))


def to_markdown(summary_html: str) -> str:
    """readability 본문 HTML → Markdown (ATX 제목)."""
    markdown = markdownify(summary_html, heading_style=ATX)
    return _BLANK_LINES_RE.sub("\n\n", markdown).strip()


def extract_readable(html: str, url: str) -> Optional[ReadableArticle]:
    """
    readability-lxml 로 본문 영역만 추출합니다.

    CPU 작업이므로 async 코드에서는 asyncio.to_thread 로 호출하세요.
    """
    if not html or not html.strip():
        return None

    try:
        doc          = Document(html, url=url)
        summary_html = doc.summary(html_partial=True)
        title        = doc.short_title() or doc.title()
    except (Unparseable, ValueError) as exc:
        logger.warning("readability_failed", url=url, error_type=type(exc).__name__, error=str(exc))
        return None

    text = BeautifulSoup(summary_html, "lxml").get_text("\n", strip=True)
    if not text:
        logger.debug("readability_empty", url=url)
        return None

    page = BeautifulSoup(html, "lxml")
    article = ReadableArticle(
        title        = (title or "").strip(),
        content      = summary_html,
        text_content = text,
        byline       = _byline(page),
        length       = len(text),
        excerpt      = _excerpt(page, text),
    )
    logger.debug("readability_ok", url=url, length=article.length, title=article.title[:50])
    return article
