"""
scraper/naver.py — 네이버 뉴스 전용 추출 전략

수집:
    정적 HTTP 만 사용합니다 (브라우저 없음).
    요청 식별자를 순서대로 시도하고, 유효성 검증(5개 지표 중 3개 이상)을
    통과한 첫 응답을 채택합니다:
        Googlebot → Bingbot → Chrome

    유효성 지표:
        #dic_area 존재 · og:url 에 naver.com · <title> 5자 초과 ·
        "뉴스"/"news" 포함 · HTML 5000 바이트 초과

추출 (우선순위 순):
    본문   : #dic_area / #newsct_article / .go_trans_hide / #content 중 최장 텍스트
             → 없으면 body 전체 → 노이즈 정제 (clean_naver_content)
    제목   : og:title → twitter:title → .media_end_head_headline → ... → <title>
    기자   : JSON-LD → 메타태그 → 텍스트 셀렉터 (직함·경칭 제거)
    발행일 : JSON-LD → 메타태그 → 텍스트 셀렉터 (parse_naver_date)
    메타   : og:url 쿼리의 oid / aid (경로형 /article/{oid}/{aid} 도 지원)
"""

from __future__ import annotations

import re
import time
from datetime import date, datetime
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

import requests
from bs4 import BeautifulSoup
from dateutil import parser as dateutil_parser

from core.logger import Phase, log_context
from scraper.engine import (
    BaseStrategy,
    ExtractionTimeoutError,
    FetchError,
    to_iso_z,
    utc_now_iso,
)
from scraper.models import TITLE_NOT_FOUND, ExtractedArticle, ExtractionOptions
from scraper.scoring import calculate_stats
from scraper.throttle import fetch_text, make_http_session

# ─────────────────────────────────────────────────────────────
# 상수
# ─────────────────────────────────────────────────────────────

_NAVER_NEWS_URL_PATTERNS: list[re.Pattern] = [
    re.compile(r"^https?://news\.naver\.com"),
    re.compile(r"^https?://n\.news\.naver\.com"),
    re.compile(r"^https?://.*\.naver\.com.*/news"),
]

# (식별자 이름, User-Agent)
_IDENTITIES: list[tuple[str, str]] = [
    ("Googlebot", "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"),
    ("Bingbot",   "Mozilla/5.0 (compatible; bingbot/2.0; +http://www.bing.com/bingbot.htm)"),
    ("Chrome",    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )),
]

_REQUEST_HEADERS: dict[str, str] = {
    "Accept":          "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ko-KR,ko;q=0.9,en;q=0.8",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control":   "no-cache",
}

_MIN_VALID_SCORE = 3

_CONTENT_SELECTORS: list[str] = [
    "#dic_area",
    "#newsct_article",
    ".go_trans_hide",
    "#content",
]

_TITLE_SELECTORS: list[str] = [
    'meta[property="og:title"]',
    'meta[name="twitter:title"]',
    ".media_end_head_headline",   # 최신 포맷
    "#title_area span",
    ".title",
    "h1",
    "h2",
    "title",                      # 최후의 수단
]

_AUTHOR_META_SELECTORS: list[str] = [
    'meta[property="article:author"]',
    'meta[name="author"]',
    'meta[name="twitter:creator"]',
    'meta[property="og:article:author"]',
]

_AUTHOR_TEXT_SELECTORS: list[str] = [
    ".media_end_head_journalist_name",   # 최신 포맷 기자 이름
    ".journalist_name",                  # 이전 포맷
    ".byline_p span:first-child",
    ".author",
    ".writer",
    ".reporter",
    ".profile_info .name",
    ".byline",
    ".journalist_info .name",
]

_DATE_META_SELECTORS: list[str] = [
    'meta[property="article:published_time"]',
    'meta[property="og:regDate"]',
    'meta[name="publishdate"]',
    'meta[name="DCSext.articlefirstpublished"]',
]

_DATE_TEXT_SELECTORS: list[str] = [
    ".media_end_head_info_datestamp_time._ARTICLE_DATE_TIME",
    ".media_end_head_info_datestamp_time[data-date-time]",
    ".article_info .date",
    ".info_group .date",
    ".byline_p .date",
    ".sponsor_date",
    ".date",
    ".time",
    ".article_header .date_commit_area .date_area .date_info span",
]

_DESCRIPTION_SELECTORS: list[str] = [
    'meta[property="og:description"]',
    'meta[name="description"]',
    'meta[name="twitter:description"]',
]

# "(서울=연합뉴스) 홍길동 기자" / "홍길동 기자" / "홍길동 특파원" 에서 이름만
_AUTHOR_NAME_RE = re.compile(
    r"(?:\(|^)([^()\s]+)\s*기자"
    r"|(?:^|\s)([가-힣]{2,5})\s*기자(?:\s|$)"
    r"|(?:^|\s)([가-힣]{2,5})\s*특파원"
)
_AUTHOR_STRIP_RE = re.compile(
    r"기자|특파원|입력|수정|사진|영상|PD|앵커|교수|연구원|변호사|위원|대표|원장|사장|작가|\(.*?\)|ⓒ.*"
)


# ─────────────────────────────────────────────────────────────
# 노이즈 정제
# ─────────────────────────────────────────────────────────────

# (패턴, 치환), 순서대로 적용
_NOISE_SUBSTITUTIONS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"언론사 구독, 기자 구독.*?더 보기"),          " "),
    (re.compile(r"네이버에서 제공하는.*?보기"),                " "),
    (re.compile(r"본 콘텐츠는.*?제공됩니다\."),                " "),
    (re.compile(r"번역하기|원문|펼치기|접기|더보기|닫기"),     " "),
    (re.compile(r"\[앵커\]|\[기자\]|\[리포트\]|\[해설\]"),      " "),
    (re.compile(r"뉴스홈|스포츠|연예|경제"),                   " "),
    (re.compile(r"이전기사|다음기사|기사목록"),                " "),
    (re.compile(r"\[광고\]|\[협찬\]|\[PR\]"),                  " "),
    (re.compile(r"공유하기|스크랩|댓글|추천"),                 " "),
    (re.compile(r"[^0-9A-Za-z_\s가-힣.,!?'\"()\-:;]"),         " "),
    # 기호 제거로 생긴 공백까지 접도록 마지막에 둡니다.
    (re.compile(r"\n{3,}"),                                    "\n"),
    (re.compile(r"\s{3,}"),                                    " "),
]

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_NUMERIC_ONLY_RE   = re.compile(r"^[0-9\s\-:]+$")


def clean_naver_content(content: str) -> str:
    """
    네이버 본문 노이즈 정제.

    1. 구독 안내·번역 UI·방송 꼭지 라벨·광고 마커·과다 공백·기호를 순서대로 치환
    2. 문장 단위로 나눠 10자 초과 + 숫자/구두점만이 아닌 문장만 '. ' 로 재결합

    이미 정제된 텍스트에 다시 적용해도 결과가 바뀌지 않습니다.
    """
    cleaned = content or ""
    for pattern, replacement in _NOISE_SUBSTITUTIONS:
        cleaned = pattern.sub(replacement, cleaned)

    sentences = []
    for piece in _SENTENCE_SPLIT_RE.split(cleaned):
        piece = piece.strip()
        if len(piece) > 10 and not _NUMERIC_ONLY_RE.match(piece):
            sentences.append(piece)
    return ". ".join(sentences).strip()


# ─────────────────────────────────────────────────────────────
# 날짜 파싱
# ─────────────────────────────────────────────────────────────

_DOTTED_DATETIME_RE = re.compile(
    r"(\d{4})\.(\d{1,2})\.(\d{1,2})\.?\s*(?:(오전|오후)\s*)?(\d{1,2}):(\d{1,2})"
)
_DASHED_DATETIME_RE = re.compile(
    r"(\d{4})-(\d{1,2})-(\d{1,2})\s*(\d{1,2}):(\d{1,2}):?(\d{1,2})?"
)
_DOTTED_DATE_RE = re.compile(r"(\d{4})\.(\d{1,2})\.(\d{1,2})")


def parse_naver_date(value: Optional[str]) -> Optional[str]:
    """
    네이버 날짜 문자열 → ISO 8601 (UTC, 밀리초, 'Z').

    지원 포맷 (순서대로 시도):
        "2024.01.15. 오후 2:30"      점 구분 + 오전/오후 (로컬 시간으로 해석)
        "2024-01-15T14:30:00+09:00"  ISO 8601 + 오프셋
        "2024-01-15 14:30:00"        대시 구분 날짜·시간 (로컬 시간으로 해석)
        "2024.01.15"                 날짜만 → "2024-01-15T00:00:00.000Z"

    인식할 수 없으면 None (예외 아님).
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()

    match = _DOTTED_DATETIME_RE.search(text)
    if match:
        year, month, day = int(match.group(1)), int(match.group(2)), int(match.group(3))
        hour, minute     = int(match.group(5)), int(match.group(6))
        ampm             = match.group(4)
        if ampm == "오후" and hour < 12:
            hour += 12
        if ampm == "오전" and hour == 12:
            hour = 0
        try:
            return to_iso_z(datetime(year, month, day, hour, minute))
        except ValueError:
            pass

    if "T" in text and ("+" in text or "Z" in text):
        try:
            return to_iso_z(dateutil_parser.isoparse(text))
        except ValueError:
            pass

    match = _DASHED_DATETIME_RE.search(text)
    if match:
        try:
            return to_iso_z(datetime(
                int(match.group(1)), int(match.group(2)), int(match.group(3)),
                int(match.group(4)), int(match.group(5)),
                int(match.group(6)) if match.group(6) else 0,
            ))
        except ValueError:
            pass

    match = _DOTTED_DATE_RE.search(text)
    if match:
        try:
            day_only = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            return f"{day_only.isoformat()}T00:00:00.000Z"
        except ValueError:
            pass

    return None


# ─────────────────────────────────────────────────────────────
# NaverStrategy
# ─────────────────────────────────────────────────────────────

class NaverStrategy(BaseStrategy):
    """
    news.naver.com / n.news.naver.com 특화 추출 전략.

    Args:
        session:         정적 HTTP 세션 (기본: make_http_session())
        default_options: 호출 시 options 가 없을 때 사용할 옵션
    """

    METHOD = "Naver News Specialized"

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        default_options: Optional[ExtractionOptions] = None,
    ) -> None:
        super().__init__(default_options)
        self._session = session or make_http_session()

    @staticmethod
    def is_naver_news_url(url: str) -> bool:
        return any(p.search(url) for p in _NAVER_NEWS_URL_PATTERNS)

    # ── 진입점 ───────────────────────────────────────────────

    async def extract(
        self, url: str, options: Optional[ExtractionOptions] = None
    ) -> ExtractedArticle:
        """
        Raises:
            FetchError: 네이버 뉴스 URL 이 아니거나 모든 식별자로 수집 실패
        """
        options = options or self.default_options
        started = time.perf_counter()

        if not self.is_naver_news_url(url):
            raise FetchError(f"네이버 뉴스 URL 이 아닙니다: {url}")

        with log_context(url=url, strategy="Naver", phase=Phase.FETCH):
            html = await self._fetch_html(url, options)

        with log_context(url=url, strategy="Naver", phase=Phase.PARSE):
            article = self._parse(html, url, options)

        article.performance.extraction_time_ms = self._elapsed_ms(started)
        article.performance.method = "Naver News Specialized Extractor"
        self.log.info(
            "naver_extracted",
            url=url,
            title=article.title[:50],
            content_len=len(article.content),
            oid=article.metadata.get("oid"),
            aid=article.metadata.get("aid"),
        )
        return article

    # ── 수집 ─────────────────────────────────────────────────

    async def _fetch_html(self, url: str, options: ExtractionOptions) -> str:
        for name, user_agent in _IDENTITIES:
            headers = {**_REQUEST_HEADERS, "User-Agent": user_agent}
            self._step(options, "naver_fetch_try", identity=name)
            try:
                html = await self._with_deadline(
                    fetch_text(self._session, url, headers=headers, timeout=options.http_timeout_sec),
                    options.timeout_ms,
                    what=f"네이버 수집({name})",
                )
            except (FetchError, ExtractionTimeoutError) as exc:
                self.log.warning(
                    "naver_fetch_failed",
                    identity=name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue

            score = self.validity_score(html)
            self._step(options, "naver_validity", identity=name, score=score)
            if score >= _MIN_VALID_SCORE:
                return html

        raise FetchError(
            f"모든 User-Agent 로 시도했지만 네이버 뉴스를 가져올 수 없습니다: {url}"
        )

    @classmethod
    def validity_score(cls, html: str) -> int:
        """유효한 네이버 뉴스 페이지 지표 개수 (0~5)."""
        soup = cls._soup(html)
        title_tag = soup.find("title")
        indicators = [
            soup.select_one("#dic_area") is not None,
            "naver.com" in cls._meta(soup, 'meta[property="og:url"]'),
            len(title_tag.get_text() if title_tag else "") > 5,
            "뉴스" in html or "news" in html,
            len(html) > 5000,
        ]
        return sum(indicators)

    # ── 파싱 ─────────────────────────────────────────────────

    def _parse(self, html: str, url: str, options: ExtractionOptions) -> ExtractedArticle:
        soup = self._soup(html)
        ld   = self._extract_ld_json(soup)

        metadata    = self._extract_metadata(soup, url)
        title       = self._extract_title(soup)
        author      = self._extract_author(soup, ld)
        publish_dt  = self._extract_publish_date(soup, ld)
        description = self._extract_description(soup)
        content     = self._extract_content(soup, options)

        metadata.update({
            "source_url":        url,
            "extraction_method": self.METHOD,
            "timestamp":         utc_now_iso(),
        })
        return ExtractedArticle(
            title        = title,
            content      = content,
            author       = author,
            publish_date = publish_dt or "",
            description  = description,
            source_url   = url,
            stats        = calculate_stats(content),
            metadata     = metadata,
        )

    def _extract_content(self, soup: BeautifulSoup, options: ExtractionOptions) -> str:
        best_text, best_selector = "", ""
        for selector in _CONTENT_SELECTORS:
            text = self._text(soup, selector)
            if text:
                self._step(options, "naver_content_candidate", selector=selector, length=len(text))
            if len(text) > len(best_text):
                best_text, best_selector = text, selector

        if not best_text:
            self.log.warning("naver_content_fallback_body")
            body = soup.find("body")
            best_text = body.get_text().strip() if body else ""
            best_selector = "body (fallback)"

        cleaned = clean_naver_content(best_text)
        self._step(
            options,
            "naver_content_selected",
            selector=best_selector,
            raw_len=len(best_text),
            cleaned_len=len(cleaned),
        )
        return cleaned

    @classmethod
    def _extract_title(cls, soup: BeautifulSoup) -> str:
        for selector in _TITLE_SELECTORS:
            if selector.startswith("meta"):
                title = cls._meta(soup, selector)
            else:
                title = cls._text(soup, selector)
            if len(title) > 5:
                return re.sub(r"\s{2,}", " ", title.replace("\n", " ")).strip()
        return TITLE_NOT_FOUND

    @staticmethod
    def _is_acceptable_author(name: str, max_len: int = 50) -> bool:
        return (
            1 < len(name) < max_len
            and "네이버" not in name
            and "naver" not in name
        )

    @classmethod
    def _extract_author(cls, soup: BeautifulSoup, ld: list[dict[str, Any]]) -> str:
        # 1. JSON-LD (단일 객체 또는 배열)
        for block in ld:
            authors = block.get("author")
            if isinstance(authors, dict):
                authors = [authors]
            if not isinstance(authors, list):
                continue
            for author in authors:
                if not isinstance(author, dict):
                    continue
                name = str(author.get("name") or "").strip()
                if cls._is_acceptable_author(name):
                    return name

        # 2. 메타태그
        for selector in _AUTHOR_META_SELECTORS:
            name = cls._meta(soup, selector)
            if cls._is_acceptable_author(name):
                return name

        # 3. 텍스트 셀렉터 + 직함 제거
        for selector in _AUTHOR_TEXT_SELECTORS:
            raw = cls._text(soup, selector)
            if not raw:
                continue
            match = _AUTHOR_NAME_RE.search(raw)
            if match:
                raw = match.group(1) or match.group(2) or match.group(3) or raw
            name = _AUTHOR_STRIP_RE.sub("", raw).strip()
            if 1 < len(name) < 20 and "네이버" not in name:
                return name
        return ""

    @classmethod
    def _extract_publish_date(
        cls, soup: BeautifulSoup, ld: list[dict[str, Any]]
    ) -> Optional[str]:
        # 1. JSON-LD
        for block in ld:
            raw = block.get("datePublished") or block.get("uploadDate")
            if raw and (parsed := parse_naver_date(str(raw))):
                return parsed

        # 2. 메타태그
        for selector in _DATE_META_SELECTORS:
            raw = cls._meta(soup, selector)
            if raw and (parsed := parse_naver_date(raw)):
                return parsed

        # 3. 텍스트 셀렉터 (data 속성 우선)
        for selector in _DATE_TEXT_SELECTORS:
            tag = soup.select_one(selector)
            if tag is None:
                continue
            raw = (
                tag.get("data-date-time")
                or tag.get("data-modify-date-time")
                or tag.get_text()
            )
            if raw and (parsed := parse_naver_date(str(raw).strip())):
                return parsed
        return None

    @classmethod
    def _extract_description(cls, soup: BeautifulSoup) -> str:
        for selector in _DESCRIPTION_SELECTORS:
            description = cls._meta(soup, selector)
            if len(description) > 10:
                return description
        return ""

    @classmethod
    def _extract_metadata(cls, soup: BeautifulSoup, url: str) -> dict[str, Any]:
        og_url = cls._meta(soup, 'meta[property="og:url"]')
        oid, aid = article_ids(og_url) if og_url else (None, None)
        if oid is None:
            oid, aid = article_ids(url)

        html_tag = soup.find("html")
        charset_tag = soup.select_one("meta[charset]")
        charset = str(charset_tag.get("charset")) if charset_tag else ""
        if not charset:
            content_type = cls._meta(soup, 'meta[http-equiv="Content-Type"]')
            if m := re.search(r"charset=([^;]+)", content_type, re.IGNORECASE):
                charset = m.group(1)

        category = (
            cls._text(soup, ".media_end_categorize_item")
            or cls._text(soup, ".Nlist_item._LNB_ITEM.is_active")
        )
        return {
            "oid":              oid,
            "aid":              aid,
            "domain":           "news.naver.com",
            "language":         (html_tag.get("lang") if html_tag else None) or "ko",
            "keywords":         cls._meta(soup, 'meta[name="keywords"]') or None,
            "total_elements":   len(soup.find_all(True)),
            "detected_charset": charset.strip() or None,
            "category":         category or None,
        }


def article_ids(url: str) -> tuple[Optional[str], Optional[str]]:
    """
    네이버 기사 URL → (oid, aid).

    쿼리형  : ...read.naver?oid=001&aid=0014000000
    경로형  : n.news.naver.com/mnews/article/001/0014000000
    """
    parsed = urlparse(url)
    query  = parse_qs(parsed.query)
    oid    = (query.get("oid") or [None])[0]
    aid    = (query.get("aid") or [None])[0]
    if oid and aid:
        return oid, aid

    if m := re.search(r"/article/(\d+)/(\d+)", parsed.path):
        return m.group(1), m.group(2)
    return oid, aid
