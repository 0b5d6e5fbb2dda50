"""
scraper/models.py — Pydantic v2 데이터 모델

요청 → 전략 → 통합 라우터 전달 구조:

  ExtractionOptions   : 추출 옵션 (기본값 + 명시적 병합)
  ExtractionRequest   : URL + 옵션 (요청 시점 검증)
  ExtractedArticle    : 전략이 반환하는 정규화 기사
  UnifiedResult       : ExtractedArticle + 라우터 메타 (unified)
  BatchOutcome        : 배치 결과 (성공 / URL별 오류)
  FeedItem / NewsContentOutput : 피드 항목 → 본문 서비스 입출력

JSON 직렬화는 camelCase 별칭을 사용합니다 (도구 호출 서버 응답용).
파이썬 코드에서는 항상 snake_case 필드명으로 접근합니다.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

TITLE_NOT_FOUND = "제목을 찾을 수 없습니다"

_HTTP_URL = TypeAdapter(AnyHttpUrl)

_CAMEL_CONFIG = {
    "alias_generator":      to_camel,
    "populate_by_name":     True,
    "str_strip_whitespace": True,
}


def _invalid_input(message: str) -> Exception:
    # engine 이 models 를 import 하므로 지연 import
    from scraper.engine import InvalidInputError

    return InvalidInputError(message)


# ─────────────────────────────────────────────────────────────
# 1. 요청 옵션
# ─────────────────────────────────────────────────────────────

class ProxyConfig(BaseModel):
    """브라우저 프록시 설정 (Playwright launch proxy 형식)."""

    server:   str           = Field(..., min_length=1)
    username: Optional[str] = None
    password: Optional[str] = None

    model_config = {"frozen": True, **_CAMEL_CONFIG}

    def to_playwright(self) -> dict[str, str]:
        proxy = {"server": self.server}
        if self.username:
            proxy["username"] = self.username
        if self.password:
            proxy["password"] = self.password
        return proxy


class ExtractionOptions(BaseModel):
    """
    추출 옵션. 모든 필드에 기본값이 있습니다.

    병합 규칙:
      - 기본값은 from_settings() 로 core.config.Settings 에서 읽습니다.
      - 요청별 부분 옵션은 merged(overrides) 로 명시적으로 병합합니다.
      - 잘못된 값은 요청 시점에 InvalidInputError 로 실패합니다.
    """

    force_browser_fetch:     bool                  = False
    timeout_ms:              int                   = Field(45_000, gt=0)
    max_retries:             int                   = Field(3, ge=1)
    navigation_timeout_ms:   int                   = Field(30_000, gt=0)
    content_wait_ms:         int                   = Field(5_000, ge=0)
    verbose:                 bool                  = False
    block_subresources:      bool                  = True
    simulate_human:          bool                  = True
    proxy:                   Optional[ProxyConfig] = None
    requests_per_minute:     int                   = Field(10, ge=1)
    use_boilerplate_removal: bool                  = True
    concurrency:             int                   = Field(5, ge=1)
    http_timeout_sec:        float                 = Field(10.0, gt=0)
    enable_markdown:         bool                  = False

    model_config = {"frozen": True, "extra": "forbid", **_CAMEL_CONFIG}

    @classmethod
    def from_settings(cls, settings: Any = None) -> "ExtractionOptions":
        """환경 설정(Settings)의 EXTRACT_* 값으로 기본 옵션을 만듭니다."""
        if settings is None:
            from core.config import get_settings
            settings = get_settings()

        proxy = (
            ProxyConfig(server=settings.EXTRACT_PROXY_SERVER)
            if settings.EXTRACT_PROXY_SERVER
            else None
        )
        return cls(
            timeout_ms            = settings.EXTRACT_TIMEOUT_MS,
            max_retries           = settings.EXTRACT_MAX_RETRIES,
            navigation_timeout_ms = settings.EXTRACT_NAVIGATION_TIMEOUT_MS,
            content_wait_ms       = settings.EXTRACT_CONTENT_WAIT_MS,
            requests_per_minute   = settings.EXTRACT_REQUESTS_PER_MINUTE,
            concurrency           = settings.EXTRACT_BATCH_CONCURRENCY,
            http_timeout_sec      = settings.HTTP_TIMEOUT,
            proxy                 = proxy,
        )

    def merged(
        self, overrides: Optional[Mapping[str, Any]] = None
    ) -> "ExtractionOptions":
        """
        부분 옵션(snake_case / camelCase 모두 허용)을 현재 값 위에 병합합니다.

        Raises:
            InvalidInputError: 알 수 없는 키 또는 범위를 벗어난 값
        """
        if not overrides:
            return self
        if isinstance(overrides, ExtractionOptions):
            return overrides

        aliases = {
            (info.alias or name): name
            for name, info in type(self).model_fields.items()
        }
        data = self.model_dump()
        for key, value in overrides.items():
            data[aliases.get(key, key)] = value
        try:
            return type(self).model_validate(data)
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ()))
            raise _invalid_input(f"잘못된 추출 옵션 [{field}]: {first['msg']}") from exc


class ExtractionRequest(BaseModel):
    """추출 요청. url 은 절대 http/https URL 이어야 합니다."""

    url:     str
    options: ExtractionOptions = Field(default_factory=ExtractionOptions)

    model_config = {"frozen": True}

    @field_validator("url")
    @classmethod
    def must_be_absolute_http(cls, v: str) -> str:
        v = v.strip()
        try:
            _HTTP_URL.validate_python(v)
        except ValidationError as exc:
            raise ValueError(f"절대 http/https URL 이 아닙니다: {v}") from exc
        return v

    @classmethod
    def create(
        cls,
        url: Any,
        options: Optional[ExtractionOptions] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "ExtractionRequest":
        """
        요청 생성 + 검증.

        Raises:
            InvalidInputError: URL 이 비어 있거나 절대 http/https URL 이 아님,
                               또는 옵션 값이 잘못됨
        """
        base = (options or ExtractionOptions()).merged(overrides)
        if not isinstance(url, str) or not url.strip():
            raise _invalid_input(f"URL 이 필요합니다: {url!r}")
        try:
            return cls(url=url, options=base)
        except ValidationError as exc:
            raise _invalid_input(f"잘못된 URL: {url}") from exc


# ─────────────────────────────────────────────────────────────
# 2. 추출 결과
# ─────────────────────────────────────────────────────────────

class ArticleStats(BaseModel):
    characters:                  int = 0
    characters_no_spaces:        int = 0
    words:                       int = 0
    sentences:                   int = 0
    paragraphs:                  int = 0
    reading_time_minutes:        int = 0
    avg_words_per_sentence:      int = 0
    avg_sentences_per_paragraph: int = 0

    model_config = _CAMEL_CONFIG


class ArticlePerformance(BaseModel):
    extraction_time_ms: int = Field(0, ge=0)
    method:             str = ""

    model_config = _CAMEL_CONFIG


class ExtractedArticle(BaseModel):
    """
    전략이 반환하는 정규화 기사.

    불변 조건:
      - title 은 비어 있지 않음 (없으면 TITLE_NOT_FOUND)
      - content 는 None 이 될 수 없음 (실패 시 "")
      - len(content) > 0 이 라우터의 유일한 성공 기준
    """

    title:        str                = TITLE_NOT_FOUND
    content:      str                = ""
    author:       str                = ""
    publish_date: str                = ""
    description:  str                = ""
    source_url:   str
    stats:        ArticleStats       = Field(default_factory=ArticleStats)
    metadata:     dict[str, Any]     = Field(default_factory=dict)
    performance:  ArticlePerformance = Field(default_factory=ArticlePerformance)

    model_config = _CAMEL_CONFIG

    @field_validator("content", "author", "publish_date", "description", mode="before")
    @classmethod
    def none_to_empty(cls, v: object) -> object:
        """None 을 빈 문자열로 변환."""
        return "" if v is None else v

    @field_validator("title", mode="before")
    @classmethod
    def title_fallback(cls, v: object) -> object:
        if v is None or (isinstance(v, str) and not v.strip()):
            return TITLE_NOT_FOUND
        return v

    def to_payload(self) -> dict[str, Any]:
        """도구 응답용 camelCase dict."""
        return self.model_dump(by_alias=True)


class UnifiedEnvelope(BaseModel):
    detected_site:            str
    extractor_used:           str
    total_extraction_time_ms: int
    requested_url:            str
    timestamp:                str
    fallback_reason:          Optional[str] = None

    model_config = _CAMEL_CONFIG


class UnifiedResult(ExtractedArticle):
    """ExtractedArticle + 라우터가 덧붙이는 unified 메타."""

    unified: UnifiedEnvelope


class BatchError(BaseModel):
    url:   str
    error: str

    model_config = _CAMEL_CONFIG


class BatchOutcome(BaseModel):
    results: list[UnifiedResult] = Field(default_factory=list)
    errors:  list[BatchError]    = Field(default_factory=list)

    model_config = _CAMEL_CONFIG

    @property
    def total(self) -> int:
        return len(self.results) + len(self.errors)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# ─────────────────────────────────────────────────────────────
# 3. 피드 항목 → 본문 서비스
# ─────────────────────────────────────────────────────────────

class FeedItem(BaseModel):
    """상위 피드 수집기가 넘겨주는 항목 {title, link, pubDate?}."""

    title:    str           = ""
    link:     str
    pub_date: Optional[str] = None

    model_config = _CAMEL_CONFIG


class NewsContentOutput(BaseModel):
    title:              str
    link:               str
    publish_date:       Optional[str] = None
    content:            str
    author:             Optional[str] = None
    description:        Optional[str] = None
    extraction_success: bool

    model_config = _CAMEL_CONFIG
