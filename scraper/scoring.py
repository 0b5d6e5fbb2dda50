"""
scraper/scoring.py — DOM 후보 점수화 + 공통 텍스트 정제/통계

점수화는 살아있는 DOM 이 아니라 불변 스냅샷(ElementSnapshot)을 입력으로 받는
순수 함수입니다. 브라우저 안에서 후보 요소를 스냅샷으로 뽑아오고,
점수 계산·선택은 파이썬에서 수행합니다.

점수 규칙:
    제목 후보:  10 < 길이 < 200 → +10,  20 < 길이 < 100 → +5
    본문 후보:  길이 > 100 → +길이/100, 길이 > 500 → +10
    태그 가중치: article 15 · main 12 · section 8 · div 3 · p 5
                 (제목일 때만 h1 15 · h2 12 · h3 8)
    class / id 키워드: 좋은 키워드 +8, 나쁜 키워드 -10 (부분 문자열 일치)
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from scraper.models import ArticleStats

# ─────────────────────────────────────────────────────────────
# 스냅샷
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ElementSnapshot:
    """후보 요소의 불변 스냅샷 (태그·class·id·텍스트)."""

    tag:        str
    class_name: str = ""
    id:         str = ""
    text:       str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ElementSnapshot":
        """page.evaluate() 결과 dict → 스냅샷."""
        return cls(
            tag        = str(data.get("tag") or "").lower(),
            class_name = str(data.get("className") or ""),
            id         = str(data.get("id") or ""),
            text       = str(data.get("text") or "").strip(),
        )


# ─────────────────────────────────────────────────────────────
# 점수 테이블
# ─────────────────────────────────────────────────────────────

_CONTENT_TAG_SCORES: dict[str, int] = {
    "article": 15,
    "main":    12,
    "section": 8,
    "div":     3,
    "p":       5,
}

_TITLE_TAG_SCORES: dict[str, int] = {
    **_CONTENT_TAG_SCORES,
    "h1": 15,
    "h2": 12,
    "h3": 8,
}

GOOD_TITLE_KEYWORDS:   tuple[str, ...] = ("title", "headline", "header")
GOOD_CONTENT_KEYWORDS: tuple[str, ...] = (
    "article", "content", "main", "post", "story", "body", "text",
)
BAD_KEYWORDS: tuple[str, ...] = (
    "nav", "menu", "sidebar", "footer", "header", "ad",
    "comment", "social", "share", "related", "recommend",
)

_MIN_CONTENT_LENGTH = 100


def score_element(el: ElementSnapshot, is_title: bool = False) -> float:
    """후보 요소 하나의 점수."""
    score  = 0.0
    length = len(el.text)

    if is_title:
        if 10 < length < 200:
            score += 10
        if 20 < length < 100:
            score += 5
    else:
        if length > 100:
            score += length / 100
        if length > 500:
            score += 10

    tag_scores = _TITLE_TAG_SCORES if is_title else _CONTENT_TAG_SCORES
    score += tag_scores.get(el.tag, 0)

    class_name = el.class_name.lower()
    el_id      = el.id.lower()
    good = GOOD_TITLE_KEYWORDS if is_title else GOOD_CONTENT_KEYWORDS
    for keyword in good:
        if keyword in class_name or keyword in el_id:
            score += 8
    for keyword in BAD_KEYWORDS:
        if keyword in class_name or keyword in el_id:
            score -= 10
    return score


def pick_best(
    candidates: Iterable[ElementSnapshot],
    is_title: bool = False,
) -> Optional[ElementSnapshot]:
    """
    최고 점수 후보를 반환합니다. 동점이면 먼저 나온 후보가 이깁니다.
    본문 후보는 텍스트가 100자를 넘어야 자격이 있습니다.
    """
    best: Optional[ElementSnapshot] = None
    best_score = -math.inf
    for el in candidates:
        if not is_title and len(el.text) <= _MIN_CONTENT_LENGTH:
            continue
        score = score_element(el, is_title)
        if score > best_score:
            best, best_score = el, score
    return best


# ─────────────────────────────────────────────────────────────
# 텍스트 정제
# ─────────────────────────────────────────────────────────────

def collapse_whitespace(text: str) -> str:
    """연속 공백(줄바꿈 포함) → 단일 공백."""
    return re.sub(r"\s+", " ", text or "").strip()


def clean_text(text: str) -> str:
    """줄 단위 strip → 빈 줄 제거 → 한 줄로 결합."""
    if not text:
        return ""
    lines = (line.strip() for line in text.split("\n"))
    return collapse_whitespace(" ".join(line for line in lines if line))


def make_description(content: str, limit: int = 200) -> str:
    """본문 앞부분 요약 (limit 초과 시 '...')."""
    return content[:limit] + ("..." if len(content) > limit else "")


# ─────────────────────────────────────────────────────────────
# 통계
# ─────────────────────────────────────────────────────────────

def calculate_stats(text: str) -> ArticleStats:
    """본문 통계 (읽기 시간은 분당 200단어 기준)."""
    text       = text or ""
    words      = [w for w in text.split() if w]
    sentences  = [s for s in re.split(r"[.!?]+", text) if s.strip()]
    paragraphs = [p for p in re.split(r"\n\s*\n", text) if p.strip()]

    return ArticleStats(
        characters                  = len(text),
        characters_no_spaces        = len(re.sub(r"\s", "", text)),
        words                       = len(words),
        sentences                   = len(sentences),
        paragraphs                  = len(paragraphs),
        reading_time_minutes        = math.ceil(len(words) / 200),
        avg_words_per_sentence      = round(len(words) / max(len(sentences), 1)),
        avg_sentences_per_paragraph = round(len(sentences) / max(len(paragraphs), 1)),
    )
