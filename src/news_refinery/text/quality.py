"""Heuristic 0-100 content-quality score for crawled articles.

The score starts at 40 and is adjusted by title shape, body length and
structure, sentence variety, trade vocabulary and spam phrases. A run's
``quality_threshold`` is compared against this number; 70 and above counts
as high quality.
"""

import re

BASE_SCORE = 40
HIGH_QUALITY_SCORE = 70

_TITLE_KEYWORDS = (
    "lingerie", "underwear", "bra", "fashion", "intimate", "apparel", "textile",
    "内衣", "时尚", "服装", "纺织", "面料",
)
_TITLE_SPAM = ("click here", "free", "urgent", "limited time", "!!!", "buy now")
_BUSINESS_KEYWORDS = (
    "market", "industry", "brand", "retail", "consumer", "trend", "sales", "growth",
    "export", "supply chain", "市场", "行业", "品牌", "零售", "消费", "趋势", "出口",
)
_CONTENT_SPAM = (
    "click here", "buy now", "limited time", "free shipping", "call now",
    "点击查看", "更多详情", "广告", "推广", "联系我们",
)
_TECHNICAL_TERMS = (
    "fabric", "cotton", "silk", "polyester", "nylon", "spandex", "lace", "design",
    "manufacturing", "sustainable", "面料", "棉", "丝绸", "设计", "制造", "可持续",
)

_SENTENCE_END = re.compile(r"[.!?。！？]")

# Bonus for the source's configured quality_score (0-1)
_SOURCE_BONUS = ((0.85, 10), (0.75, 7), (0.65, 5))


def _count(text: str, terms: tuple[str, ...]) -> int:
    return sum(1 for term in terms if term in text)


def _title_score(title: str) -> int:
    score = 0
    if 15 <= len(title) <= 120:
        score += 15
    if 25 <= len(title) <= 80:
        score += 5
    lowered = title.lower()
    score += min(10, 3 * _count(lowered, _TITLE_KEYWORDS))
    if any(spam in lowered for spam in _TITLE_SPAM):
        score -= 25
    return score


def _content_score(content: str) -> int:
    score = 0
    length = len(content)
    for floor in (300, 600, 1200):
        if length >= floor:
            score += 10
    if length < 150:
        score -= 20

    paragraphs = [p for p in content.split("\n") if p.strip()]
    if len(paragraphs) >= 3:
        score += 5
    if len(paragraphs) >= 5:
        score += 5

    lowered = content.lower()
    score += min(10, 2 * _count(lowered, _BUSINESS_KEYWORDS))

    sentences = [s.strip() for s in _SENTENCE_END.split(content) if len(s.strip()) > 10]
    if sentences:
        unique_ratio = len(set(sentences)) / len(sentences)
        score += round(unique_ratio * 10)
        if unique_ratio < 0.7:
            score -= 15

    score -= 8 * _count(lowered, _CONTENT_SPAM)
    return score


def assess_quality(title: str, content: str, source_quality: float | None = None) -> int:
    """Score an article from 0 to 100."""
    score = BASE_SCORE
    if title:
        score += _title_score(title)
    if content:
        score += _content_score(content)
    if source_quality is not None:
        for floor, bonus in _SOURCE_BONUS:
            if source_quality >= floor:
                score += bonus
                break
    score += min(10, 2 * _count(f"{title} {content}".lower(), _TECHNICAL_TERMS))
    return max(0, min(100, score))


def is_high_quality(score: int) -> bool:
    return score >= HIGH_QUALITY_SCORE
