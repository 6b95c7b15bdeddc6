"""SEO keyword catalogue and deterministic SEO post-processing.

The keyword catalogue lives in ``seo_keywords.yaml`` and is keyed by
(language, search engine). Chinese content targets Baidu, everything else
Google. The LLM writes the SEO title/description; these helpers then make
sure the primary keyword is present and the lengths fit search snippets.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from news_refinery.config import settings
from news_refinery.text.normalize import truncate

MAX_DESCRIPTION_CHARS = 160
_DESCRIPTION_PAD_LIMIT = 140

# Sentence appended to content when the primary keyword is missing
_INJECTION_TEMPLATES = {
    "zh": "关键词相关：{keyword}在当前市场环境下具有重要意义。",
    "ja": "関連キーワード：{keyword}は現在の市場環境において重要な意味を持っています。",
    "es": "Palabra clave relacionada: {keyword} es clave en el mercado actual.",
    "en": "Related topic: {keyword} remains highly relevant in the current market.",
}
_DESCRIPTION_TEMPLATES = {
    "zh": "{description}，专业{keyword}服务。",
    "en": "{description} Professional {keyword} services.",
}


class SEOKeyword(BaseModel):
    keyword: str
    language: str
    search_engine: str
    category: str = ""
    search_volume: int = 0
    competition: float = Field(default=0.0, ge=0.0, le=1.0)
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)


def search_engine_for(language: str) -> str:
    return "baidu" if language == "zh" else "google"


@lru_cache(maxsize=4)
def load_keywords(path: str | None = None) -> tuple[SEOKeyword, ...]:
    with open(Path(path or settings.seo_keywords_file), encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    keywords: list[SEOKeyword] = []
    for engine, languages in data.items():
        for language, entries in (languages or {}).items():
            for entry in entries or []:
                keywords.append(SEOKeyword(search_engine=engine, language=language, **entry))
    return tuple(keywords)


class SEOCatalogue:
    def __init__(self, keywords: list[SEOKeyword] | tuple[SEOKeyword, ...] | None = None):
        self._keywords = list(keywords if keywords is not None else load_keywords())

    def keywords(self, language: str, search_engine: str | None = None) -> list[SEOKeyword]:
        engine = search_engine or search_engine_for(language)
        return [k for k in self._keywords if k.language == language and k.search_engine == engine]

    def high_value(self, language: str, search_engine: str | None = None) -> list[SEOKeyword]:
        """Relevance ≥ 0.8 and volume ≥ 1000, most relevant first."""
        found = [
            k for k in self.keywords(language, search_engine)
            if k.relevance_score >= 0.8 and k.search_volume >= 1000
        ]
        return sorted(found, key=lambda k: k.relevance_score, reverse=True)

    def primary_keyword(self, language: str) -> str | None:
        ranked = self.high_value(language)
        return ranked[0].keyword if ranked else None

    def seo_title(self, title: str, language: str) -> str:
        keyword = self.primary_keyword(language)
        if not keyword or keyword.lower() in title.lower():
            return title
        if search_engine_for(language) == "baidu":
            return f"{keyword} - {title}"
        return f"{title} | {keyword}"

    def seo_description(self, description: str, language: str) -> str:
        description = description.strip()
        missing = [
            k.keyword for k in self.high_value(language)[:5]
            if k.keyword.lower() not in description.lower()
        ]
        if missing and len(description) < _DESCRIPTION_PAD_LIMIT:
            template = _DESCRIPTION_TEMPLATES["zh" if language == "zh" else "en"]
            description = template.format(description=description, keyword=missing[0])
        return truncate(description, MAX_DESCRIPTION_CHARS)

    def inject_keyword(self, content: str, language: str) -> tuple[str, bool]:
        """Append a keyword sentence unless the primary keyword is already present."""
        keyword = self.primary_keyword(language)
        if not keyword or keyword.lower() in content.lower():
            return content, False
        template = _INJECTION_TEMPLATES.get(language, _INJECTION_TEMPLATES["en"])
        return f"{content}\n\n{template.format(keyword=keyword)}", True
