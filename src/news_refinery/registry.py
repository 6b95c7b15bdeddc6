"""Configured content sources, grouped by language.

Sources are loaded from ``sources.yaml`` (one mapping per source id) and can
be upserted or soft-deactivated at runtime. Nothing is ever deleted, so a
source referenced by an in-flight run stays resolvable.
"""

from __future__ import annotations

from pathlib import Path

import yaml

from news_refinery.errors import NotFoundError
from news_refinery.models import Source


class SourceRegistry:
    def __init__(self, sources: list[Source] | None = None):
        # dict preserves insertion order, which is the final tie-break
        self._sources: dict[str, Source] = {}
        for source in sources or []:
            self.upsert(source)

    def upsert(self, source: Source) -> Source:
        self._sources[source.id] = source
        return source

    def get(self, source_id: str) -> Source:
        try:
            return self._sources[source_id]
        except KeyError:
            raise NotFoundError("source", source_id) from None

    def deactivate(self, source_id: str) -> Source:
        source = self.get(source_id)
        updated = source.model_copy(update={"active": False})
        self._sources[source_id] = updated
        return updated

    def all(self) -> list[Source]:
        return list(self._sources.values())

    def languages(self) -> list[str]:
        return sorted({s.language for s in self._sources.values() if s.active})

    def active_sources_for(self, language: str) -> list[Source]:
        """Active sources for ``language``, priority desc then quality score desc."""
        sources = [s for s in self._sources.values() if s.active and s.language == language]
        return sorted(sources, key=lambda s: (-s.priority, -s.quality_score))


def load_sources(path: str | Path) -> list[Source]:
    """Read the YAML source catalogue.

    Format::

        xinhua-zh:
          name: Xinhua
          url: https://www.news.cn
          rss_url: https://www.news.cn/rss.xml
          language: zh
          priority: 10
          quality_score: 0.9
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return [Source(id=source_id, **fields) for source_id, fields in data.items()]


def build_registry(path: str | Path) -> SourceRegistry:
    return SourceRegistry(load_sources(path))
