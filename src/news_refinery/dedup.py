"""DedupGate: idempotent admission of articles by origin id and title."""

from __future__ import annotations

import asyncio
from collections import OrderedDict

from news_refinery.config import settings
from news_refinery.errors import StorageUnavailable
from news_refinery.repository import SeenStore
from news_refinery.text.dedup import jaccard, title_tokens


class TitleIndex:
    """Recently admitted titles per language, for near-duplicate checks."""

    def __init__(self, threshold: float | None = None, max_titles: int | None = None):
        self.threshold = settings.title_similarity_threshold if threshold is None else threshold
        self.max_titles = settings.max_recent_titles if max_titles is None else max_titles
        self._titles: dict[str, OrderedDict[str, frozenset[str]]] = {}

    def find_similar(self, title: str, language: str) -> str | None:
        """Origin id of a known title whose similarity exceeds the threshold."""
        tokens = title_tokens(title)
        for origin_id, known in self._titles.get(language, {}).items():
            if jaccard(tokens, known) > self.threshold:
                return origin_id
        return None

    def add(self, origin_id: str, title: str, language: str) -> None:
        titles = self._titles.setdefault(language, OrderedDict())
        titles[origin_id] = title_tokens(title)
        titles.move_to_end(origin_id)
        while len(titles) > self.max_titles:
            titles.popitem(last=False)

    def discard(self, origin_id: str) -> None:
        for titles in self._titles.values():
            titles.pop(origin_id, None)

    def __len__(self) -> int:
        return sum(len(t) for t in self._titles.values())


class DedupGate:
    """Admit each origin id at most once for the lifetime of the backing store.

    All workers share one gate. Exclusivity per origin id comes from the
    store's atomic ``add_if_absent``; the gate adds no lock of its own for
    that. Title checks read and write the in-process ``TitleIndex``, so they
    hold a per-language lock. Backend failures raise ``StorageUnavailable``;
    the gate never falls back to admitting blindly.
    """

    def __init__(self, store: SeenStore, titles: TitleIndex | None = None):
        self._store = store
        self.titles = titles or TitleIndex()
        self._title_locks: dict[str, asyncio.Lock] = {}

    async def accept(self, origin_id: str, title: str | None = None, language: str | None = None) -> bool:
        """Admit ``origin_id`` unless it was seen or, given a title, a near-identical one was."""
        if title is None or language is None:
            return await self._add(origin_id)
        lock = self._title_locks.setdefault(language, asyncio.Lock())
        async with lock:
            if self.titles.find_similar(title, language) is not None:
                return False
            if not await self._add(origin_id):
                return False
            self.titles.add(origin_id, title, language)
            return True

    async def release(self, origin_id: str) -> None:
        """Undo an admission whose article was never stored."""
        self.titles.discard(origin_id)
        try:
            await self._store.discard(origin_id)
        except StorageUnavailable:
            raise
        except Exception as e:
            raise StorageUnavailable(f"dedup store unavailable: {e}") from e

    def load_titles(self, rows: list[tuple[str, str, str]]) -> None:
        """Seed the title index from stored ``(origin_id, title, language)`` rows, newest first."""
        for origin_id, title, language in reversed(rows):
            self.titles.add(origin_id, title, language)

    async def seen(self, origin_id: str) -> bool:
        try:
            return await self._store.contains(origin_id)
        except StorageUnavailable:
            raise
        except Exception as e:
            raise StorageUnavailable(f"dedup store unavailable: {e}") from e

    async def _add(self, origin_id: str) -> bool:
        try:
            return await self._store.add_if_absent(origin_id)
        except StorageUnavailable:
            raise
        except Exception as e:
            raise StorageUnavailable(f"dedup store unavailable: {e}") from e
