"""Storage contracts used by the pipeline, with in-memory implementations.

The in-memory versions back tests and single-process runs without a
database. ``news_refinery.db`` provides the PostgreSQL equivalents for
schedules and batch jobs, which must survive restarts.
"""

from __future__ import annotations

from typing import Protocol

from news_refinery.errors import NotFoundError
from news_refinery.models import BatchJob, RawArticle, RefinedArticle, ScheduleConfig


class SeenStore(Protocol):
    """Ledger of admitted origin ids. ``add_if_absent`` must be an atomic compare-and-set."""

    async def add_if_absent(self, origin_id: str) -> bool:
        """Record ``origin_id``; True only for the first caller."""
        ...

    async def contains(self, origin_id: str) -> bool: ...

    async def discard(self, origin_id: str) -> None:
        """Forget an admission whose article was never stored."""
        ...


class ArticleStore(Protocol):
    async def exists(self, origin_id: str) -> bool: ...

    async def get(self, origin_id: str) -> RawArticle | RefinedArticle: ...

    async def save(self, article: RawArticle | RefinedArticle) -> None: ...

    async def mark_published(self, origin_id: str) -> bool: ...

    async def recent_titles(self, limit: int) -> list[tuple[str, str, str]]:
        """Newest stored articles as (origin_id, title, language)."""
        ...


class ScheduleRepository(Protocol):
    async def get(self, schedule_id: str) -> ScheduleConfig: ...

    async def list(self) -> list[ScheduleConfig]: ...

    async def save(self, schedule: ScheduleConfig) -> ScheduleConfig: ...

    async def delete(self, schedule_id: str) -> None: ...


class BatchJobRepository(Protocol):
    async def get(self, job_id: str) -> BatchJob: ...

    async def list(self) -> list[BatchJob]: ...

    async def save(self, job: BatchJob) -> BatchJob: ...

    async def delete(self, job_id: str) -> None: ...


class InMemorySeenStore:
    def __init__(self, seen: set[str] | None = None):
        self._seen: set[str] = set(seen or ())

    async def add_if_absent(self, origin_id: str) -> bool:
        # No await between the check and the add: atomic on the event loop
        if origin_id in self._seen:
            return False
        self._seen.add(origin_id)
        return True

    async def contains(self, origin_id: str) -> bool:
        return origin_id in self._seen

    async def discard(self, origin_id: str) -> None:
        self._seen.discard(origin_id)


class InMemoryArticleStore:
    def __init__(self):
        self.articles: dict[str, RawArticle | RefinedArticle] = {}
        self.published: set[str] = set()

    async def exists(self, origin_id: str) -> bool:
        return origin_id in self.articles

    async def get(self, origin_id: str) -> RawArticle | RefinedArticle:
        try:
            return self.articles[origin_id]
        except KeyError:
            raise NotFoundError("article", origin_id) from None

    async def save(self, article: RawArticle | RefinedArticle) -> None:
        self.articles[article.origin_id] = article

    async def mark_published(self, origin_id: str) -> bool:
        if origin_id not in self.articles:
            return False
        self.published.add(origin_id)
        return True

    async def recent_titles(self, limit: int) -> list[tuple[str, str, str]]:
        newest = list(self.articles.values())[-limit:] if limit > 0 else []
        return [(a.origin_id, a.title, a.language) for a in reversed(newest)]


class InMemoryScheduleRepository:
    def __init__(self):
        self._items: dict[str, ScheduleConfig] = {}

    async def get(self, schedule_id: str) -> ScheduleConfig:
        try:
            return self._items[schedule_id]
        except KeyError:
            raise NotFoundError("schedule", schedule_id) from None

    async def list(self) -> list[ScheduleConfig]:
        return list(self._items.values())

    async def save(self, schedule: ScheduleConfig) -> ScheduleConfig:
        self._items[schedule.id] = schedule
        return schedule

    async def delete(self, schedule_id: str) -> None:
        if self._items.pop(schedule_id, None) is None:
            raise NotFoundError("schedule", schedule_id)


class InMemoryBatchJobRepository:
    def __init__(self):
        self._items: dict[str, BatchJob] = {}

    async def get(self, job_id: str) -> BatchJob:
        try:
            return self._items[job_id]
        except KeyError:
            raise NotFoundError("batch job", job_id) from None

    async def list(self) -> list[BatchJob]:
        return list(self._items.values())

    async def save(self, job: BatchJob) -> BatchJob:
        self._items[job.id] = job
        return job

    async def delete(self, job_id: str) -> None:
        if self._items.pop(job_id, None) is None:
            raise NotFoundError("batch job", job_id)
