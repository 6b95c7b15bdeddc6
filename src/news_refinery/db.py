"""Async PostgreSQL repositories using asyncpg.

Direct SQL, no ORM. Records are stored as JSONB next to the few columns the
queries filter on. Every backend error is translated to StorageUnavailable
at this boundary so callers never see driver exceptions.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path

import asyncpg

from news_refinery.config import settings
from news_refinery.errors import NotFoundError, StorageUnavailable
from news_refinery.models import BatchJob, RawArticle, RefinedArticle, ScheduleConfig

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"

_pool: asyncpg.Pool | None = None


async def get_pool(database_url: str | None = None) -> asyncpg.Pool:
    global _pool
    if _pool is None:
        url = database_url or settings.database_url
        with _unavailable("connect"):
            _pool = await asyncpg.create_pool(url, min_size=2, max_size=10)
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    with _unavailable("init schema"):
        await pool.execute(_SCHEMA_PATH.read_text())


@contextmanager
def _unavailable(what: str):
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        raise StorageUnavailable(f"{what}: {e}") from e


def _load_article(data: str, refined: bool) -> RawArticle | RefinedArticle:
    model = RefinedArticle if refined else RawArticle
    return model.model_validate_json(data)


class PostgresSeenStore:
    """Dedup ledger. INSERT ... ON CONFLICT DO NOTHING is the compare-and-set."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def add_if_absent(self, origin_id: str) -> bool:
        with _unavailable("seen store"):
            row = await self.pool.fetchrow(
                """
                INSERT INTO seen_origins (origin_id) VALUES ($1)
                ON CONFLICT (origin_id) DO NOTHING
                RETURNING origin_id
                """,
                origin_id,
            )
        return row is not None

    async def contains(self, origin_id: str) -> bool:
        with _unavailable("seen store"):
            return bool(await self.pool.fetchval(
                "SELECT EXISTS (SELECT 1 FROM seen_origins WHERE origin_id = $1)", origin_id,
            ))

    async def discard(self, origin_id: str) -> None:
        with _unavailable("seen store"):
            await self.pool.execute("DELETE FROM seen_origins WHERE origin_id = $1", origin_id)


class PostgresArticleStore:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def exists(self, origin_id: str) -> bool:
        with _unavailable("article store"):
            return bool(await self.pool.fetchval(
                "SELECT EXISTS (SELECT 1 FROM articles WHERE origin_id = $1)", origin_id,
            ))

    async def get(self, origin_id: str) -> RawArticle | RefinedArticle:
        with _unavailable("article store"):
            row = await self.pool.fetchrow(
                "SELECT data::text AS data, refined FROM articles WHERE origin_id = $1", origin_id,
            )
        if row is None:
            raise NotFoundError("article", origin_id)
        return _load_article(row["data"], row["refined"])

    async def save(self, article: RawArticle | RefinedArticle) -> None:
        """Upsert: a re-refined article replaces the stored version."""
        with _unavailable("article store"):
            await self.pool.execute(
                """
                INSERT INTO articles (origin_id, source_id, language, title, refined, data)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                ON CONFLICT (origin_id) DO UPDATE SET
                    title = EXCLUDED.title,
                    language = EXCLUDED.language,
                    refined = EXCLUDED.refined,
                    data = EXCLUDED.data,
                    updated_at = now()
                """,
                article.origin_id,
                article.source_id,
                article.language,
                article.title,
                isinstance(article, RefinedArticle),
                article.model_dump_json(),
            )

    async def mark_published(self, origin_id: str) -> bool:
        with _unavailable("article store"):
            result = await self.pool.execute(
                "UPDATE articles SET published_at = now(), updated_at = now() WHERE origin_id = $1",
                origin_id,
            )
        return result.endswith(" 1")

    async def recent_titles(self, limit: int) -> list[tuple[str, str, str]]:
        with _unavailable("article store"):
            rows = await self.pool.fetch(
                "SELECT origin_id, title, language FROM articles ORDER BY created_at DESC LIMIT $1",
                limit,
            )
        return [(r["origin_id"], r["title"], r["language"]) for r in rows]


class PostgresScheduleRepository:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get(self, schedule_id: str) -> ScheduleConfig:
        with _unavailable("schedules"):
            data = await self.pool.fetchval("SELECT data::text FROM schedules WHERE id = $1", schedule_id)
        if data is None:
            raise NotFoundError("schedule", schedule_id)
        return ScheduleConfig.model_validate_json(data)

    async def list(self) -> list[ScheduleConfig]:
        with _unavailable("schedules"):
            rows = await self.pool.fetch("SELECT data::text AS data FROM schedules ORDER BY name")
        return [ScheduleConfig.model_validate_json(r["data"]) for r in rows]

    async def save(self, schedule: ScheduleConfig) -> ScheduleConfig:
        with _unavailable("schedules"):
            await self.pool.execute(
                """
                INSERT INTO schedules (id, name, active, next_run_at, data, updated_at)
                VALUES ($1, $2, $3, $4, $5::jsonb, now())
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    active = EXCLUDED.active,
                    next_run_at = EXCLUDED.next_run_at,
                    data = EXCLUDED.data,
                    updated_at = now()
                """,
                schedule.id,
                schedule.name,
                schedule.active,
                schedule.next_run_at,
                schedule.model_dump_json(),
            )
        return schedule

    async def delete(self, schedule_id: str) -> None:
        with _unavailable("schedules"):
            result = await self.pool.execute("DELETE FROM schedules WHERE id = $1", schedule_id)
        if result == "DELETE 0":
            raise NotFoundError("schedule", schedule_id)


class PostgresBatchJobRepository:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get(self, job_id: str) -> BatchJob:
        with _unavailable("batch jobs"):
            data = await self.pool.fetchval("SELECT data::text FROM batch_jobs WHERE id = $1", job_id)
        if data is None:
            raise NotFoundError("batch job", job_id)
        return BatchJob.model_validate_json(data)

    async def list(self) -> list[BatchJob]:
        with _unavailable("batch jobs"):
            rows = await self.pool.fetch(
                "SELECT data::text AS data FROM batch_jobs ORDER BY started_at DESC"
            )
        return [BatchJob.model_validate_json(r["data"]) for r in rows]

    async def save(self, job: BatchJob) -> BatchJob:
        with _unavailable("batch jobs"):
            await self.pool.execute(
                """
                INSERT INTO batch_jobs (id, operation, status, started_at, data)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                ON CONFLICT (id) DO UPDATE SET
                    status = EXCLUDED.status,
                    data = EXCLUDED.data
                """,
                job.id,
                job.operation,
                job.status,
                job.started_at,
                job.model_dump_json(),
            )
        return job

    async def delete(self, job_id: str) -> None:
        with _unavailable("batch jobs"):
            result = await self.pool.execute("DELETE FROM batch_jobs WHERE id = $1", job_id)
        if result == "DELETE 0":
            raise NotFoundError("batch job", job_id)
