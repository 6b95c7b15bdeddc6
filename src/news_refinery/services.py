"""Process-wide wiring of the pipeline components.

``build_services()`` is called once at process start (API lifespan, CLI
command). With ``database_url`` set, schedules, batch jobs, the dedup ledger
and articles live in PostgreSQL; otherwise everything is in memory.
Run progress is always in memory. The title index is seeded from stored
articles; long-running processes also recover batch jobs left behind by a
previous one.
"""

from __future__ import annotations

from dataclasses import dataclass

from news_refinery.batch import BatchJobManager
from news_refinery.config import settings
from news_refinery.dedup import DedupGate
from news_refinery.models import RefinedArticle
from news_refinery.orchestrator import CrawlOrchestrator
from news_refinery.progress import ProgressTracker
from news_refinery.refinement import RefinementStage, TextRefiner
from news_refinery.registry import SourceRegistry, build_registry
from news_refinery.repository import (
    ArticleStore,
    BatchJobRepository,
    InMemoryArticleStore,
    InMemoryBatchJobRepository,
    InMemoryScheduleRepository,
    InMemorySeenStore,
    ScheduleRepository,
    SeenStore,
)
from news_refinery.scheduler import ScheduleManager
from news_refinery.seo import SEOCatalogue
from news_refinery.utils.logging import get_logger
from news_refinery.worker import Fetcher

log = get_logger()


@dataclass
class Services:
    registry: SourceRegistry
    tracker: ProgressTracker
    dedup: DedupGate
    articles: ArticleStore
    refinement: RefinementStage
    orchestrator: CrawlOrchestrator
    schedules: ScheduleManager
    batches: BatchJobManager


def batch_handlers(articles: ArticleStore, refinement: RefinementStage) -> dict:
    """Operation name → per-item handler for BatchJobManager."""

    async def refine(origin_id: str) -> bool:
        article = await articles.get(origin_id)
        targets = article.target_languages if isinstance(article, RefinedArticle) else None
        refined = await refinement.refine(article, targets)
        await articles.save(refined)
        return True

    async def publish(origin_id: str) -> bool:
        return await articles.mark_published(origin_id)

    return {"refine": refine, "publish": publish}


def assemble(
    registry: SourceRegistry,
    fetcher: Fetcher,
    refiner: TextRefiner,
    seen: SeenStore,
    articles: ArticleStore,
    schedule_repo: ScheduleRepository,
    batch_repo: BatchJobRepository,
    seo: SEOCatalogue | None = None,
) -> Services:
    tracker = ProgressTracker()
    dedup = DedupGate(seen)
    refinement = RefinementStage(refiner, seo or SEOCatalogue())
    orchestrator = CrawlOrchestrator(
        registry=registry,
        fetcher=fetcher,
        dedup=dedup,
        tracker=tracker,
        refinement=refinement,
        article_store=articles,
    )
    return Services(
        registry=registry,
        tracker=tracker,
        dedup=dedup,
        articles=articles,
        refinement=refinement,
        orchestrator=orchestrator,
        schedules=ScheduleManager(schedule_repo, orchestrator=orchestrator),
        batches=BatchJobManager(batch_repo, batch_handlers(articles, refinement)),
    )


async def build_services(recover_batches: bool = False) -> Services:
    from news_refinery.agents.refiner import LLMTextRefiner
    from news_refinery.scraper.rss import RSSFetcher

    registry = build_registry(settings.sources_file)
    if settings.database_url:
        from news_refinery.db import (
            PostgresArticleStore,
            PostgresBatchJobRepository,
            PostgresScheduleRepository,
            PostgresSeenStore,
            get_pool,
            init_schema,
        )

        pool = await get_pool()
        await init_schema(pool)
        seen, articles = PostgresSeenStore(pool), PostgresArticleStore(pool)
        schedule_repo, batch_repo = PostgresScheduleRepository(pool), PostgresBatchJobRepository(pool)
    else:
        log.warning("DATABASE_URL not set: schedules and batch jobs are kept in memory only")
        seen, articles = InMemorySeenStore(), InMemoryArticleStore()
        schedule_repo, batch_repo = InMemoryScheduleRepository(), InMemoryBatchJobRepository()

    services = assemble(
        registry=registry,
        fetcher=RSSFetcher(),
        refiner=LLMTextRefiner(),
        seen=seen,
        articles=articles,
        schedule_repo=schedule_repo,
        batch_repo=batch_repo,
    )
    services.dedup.load_titles(await articles.recent_titles(settings.max_recent_titles))
    if recover_batches:
        await services.batches.recover()
    return services


async def shutdown_services() -> None:
    if settings.database_url:
        from news_refinery.db import close_pool

        await close_pool()
