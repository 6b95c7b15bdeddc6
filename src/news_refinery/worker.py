"""LanguageWorker: crawl every source of one language and refine the admissions.

One worker runs per language as its own asyncio task. It visits sources in
priority order, admits at most ``max_articles_per_source`` unique articles
per source and stops once the per-language budget is spent. A failing source
is logged on the progress slot and skipped; the language only fails when no
source produced a single article, when the dedup store is unreachable, or
when the worker itself crashes.

Admissions are provisional until the orchestrator stores the article: ids
of articles that fail refinement, and every id admitted by a language that
ends failed or cancelled, are released back to the DedupGate.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from news_refinery.config import settings
from news_refinery.dedup import DedupGate
from news_refinery.errors import RefinementError, RunFatalError, StorageUnavailable
from news_refinery.models import LanguageResult, RawArticle, RefinedArticle, Source
from news_refinery.progress import ProgressReporter
from news_refinery.refinement import RefinementStage
from news_refinery.text.language import script_matches
from news_refinery.text.quality import assess_quality
from news_refinery.utils.logging import BOLD, CYAN, DIM, GREEN, RED, RESET, YELLOW, get_logger

log = get_logger()


class Fetcher(Protocol):
    """Pluggable source reader (RSS, scraping, API). Raises on failure."""

    async def fetch(self, source: Source) -> list[RawArticle]: ...


class LanguageWorker:
    def __init__(
        self,
        language: str,
        sources: list[Source],
        fetcher: Fetcher,
        dedup: DedupGate,
        reporter: ProgressReporter,
        refinement: RefinementStage | None = None,
        budget: int = 5,
        max_articles_per_source: int = 10,
        quality_threshold: int = 0,
        target_languages: list[str] | None = None,
        min_content_chars: int | None = None,
        max_sources: int | None = None,
    ):
        self.language = language
        self.sources = sources
        self.fetcher = fetcher
        self.dedup = dedup
        self.reporter = reporter
        self.refinement = refinement
        self.budget = budget
        self.max_articles_per_source = max_articles_per_source
        self.quality_threshold = quality_threshold
        self.target_languages = target_languages or []
        self.min_content_chars = (
            settings.min_content_chars if min_content_chars is None else min_content_chars
        )
        self.max_sources = settings.max_sources_per_language if max_sources is None else max_sources
        self.skipped_duplicate = 0
        self.skipped_quality = 0
        self.refinement_failures = 0
        self._admitted: list[RawArticle] = []

    @property
    def tag(self) -> str:
        return f"[{self.language}]"

    async def run(self) -> LanguageResult:
        """Crawl, optionally refine, and return this language's terminal result.

        Cancellation marks the slot failed with the cancel reason (``timeout``
        when the orchestrator's deadline fires) and is then re-raised.
        """
        articles: list[RawArticle | RefinedArticle] = []
        try:
            self.reporter.start_crawling()
            admitted = await self._crawl()
            if self.refinement is not None and admitted:
                articles = await self._refine_all(admitted)
            else:
                articles = list(admitted)
            self.reporter.complete()
            log.info(
                f"{GREEN}▸{RESET} {self.tag} completed: "
                f"{self.reporter.current.articles_processed} admitted, "
                f"{self.reporter.current.articles_refined} refined "
                f"{DIM}({self.skipped_duplicate} duplicate, {self.skipped_quality} low quality){RESET}"
            )
        except asyncio.CancelledError as e:
            reason = e.args[0] if e.args and e.args[0] else "cancelled"
            self.reporter.fail(str(reason))
            log.warning(f"{YELLOW}–{RESET} {self.tag} stopped: {reason}")
            await self._release_admitted()
            raise
        except RunFatalError as e:
            articles = []
            self.reporter.fail(str(e))
            log.error(f"{RED}✗{RESET} {self.tag} failed: {e}")
            await self._release_admitted()
        except StorageUnavailable as e:
            articles = []
            self.reporter.fail(f"storage unavailable: {e}")
            log.error(f"{RED}✗{RESET} {self.tag} dedup store unavailable: {e}")
            await self._release_admitted()
        except Exception as e:
            articles = []
            self.reporter.fail(f"worker crashed: {e}")
            log.exception(f"{RED}✗{RESET} {self.tag} worker crashed")
            await self._release_admitted()

        return LanguageResult(
            progress=self.reporter.current,
            articles=articles,
            refinement_failures=self.refinement_failures,
        )

    def _ordered_sources(self) -> list[Source]:
        eligible = [s for s in self.sources if s.active and s.language == self.language]
        # sorted() is stable, so equal (priority, quality) keep the given order
        eligible.sort(key=lambda s: (-s.priority, -s.quality_score))
        return eligible[: self.max_sources]

    def _passes_quality(self, article: RawArticle, source: Source) -> bool:
        if not article.title.strip():
            return False
        if len(article.content) < self.min_content_chars:
            return False
        if not script_matches(article.title + " " + article.content, self.language):
            return False
        if self.quality_threshold:
            score = assess_quality(article.title, article.content, source.quality_score)
            return score >= self.quality_threshold
        return True

    async def _crawl(self) -> list[RawArticle]:
        sources = self._ordered_sources()
        log.info(f"{BOLD}CRAWL{RESET} {self.tag} {len(sources)} source(s), budget={self.budget}")
        if not sources:
            raise RunFatalError(f"no active sources for language '{self.language}'")

        admitted: list[RawArticle] = []
        for source in sources:
            if len(admitted) >= self.budget:
                break
            self.reporter.visiting(source)
            try:
                candidates = await self.fetcher.fetch(source)
            except Exception as e:
                reason = str(e) or type(e).__name__
                self.reporter.source_failed(source, reason)
                log.warning(f"  {RED}✗{RESET} {self.tag} {source.name}: {reason}")
                continue

            self.reporter.found(len(candidates))
            per_source = 0
            for candidate in candidates:
                if len(admitted) >= self.budget or per_source >= self.max_articles_per_source:
                    break
                if not self._passes_quality(candidate, source):
                    self.skipped_quality += 1
                    continue
                if not await self.dedup.accept(candidate.origin_id, candidate.title, self.language):
                    self.skipped_duplicate += 1
                    continue
                admitted.append(candidate)
                self._admitted.append(candidate)
                per_source += 1
                self.reporter.admitted(candidate.title)
                log.info(f"  {GREEN}✓{RESET} {self.tag} [{source.id}] {candidate.title[:50]}")

        if self.reporter.current.articles_found == 0:
            raise RunFatalError(f"zero articles found across {len(sources)} source(s)")
        return admitted

    async def _refine_all(self, admitted: list[RawArticle]) -> list[RefinedArticle]:
        self.reporter.start_polishing()
        refined: list[RefinedArticle] = []
        for i, article in enumerate(admitted):
            log.info(f"  {CYAN}✎{RESET} {self.tag} [{i + 1}/{len(admitted)}] {article.title[:50]}")
            try:
                result = await self.refinement.refine(
                    article,
                    self.target_languages,
                    on_stage=lambda stage, title=article.title: self.reporter.refine_stage(title, stage),
                    metadata={"run_id": self.reporter.run_id, "language": self.language},
                )
            except RefinementError as e:
                self.refinement_failures += 1
                self.reporter.article_failed(article.title, str(e))
                log.warning(f"  {RED}✗{RESET} {self.tag} {article.title[:50]}... ({e})")
                await self._release(article)
                continue
            refined.append(result)
            self.reporter.refined()
        return refined

    async def _release(self, article: RawArticle) -> None:
        await self.dedup.release(article.origin_id)
        if article in self._admitted:
            self._admitted.remove(article)

    async def _release_admitted(self) -> None:
        """Hand every id admitted by this run back to the gate."""
        released = 0
        for article in self._admitted:
            try:
                await self.dedup.release(article.origin_id)
                released += 1
            except StorageUnavailable as e:
                log.error(f"  {RED}✗{RESET} {self.tag} could not release {article.origin_id}: {e}")
        self._admitted = []
        if released:
            log.info(f"  {DIM}{self.tag} released {released} admission(s){RESET}")
