"""CrawlOrchestrator: fan-out one LanguageWorker per language, fan-in the results.

``trigger()`` is the asynchronous entry point used by the API and the
scheduler: it registers the run's progress slots, starts the crawl in the
background and returns the run id at once. Failures never escape the
trigger; they surface only through polled or pushed progress.

A run-level timeout bounds the whole fan-in. Workers still running at the
deadline are marked ``failed(timeout)`` and cancelled cooperatively; they
contribute no articles, while languages that finished in time are
returned (and persisted) normally.

Finished results are kept for the runs the ProgressTracker still remembers,
capped at ``max_results``; older results are dropped with their progress.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict

from news_refinery.config import settings
from news_refinery.dedup import DedupGate
from news_refinery.errors import InvalidState, NotFoundError
from news_refinery.models import (
    LanguageResult,
    RunProgress,
    RunRequest,
    RunResult,
    Source,
    new_id,
    utcnow,
)
from news_refinery.progress import ProgressTracker
from news_refinery.refinement import RefinementStage
from news_refinery.registry import SourceRegistry
from news_refinery.repository import ArticleStore
from news_refinery.utils.logging import BOLD, DIM, GREEN, RED, RESET, YELLOW, get_logger
from news_refinery.worker import Fetcher, LanguageWorker

log = get_logger()

TIMEOUT_REASON = "timeout"


class CrawlOrchestrator:
    def __init__(
        self,
        registry: SourceRegistry,
        fetcher: Fetcher,
        dedup: DedupGate,
        tracker: ProgressTracker,
        refinement: RefinementStage | None = None,
        article_store: ArticleStore | None = None,
        run_timeout_s: float | None = None,
        max_results: int | None = None,
    ):
        self.registry = registry
        self.fetcher = fetcher
        self.dedup = dedup
        self.tracker = tracker
        self.refinement = refinement
        self.article_store = article_store
        self.run_timeout_s = settings.run_timeout_s if run_timeout_s is None else run_timeout_s
        self.max_results = settings.max_results if max_results is None else max_results
        self._results: OrderedDict[str, RunResult] = OrderedDict()
        self._tasks: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def trigger(self, request: RunRequest) -> str:
        """Start a run in the background and return its id immediately."""
        run_id = self._start(request)
        task = asyncio.create_task(self._run_and_persist(run_id, request), name=f"crawl-{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(lambda _t, rid=run_id: self._tasks.pop(rid, None))
        return run_id

    async def run_crawl(self, request: RunRequest) -> RunResult:
        """Run to completion in the caller's task and return the full result."""
        run_id = self._start(request)
        return await self._execute(run_id, request)

    def progress(self, run_id: str) -> list[RunProgress]:
        return self.tracker.snapshot(run_id)

    def result(self, run_id: str) -> RunResult | None:
        """Final result once every language is terminal, else None."""
        if run_id in self._results:
            return self._results[run_id]
        if not self.tracker.has_run(run_id):
            raise NotFoundError("run", run_id)
        return None

    async def wait(self, run_id: str) -> RunResult:
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        result = self.result(run_id)
        if result is None:
            raise InvalidState(f"run {run_id} is not running in this process")
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start(self, request: RunRequest) -> str:
        busy = self.tracker.active_languages() & set(request.languages)
        if busy:
            raise InvalidState(f"crawl already in progress for: {', '.join(sorted(busy))}")
        run_id = new_id("run")
        self.tracker.create_run(run_id, request.languages)
        return run_id

    def _sources_for(self, language: str, request: RunRequest) -> list[Source]:
        sources = self.registry.active_sources_for(language)
        if request.source_ids:
            wanted = set(request.source_ids)
            sources = [s for s in sources if s.id in wanted]
        return sources

    async def _run_and_persist(self, run_id: str, request: RunRequest) -> None:
        try:
            result = await self._execute(run_id, request)
        except Exception:
            log.exception(f"{RED}✗{RESET} run {run_id} aborted")
            for language in request.languages:
                self.tracker.fail_if_running(run_id, language, "run aborted")
            return
        await self.persist(result)

    async def _execute(self, run_id: str, request: RunRequest) -> RunResult:
        started_at = utcnow()
        log.info(
            f"{BOLD}RUN{RESET} {run_id} — {', '.join(request.languages)} "
            f"{DIM}(budget={request.budget_per_language}, refine={request.refine}){RESET}"
        )

        tasks: dict[str, asyncio.Task[LanguageResult]] = {}
        for language in request.languages:
            worker = LanguageWorker(
                language=language,
                sources=self._sources_for(language, request),
                fetcher=self.fetcher,
                dedup=self.dedup,
                reporter=self.tracker.reporter(run_id, language),
                refinement=self.refinement if request.refine else None,
                budget=request.budget_per_language,
                max_articles_per_source=request.max_articles_per_source,
                quality_threshold=request.quality_threshold,
                target_languages=request.target_languages,
            )
            tasks[language] = asyncio.create_task(worker.run(), name=f"{run_id}-{language}")

        try:
            done, pending = await asyncio.wait(tasks.values(), timeout=self.run_timeout_s)
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel("cancelled")
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise

        if pending:
            log.warning(
                f"{YELLOW}–{RESET} run {run_id} hit its {self.run_timeout_s:.0f}s deadline, "
                f"cancelling {len(pending)} worker(s)"
            )
            for language, task in tasks.items():
                if task in pending:
                    self.tracker.fail_if_running(run_id, language, TIMEOUT_REASON)
                    task.cancel(TIMEOUT_REASON)
            await asyncio.gather(*pending, return_exceptions=True)

        result = RunResult(run_id=run_id, started_at=started_at)
        for language, task in tasks.items():
            outcome: LanguageResult | None = None
            if task.done() and not task.cancelled() and task.exception() is None:
                outcome = task.result()
            if outcome is None:
                reason = TIMEOUT_REASON if task in pending else "worker crashed"
                progress = self.tracker.fail_if_running(run_id, language, reason)
                outcome = LanguageResult(progress=progress)
            result.languages[language] = outcome
        result.finished_at = utcnow()
        self._keep_result(result)

        completed = result.completed_languages()
        log.info(
            f"{GREEN}▸{RESET} run {run_id} finished: "
            f"{len(completed)}/{len(request.languages)} language(s) completed"
        )
        return result

    def _keep_result(self, result: RunResult) -> None:
        self._results[result.run_id] = result
        for run_id in [r for r in self._results if not self.tracker.has_run(r)]:
            del self._results[run_id]
        while len(self._results) > self.max_results:
            self._results.popitem(last=False)

    async def persist(self, result: RunResult) -> None:
        """Save articles of completed languages; failed languages are excluded."""
        if self.article_store is None:
            return
        saved = 0
        for language in result.completed_languages():
            for article in result.languages[language].articles:
                try:
                    await self.article_store.save(article)
                    saved += 1
                except Exception as e:
                    log.error(f"  {RED}✗{RESET} [{language}] failed to save {article.origin_id}: {e}")
                    await self._release(article.origin_id)
        log.info(f"  {DIM}persisted {saved} article(s) for run {result.run_id}{RESET}")

    async def _release(self, origin_id: str) -> None:
        try:
            await self.dedup.release(origin_id)
        except Exception as e:
            log.error(f"  {RED}✗{RESET} could not release {origin_id}: {e}")
