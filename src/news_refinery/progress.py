"""Per-language progress state machine for crawl runs.

    pending → crawling → (polishing)? → completed | failed

The tracker is the only code that creates RunProgress snapshots. Each write
validates the transition and the counter invariant
(refined ≤ processed ≤ found) and then swaps in a new frozen snapshot, so
readers polling ``snapshot()`` never need a lock. Writes are synchronous and
never await; each language slot is written by exactly one worker through the
``ProgressReporter`` handed to it.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict

from news_refinery.errors import InvalidState, NotFoundError
from news_refinery.models import TERMINAL_RUN_STATUSES, RunProgress, Source, utcnow

_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"pending", "crawling", "failed"}),
    "crawling": frozenset({"crawling", "polishing", "completed", "failed"}),
    "polishing": frozenset({"polishing", "completed", "failed"}),
}

_MAX_SOURCE_ERRORS = 20


class ProgressTracker:
    def __init__(self, max_runs: int = 50):
        self._runs: OrderedDict[str, dict[str, RunProgress]] = OrderedDict()
        self._subscribers: dict[str, list[asyncio.Queue[RunProgress]]] = {}
        self._max_runs = max_runs

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def has_run(self, run_id: str) -> bool:
        return run_id in self._runs

    def get(self, run_id: str, language: str) -> RunProgress:
        try:
            return self._runs[run_id][language]
        except KeyError:
            raise NotFoundError("run progress", f"{run_id}/{language}") from None

    def snapshot(self, run_id: str) -> list[RunProgress]:
        if run_id not in self._runs:
            raise NotFoundError("run", run_id)
        return list(self._runs[run_id].values())

    def is_finished(self, run_id: str) -> bool:
        return all(p.is_terminal for p in self.snapshot(run_id))

    def active_languages(self) -> set[str]:
        """Languages with a non-terminal slot in any tracked run."""
        return {
            lang
            for slots in self._runs.values()
            for lang, p in slots.items()
            if not p.is_terminal
        }

    def subscribe(self, run_id: str) -> asyncio.Queue[RunProgress]:
        """Push channel: every snapshot written for ``run_id`` is put on the queue."""
        queue: asyncio.Queue[RunProgress] = asyncio.Queue()
        self._subscribers.setdefault(run_id, []).append(queue)
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue[RunProgress]) -> None:
        queues = self._subscribers.get(run_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(run_id, None)

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def create_run(self, run_id: str, languages: list[str]) -> list[RunProgress]:
        if run_id in self._runs:
            raise InvalidState(f"run {run_id} already exists")
        self._evict()
        slots = {lang: RunProgress(run_id=run_id, language=lang) for lang in languages}
        self._runs[run_id] = slots
        for progress in slots.values():
            self._publish(progress)
        return list(slots.values())

    def update(self, run_id: str, language: str, **changes) -> RunProgress:
        current = self.get(run_id, language)
        if current.is_terminal:
            raise InvalidState(
                f"progress {run_id}/{language} is already {current.status}"
            )
        status = changes.get("status", current.status)
        if status not in _TRANSITIONS[current.status]:
            raise InvalidState(
                f"illegal transition {current.status} → {status} for {run_id}/{language}"
            )
        changes["updated_at"] = utcnow()
        updated = current.model_copy(update=changes)
        if not (0 <= updated.articles_refined <= updated.articles_processed <= updated.articles_found):
            raise InvalidState(
                f"counter invariant violated for {run_id}/{language}: "
                f"found={updated.articles_found} processed={updated.articles_processed} "
                f"refined={updated.articles_refined}"
            )
        self._runs[run_id][language] = updated
        self._publish(updated)
        return updated

    def fail_if_running(self, run_id: str, language: str, reason: str) -> RunProgress:
        """Force a slot to ``failed`` unless it already reached a terminal state."""
        current = self.get(run_id, language)
        if current.is_terminal:
            return current
        return self.update(run_id, language, status="failed", error=reason, refine_stage=None)

    def reporter(self, run_id: str, language: str) -> ProgressReporter:
        self.get(run_id, language)
        return ProgressReporter(self, run_id, language)

    def forget(self, run_id: str) -> None:
        self._runs.pop(run_id, None)
        self._subscribers.pop(run_id, None)

    def _publish(self, progress: RunProgress) -> None:
        for queue in self._subscribers.get(progress.run_id, []):
            queue.put_nowait(progress)

    def _evict(self) -> None:
        # Progress is ephemeral; drop the oldest finished runs beyond the cap
        while len(self._runs) >= self._max_runs:
            finished = next(
                (
                    rid for rid, slots in self._runs.items()
                    if all(p.status in TERMINAL_RUN_STATUSES for p in slots.values())
                ),
                None,
            )
            if finished is None:
                return
            self.forget(finished)


class ProgressReporter:
    """Write handle for one (run, language) slot, owned by one LanguageWorker."""

    def __init__(self, tracker: ProgressTracker, run_id: str, language: str):
        self._tracker = tracker
        self.run_id = run_id
        self.language = language

    @property
    def current(self) -> RunProgress:
        return self._tracker.get(self.run_id, self.language)

    def _update(self, **changes) -> RunProgress:
        return self._tracker.update(self.run_id, self.language, **changes)

    def start_crawling(self) -> RunProgress:
        return self._update(status="crawling")

    def visiting(self, source: Source) -> RunProgress:
        changes: dict = {"current_source": source.name, "current_article_title": None}
        if not self.current.country and source.country:
            changes["country"] = source.country
        return self._update(**changes)

    def found(self, count: int) -> RunProgress:
        return self._update(articles_found=self.current.articles_found + count)

    def admitted(self, title: str) -> RunProgress:
        return self._update(
            current_article_title=title,
            articles_processed=self.current.articles_processed + 1,
        )

    def source_failed(self, source: Source, reason: str) -> RunProgress:
        message = f"{source.name}: {reason}"
        errors = (self.current.source_errors + [message])[-_MAX_SOURCE_ERRORS:]
        return self._update(error=message, source_errors=errors)

    def start_polishing(self) -> RunProgress:
        return self._update(status="polishing", current_source=None)

    def refine_stage(self, title: str, stage: str) -> RunProgress:
        return self._update(current_article_title=title, refine_stage=stage)

    def refined(self) -> RunProgress:
        return self._update(articles_refined=self.current.articles_refined + 1)

    def article_failed(self, title: str, reason: str) -> RunProgress:
        return self._update(error=f"{title[:60]}: {reason}")

    def complete(self) -> RunProgress:
        return self._update(status="completed", refine_stage=None)

    def fail(self, reason: str) -> RunProgress:
        return self._tracker.fail_if_running(self.run_id, self.language, reason)
