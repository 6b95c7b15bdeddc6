"""ScheduleManager: recurring crawl configurations driven by cron expressions.

Schedules are validated when they are created or edited, so an invalid cron
expression never reaches the due-check. ``next_run_at`` is recomputed from
the cron expression on every create, update and completed run, always
relative to the current time. The manager itself only orchestrates: when a
schedule is due it asks the CrawlOrchestrator for a run, persists the result
and records the outcome.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Protocol

from croniter import CroniterBadCronError, CroniterBadDateError, croniter
from pydantic import ValidationError

from news_refinery.config import settings
from news_refinery.errors import ScheduleConfigInvalid
from news_refinery.models import RunResult, ScheduleConfig, utcnow
from news_refinery.orchestrator import CrawlOrchestrator
from news_refinery.repository import ScheduleRepository
from news_refinery.utils.logging import BOLD, DIM, GREEN, RED, RESET, get_logger

log = get_logger()

# Fields only the manager may write
_MANAGED_FIELDS = frozenset(
    {"id", "last_run_at", "next_run_at", "total_runs", "successful_runs", "created_at", "updated_at"}
)


class CronEvaluator(Protocol):
    def validate(self, expression: str) -> None:
        """Raise ScheduleConfigInvalid for an unusable expression."""
        ...

    def next_after(self, expression: str, after: datetime) -> datetime: ...


class CroniterEvaluator:
    """Standard 5-field cron (minute hour day-of-month month day-of-week)."""

    def validate(self, expression: str) -> None:
        if len(expression.split()) != 5 or not croniter.is_valid(expression):
            raise ScheduleConfigInvalid(f"invalid cron expression: {expression!r}")

    def next_after(self, expression: str, after: datetime) -> datetime:
        try:
            return croniter(expression, after).get_next(datetime)
        except (CroniterBadCronError, CroniterBadDateError) as e:
            raise ScheduleConfigInvalid(f"invalid cron expression: {expression!r}") from e


class ScheduleManager:
    def __init__(
        self,
        repository: ScheduleRepository,
        evaluator: CronEvaluator | None = None,
        orchestrator: CrawlOrchestrator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.evaluator = evaluator or CroniterEvaluator()
        self.orchestrator = orchestrator
        self.clock = clock

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(self, schedule: ScheduleConfig) -> ScheduleConfig:
        self._validate(schedule)
        now = self.clock()
        created = schedule.model_copy(update={
            "last_run_at": None,
            "total_runs": 0,
            "successful_runs": 0,
            "created_at": now,
            "updated_at": now,
            "next_run_at": self._next_run(schedule.cron_expression, now),
        })
        log.info(f"{GREEN}✓{RESET} schedule '{created.name}' created, next run {created.next_run_at:%Y-%m-%d %H:%M} UTC")
        return await self.repository.save(created)

    async def update(self, schedule_id: str, changes: dict) -> ScheduleConfig:
        current = await self.repository.get(schedule_id)
        editable = {k: v for k, v in changes.items() if k not in _MANAGED_FIELDS}
        try:
            updated = ScheduleConfig.model_validate({**current.model_dump(), **editable})
        except ValidationError as e:
            raise ScheduleConfigInvalid(str(e)) from e
        self._validate(updated)
        now = self.clock()
        updated = updated.model_copy(update={
            "updated_at": now,
            "next_run_at": self._next_run(updated.cron_expression, now),
        })
        return await self.repository.save(updated)

    async def set_active(self, schedule_id: str, active: bool) -> ScheduleConfig:
        return await self.update(schedule_id, {"active": active})

    async def delete(self, schedule_id: str) -> None:
        await self.repository.delete(schedule_id)

    async def get(self, schedule_id: str) -> ScheduleConfig:
        return await self.repository.get(schedule_id)

    async def list(self) -> list[ScheduleConfig]:
        return await self.repository.list()

    # ------------------------------------------------------------------
    # Recurrence
    # ------------------------------------------------------------------

    async def due(self, now: datetime | None = None) -> list[ScheduleConfig]:
        now = now or self.clock()
        schedules = await self.repository.list()
        due = [s for s in schedules if s.active and s.next_run_at is not None and s.next_run_at <= now]
        return sorted(due, key=lambda s: s.next_run_at)

    async def record_run(self, schedule_id: str, success: bool) -> ScheduleConfig:
        current = await self.repository.get(schedule_id)
        now = self.clock()
        updated = current.model_copy(update={
            "total_runs": current.total_runs + 1,
            "successful_runs": current.successful_runs + (1 if success else 0),
            "last_run_at": now,
            "next_run_at": self._next_run(current.cron_expression, now),
            "updated_at": now,
        })
        return await self.repository.save(updated)

    async def run_schedule(self, schedule: ScheduleConfig) -> RunResult | None:
        """Run one schedule through the orchestrator and record the outcome."""
        if self.orchestrator is None:
            raise RuntimeError("ScheduleManager has no orchestrator to run schedules")
        log.info(f"{BOLD}SCHEDULE{RESET} '{schedule.name}' ({schedule.cron_expression})")
        result: RunResult | None = None
        try:
            result = await self.orchestrator.run_crawl(schedule.to_run_request())
            await self.orchestrator.persist(result)
        except Exception as e:
            log.error(f"{RED}✗{RESET} schedule '{schedule.name}' could not run: {e}")
        success = result is not None and result.succeeded
        recorded = await self.record_run(schedule.id, success)
        log.info(
            f"  {DIM}'{schedule.name}': {recorded.successful_runs}/{recorded.total_runs} successful, "
            f"next run {recorded.next_run_at:%Y-%m-%d %H:%M} UTC{RESET}"
        )
        return result

    async def run_due_once(self) -> dict[str, bool]:
        """Run every due schedule once, sequentially. Returns id → success."""
        outcomes: dict[str, bool] = {}
        for schedule in await self.due():
            result = await self.run_schedule(schedule)
            outcomes[schedule.id] = result is not None and result.succeeded
        return outcomes

    async def run_forever(
        self,
        poll_interval_s: float | None = None,
        stop: asyncio.Event | None = None,
    ) -> None:
        interval = settings.scheduler_poll_interval_s if poll_interval_s is None else poll_interval_s
        stop = stop or asyncio.Event()
        log.info(f"{BOLD}SCHEDULER{RESET} polling every {interval:.0f}s")
        while not stop.is_set():
            await self.run_due_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    # ------------------------------------------------------------------

    def _validate(self, schedule: ScheduleConfig) -> None:
        if not schedule.name.strip():
            raise ScheduleConfigInvalid("schedule name is required")
        if not schedule.target_languages:
            raise ScheduleConfigInvalid("at least one target language is required")
        self.evaluator.validate(schedule.cron_expression)

    def _next_run(self, expression: str, now: datetime) -> datetime:
        next_run = self.evaluator.next_after(expression, now)
        return max(next_run, now)
