"""BatchJobManager: bulk refine/publish jobs over already-stored articles.

Jobs are independent of crawl runs. Items are processed with a small bounded
concurrency; each item outcome comes from the injected operation handler
(a handler returning False or raising counts as a failed item). A job is
``completed`` once every item has been processed, whatever the per-item
outcomes were: the job tracks completion of work, not success.

A job whose processing task is cancelled (shutdown, crash) is saved as
``failed`` with error ``interrupted``. ``recover()`` runs at startup: it fails
jobs a previous process left ``running`` and restarts ``pending`` ones.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable

from news_refinery.config import settings
from news_refinery.errors import InvalidState, NotFoundError
from news_refinery.models import BatchJob, BatchStatus, utcnow
from news_refinery.repository import BatchJobRepository
from news_refinery.utils.logging import BOLD, DIM, GREEN, RED, RESET, get_logger

log = get_logger()

BatchHandler = Callable[[str], Awaitable[bool]]

_ACTIVE_STATUSES = frozenset({"pending", "running"})
INTERRUPTED = "interrupted"


class BatchJobManager:
    def __init__(
        self,
        repository: BatchJobRepository,
        handlers: dict[str, BatchHandler],
        concurrency: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.handlers = handlers
        self.concurrency = max(1, settings.batch_concurrency if concurrency is None else concurrency)
        self.clock = clock
        self._tasks: dict[str, asyncio.Task] = {}

    async def submit(
        self,
        target_ids: list[str],
        operation: str,
        config_id: str | None = None,
        start: bool = True,
    ) -> BatchJob:
        if operation not in self.handlers:
            raise NotFoundError("batch operation", operation)
        if not target_ids:
            raise ValueError("a batch job needs at least one target id")
        job = BatchJob(
            operation=operation,
            target_ids=list(target_ids),
            config_id=config_id,
            total_items=len(target_ids),
            started_at=self.clock(),
        )
        await self.repository.save(job)
        log.info(f"{BOLD}BATCH{RESET} {job.id} — {operation} × {job.total_items}")
        if start:
            self._start(job.id)
        return job

    def _start(self, job_id: str) -> asyncio.Task:
        task = asyncio.create_task(self.process(job_id), name=f"batch-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._tasks.pop(jid, None))
        return task

    async def recover(self) -> list[str]:
        """Fail jobs left running by a previous process and restart pending ones."""
        resumed: list[str] = []
        for job in await self.repository.list():
            if job.status == "running" and job.id not in self._tasks:
                await self.repository.save(job.model_copy(
                    update={"status": "failed", "error": INTERRUPTED, "completed_at": self.clock()}
                ))
                log.warning(
                    f"{RED}✗{RESET} batch {job.id} was interrupted at "
                    f"{job.processed_items}/{job.total_items}"
                )
            elif job.status == "pending" and job.id not in self._tasks:
                self._start(job.id)
                resumed.append(job.id)
        if resumed:
            log.info(f"{BOLD}BATCH{RESET} resumed {len(resumed)} pending job(s)")
        return resumed

    async def get(self, job_id: str) -> BatchJob:
        return await self.repository.get(job_id)

    async def list(self, status: BatchStatus | None = None, limit: int = 20) -> list[BatchJob]:
        """Jobs newest first, optionally filtered by status."""
        jobs = await self.repository.list()
        if status:
            jobs = [j for j in jobs if j.status == status]
        jobs.sort(key=lambda j: j.started_at, reverse=True)
        return jobs[:limit] if limit > 0 else jobs

    async def cancel(self, job_id: str) -> BatchJob:
        job = await self.repository.get(job_id)
        if job.status != "pending":
            raise InvalidState(f"batch job {job_id} is {job.status}; only pending jobs can be cancelled")
        cancelled = job.model_copy(update={"status": "cancelled", "completed_at": self.clock()})
        await self.repository.save(cancelled)
        task = self._tasks.pop(job_id, None)
        if task is not None:
            task.cancel()
        return cancelled

    async def delete(self, job_id: str) -> None:
        job = await self.repository.get(job_id)
        if job.status in _ACTIVE_STATUSES:
            raise InvalidState(f"batch job {job_id} is {job.status} and cannot be deleted")
        await self.repository.delete(job_id)

    async def wait(self, job_id: str) -> BatchJob:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return await self.repository.get(job_id)

    async def process(self, job_id: str) -> BatchJob:
        """Process every item of a pending job and return the finished job."""
        job = await self.repository.get(job_id)
        if job.status != "pending":
            return job
        handler = self.handlers[job.operation]
        job = await self.repository.save(job.model_copy(update={"status": "running"}))

        semaphore = asyncio.Semaphore(self.concurrency)
        lock = asyncio.Lock()
        state = {"job": job}

        async def _one(item_id: str) -> None:
            async with semaphore:
                try:
                    ok = bool(await handler(item_id))
                except Exception as e:
                    log.warning(f"  {RED}✗{RESET} {job_id} item {item_id}: {e}")
                    ok = False
            async with lock:
                current = state["job"]
                processed = current.processed_items + 1
                updates = {
                    "processed_items": processed,
                    "success_count": current.success_count + (1 if ok else 0),
                    "failed_count": current.failed_count + (0 if ok else 1),
                    "progress": round(processed / current.total_items * 100),
                }
                if processed == current.total_items:
                    updates.update(status="completed", completed_at=self.clock())
                state["job"] = await self.repository.save(current.model_copy(update=updates))

        try:
            await asyncio.gather(*(_one(item_id) for item_id in job.target_ids))
        except asyncio.CancelledError:
            done = state["job"]
            log.warning(f"{RED}✗{RESET} batch {job_id} interrupted at {done.processed_items}/{done.total_items}")
            await self.repository.save(done.model_copy(
                update={"status": "failed", "error": INTERRUPTED, "completed_at": self.clock()}
            ))
            raise
        except Exception as e:
            log.error(f"{RED}✗{RESET} batch {job_id} aborted: {e}")
            failed = state["job"].model_copy(
                update={"status": "failed", "error": str(e), "completed_at": self.clock()}
            )
            return await self.repository.save(failed)

        done = state["job"]
        log.info(
            f"{GREEN}▸{RESET} batch {job_id} {done.status}: "
            f"{done.success_count} ok, {done.failed_count} failed {DIM}({done.total_items} items){RESET}"
        )
        return done
