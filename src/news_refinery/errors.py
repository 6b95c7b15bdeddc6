"""Error taxonomy for the crawl and refinement pipeline.

Per-source and per-article errors are absorbed by the worker and only show
up in progress counters and ``RunProgress.error``. Fatal errors end a single
language's run. The remaining errors are raised to callers of the registry,
schedule and batch APIs.
"""

from __future__ import annotations


class RefineryError(Exception):
    """Base class for all pipeline errors."""


class NotFoundError(RefineryError):
    """An operation referenced an unknown source, schedule, job or run."""

    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class SourceFetchError(RefineryError):
    """Fetching one source failed. Non-fatal: the worker moves on."""

    def __init__(self, source_id: str, reason: str):
        super().__init__(f"fetch failed for source {source_id}: {reason}")
        self.source_id = source_id
        self.reason = reason


class RefinementError(RefineryError):
    """One refinement sub-stage failed after its retry. Drops the article, not the run."""

    def __init__(self, stage: str, reason: str):
        super().__init__(f"refinement stage '{stage}' failed: {reason}")
        self.stage = stage
        self.reason = reason


class RunFatalError(RefineryError):
    """A language run cannot complete (zero articles found, or the worker crashed)."""


class StorageUnavailable(RefineryError):
    """The dedup / article / repository backend could not be reached."""


class ScheduleConfigInvalid(RefineryError):
    """A schedule was rejected at create/update time (bad cron expression, empty fields)."""


class InvalidState(RefineryError):
    """Illegal operation for the current state of a job, run or progress slot."""
