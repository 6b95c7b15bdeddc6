from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

RunStatus = Literal["pending", "crawling", "polishing", "completed", "failed"]
BatchStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
BatchOperation = Literal["refine", "publish"]
RefineKind = Literal["title", "content", "summary", "seo_title", "seo_description"]

TERMINAL_RUN_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


class Source(BaseModel):
    id: str
    name: str
    url: str
    rss_url: str | None = None
    language: str = "en"
    country: str = ""
    region: str = ""
    category: str = "general"
    priority: int = 0
    quality_score: float = Field(default=0.5, ge=0.0, le=1.0)
    active: bool = True
    crawl_interval_minutes: int = 60


class RawArticle(BaseModel):
    """One fetched article. Created by a fetcher, never mutated."""

    model_config = {"frozen": True}

    origin_id: str
    title: str
    content: str
    summary: str = ""
    language: str
    category: str = "general"
    source_id: str
    source_url: str = ""
    image_url: str | None = None
    author: str | None = None
    published_at: datetime | None = None


class RefinedArticle(RawArticle):
    """RawArticle after the refinement stage. Re-refinement creates a new instance."""

    seo_title: str
    seo_description: str
    refined_at: datetime
    refinement_model: str
    target_languages: list[str]
    refine_stages_completed: list[str] = Field(default_factory=list)
    keyword_injected: bool = False


class RunProgress(BaseModel):
    """Snapshot of one language's progress in one run.

    Instances are frozen; the ProgressTracker publishes a new snapshot for
    every update so observers never see a half-applied change.
    """

    model_config = {"frozen": True}

    run_id: str
    language: str
    status: RunStatus = "pending"
    country: str = ""
    current_source: str | None = None
    current_article_title: str | None = None
    articles_found: int = 0
    articles_processed: int = 0
    articles_refined: int = 0
    refine_stage: str | None = None
    error: str | None = None
    source_errors: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES


class RunRequest(BaseModel):
    languages: list[str]
    source_ids: list[str] = Field(default_factory=list)  # empty = all active sources
    budget_per_language: int = Field(default=5, ge=1)
    max_articles_per_source: int = Field(default=10, ge=1)
    quality_threshold: int = Field(default=0, ge=0, le=100)  # minimum content score
    refine: bool = True
    target_languages: list[str] = Field(default_factory=list)  # empty = article language

    @model_validator(mode="after")
    def _dedupe_languages(self) -> RunRequest:
        if not self.languages:
            raise ValueError("at least one language is required")
        self.languages = list(dict.fromkeys(self.languages))
        return self


class LanguageResult(BaseModel):
    progress: RunProgress
    articles: list[RefinedArticle | RawArticle] = Field(default_factory=list)
    refinement_failures: int = 0


class RunResult(BaseModel):
    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    languages: dict[str, LanguageResult] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return any(r.progress.status == "completed" for r in self.languages.values())

    def completed_languages(self) -> list[str]:
        return [lang for lang, r in self.languages.items() if r.progress.status == "completed"]


class ScheduleConfig(BaseModel):
    id: str = Field(default_factory=lambda: new_id("sched"))
    name: str
    description: str = ""
    active: bool = True
    cron_expression: str
    ai_model: str = ""
    source_ids: list[str] = Field(default_factory=list)
    target_languages: list[str]
    quality_threshold: int = Field(default=0, ge=0, le=100)  # minimum content score
    max_articles_per_source: int = Field(default=10, ge=1)
    budget_per_language: int = Field(default=5, ge=1)
    refine: bool = True
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    total_runs: int = 0
    successful_runs: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_run_request(self) -> RunRequest:
        return RunRequest(
            languages=self.target_languages,
            source_ids=self.source_ids,
            budget_per_language=self.budget_per_language,
            max_articles_per_source=self.max_articles_per_source,
            quality_threshold=self.quality_threshold,
            refine=self.refine,
        )


class BatchJob(BaseModel):
    id: str = Field(default_factory=lambda: new_id("batch"))
    operation: BatchOperation
    target_ids: list[str]
    config_id: str | None = None
    status: BatchStatus = "pending"
    progress: int = 0
    total_items: int = 0
    processed_items: int = 0
    success_count: int = 0
    failed_count: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    error: str | None = None
