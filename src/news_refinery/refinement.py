"""RefinementStage: AI rewrite of one article plus SEO metadata.

Sub-stages run in a fixed order and each is reported as its own progress
label:

    rewriting title → rewriting content → rewriting summary
      → generating SEO → injecting keywords (optional)

Every call to the text-refinement service is bounded by a timeout and
retried once after a backoff. A second failure raises ``RefinementError``
for the article; the caller drops that article and carries on.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Protocol

from news_refinery.config import settings
from news_refinery.errors import RefinementError
from news_refinery.models import RawArticle, RefinedArticle, RefineKind, utcnow
from news_refinery.seo import SEOCatalogue
from news_refinery.utils.logging import DIM, RESET, YELLOW, get_logger

log = get_logger()

STAGE_TITLE = "rewriting title"
STAGE_CONTENT = "rewriting content"
STAGE_SUMMARY = "rewriting summary"
STAGE_SEO = "generating SEO"
STAGE_KEYWORDS = "injecting keywords"

# Input cap for summary generation when the feed supplied none
_SUMMARY_SOURCE_CHARS = 2000

# RawArticle fields copied unchanged onto the refined article
_CARRIED_FIELDS = set(RawArticle.model_fields) - {"title", "content", "summary", "language"}


class TextRefiner(Protocol):
    """Pluggable AI backend: returns the rewritten text or raises."""

    model_name: str

    async def refine(
        self, text: str, target_language: str, kind: RefineKind, metadata: dict | None = None,
    ) -> str: ...


StageCallback = Callable[[str], None]


class RefinementStage:
    def __init__(
        self,
        refiner: TextRefiner,
        seo: SEOCatalogue,
        timeout_s: float | None = None,
        retry_backoff_s: float | None = None,
        inject_keywords: bool = True,
    ):
        self.refiner = refiner
        self.seo = seo
        self.timeout_s = settings.refine_timeout_s if timeout_s is None else timeout_s
        self.retry_backoff_s = (
            settings.refine_retry_backoff_s if retry_backoff_s is None else retry_backoff_s
        )
        self.inject_keywords = inject_keywords

    async def refine(
        self,
        article: RawArticle,
        target_languages: list[str] | None = None,
        on_stage: StageCallback | None = None,
        metadata: dict | None = None,
    ) -> RefinedArticle:
        """Rewrite ``article`` into the first target language.

        ``metadata`` (run id, worker language) is forwarded to every backend call
        together with the article's origin and source ids for tracing.
        """
        targets = list(target_languages or [article.language])
        language = targets[0]
        completed: list[str] = []
        trace = {"origin_id": article.origin_id, "source_id": article.source_id, **(metadata or {})}

        def enter(stage: str) -> None:
            if on_stage:
                on_stage(stage)

        enter(STAGE_TITLE)
        title = await self._call(STAGE_TITLE, article.title, language, "title", trace)
        completed.append(STAGE_TITLE)

        enter(STAGE_CONTENT)
        content = await self._call(STAGE_CONTENT, article.content, language, "content", trace)
        completed.append(STAGE_CONTENT)

        enter(STAGE_SUMMARY)
        summary_input = article.summary or article.content[:_SUMMARY_SOURCE_CHARS]
        summary = await self._call(STAGE_SUMMARY, summary_input, language, "summary", trace)
        completed.append(STAGE_SUMMARY)

        enter(STAGE_SEO)
        seo_title = await self._call(STAGE_SEO, title, language, "seo_title", trace)
        seo_description = await self._call(STAGE_SEO, summary, language, "seo_description", trace)
        seo_title = self.seo.seo_title(seo_title, language)
        seo_description = self.seo.seo_description(seo_description, language)
        completed.append(STAGE_SEO)

        injected = False
        if self.inject_keywords:
            enter(STAGE_KEYWORDS)
            content, injected = self.seo.inject_keyword(content, language)
            completed.append(STAGE_KEYWORDS)

        return RefinedArticle(
            **article.model_dump(include=_CARRIED_FIELDS),
            title=title,
            content=content,
            summary=summary,
            language=language,
            seo_title=seo_title,
            seo_description=seo_description,
            refined_at=utcnow(),
            refinement_model=self.refiner.model_name,
            target_languages=targets,
            refine_stages_completed=completed,
            keyword_injected=injected,
        )

    async def _call(
        self, stage: str, text: str, language: str, kind: RefineKind, trace: dict | None = None,
    ) -> str:
        """One refinement call: timeout, one retry with backoff, then RefinementError."""
        last_error = ""
        for attempt in range(2):
            try:
                result = await asyncio.wait_for(
                    self.refiner.refine(
                        text, language, kind, {**(trace or {}), "stage": stage, "attempt": attempt + 1},
                    ),
                    timeout=self.timeout_s,
                )
                if not result or not result.strip():
                    raise ValueError("empty response")
                return result.strip()
            except asyncio.TimeoutError:
                last_error = f"timed out after {self.timeout_s:.0f}s"
            except Exception as e:
                last_error = str(e) or type(e).__name__

            if attempt == 0:
                log.warning(
                    f"    {YELLOW}↻{RESET} {stage} ({kind}) failed: {last_error}; "
                    f"{DIM}retrying in {self.retry_backoff_s:.1f}s{RESET}"
                )
                await asyncio.sleep(self.retry_backoff_s)

        raise RefinementError(stage, last_error)
