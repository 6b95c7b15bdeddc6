"""LLM-backed text-refinement service used by the RefinementStage."""

from __future__ import annotations

from news_refinery.agents.chains import build_refine_chain, get_llm, language_name
from news_refinery.agents.tracing import refine_run_config
from news_refinery.config import settings
from news_refinery.models import RefineKind


class LLMTextRefiner:
    """Rewrites text through an OpenAI-compatible chat model.

    One chain per refinement kind is built lazily and reused. Errors from the
    provider propagate unchanged; timeouts and the retry policy belong to the
    RefinementStage.
    """

    def __init__(self, model: str | None = None, prompt_version: str = "v1", llm=None):
        self.model_name = model or settings.openrouter_model
        self.prompt_version = prompt_version
        self._llm = llm
        self._chains: dict[str, object] = {}

    def _chain(self, kind: RefineKind):
        if kind not in self._chains:
            if self._llm is None:
                self._llm = get_llm(self.model_name)
            self._chains[kind] = build_refine_chain(kind, self._llm, self.prompt_version)
        return self._chains[kind]

    async def refine(
        self, text: str, target_language: str, kind: RefineKind, metadata: dict | None = None,
    ) -> str:
        chain = self._chain(kind)
        return await chain.ainvoke(
            {"text": text, "language": language_name(target_language)},
            config=refine_run_config(kind, target_language, self.model_name, metadata),
        )
