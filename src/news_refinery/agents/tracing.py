"""Per-call LangChain config for refinement requests.

Every backend call carries a run name, tags and metadata: refinement kind,
target language, model, plus whatever the RefinementStage hands down (crawl
run id, origin/source ids, stage, attempt). When Langfuse keys are set a
single shared CallbackHandler is attached, and all calls of one crawl run are
grouped under a Langfuse session named after the run id.
"""

from __future__ import annotations

import os
from functools import lru_cache

from langchain_core.runnables import RunnableConfig

from news_refinery.config import settings
from news_refinery.utils.logging import DIM, RESET, YELLOW, get_logger

log = get_logger()


@lru_cache(maxsize=1)
def langfuse_handler():
    """Shared Langfuse CallbackHandler, or None when unconfigured or unavailable."""
    if not (settings.langfuse_public_key and settings.langfuse_secret_key):
        log.debug(f"  {DIM}Langfuse not configured, refinement calls are untraced{RESET}")
        return None

    # Langfuse v3 reads its credentials from the environment
    for key, value in (
        ("LANGFUSE_PUBLIC_KEY", settings.langfuse_public_key),
        ("LANGFUSE_SECRET_KEY", settings.langfuse_secret_key),
        ("LANGFUSE_HOST", settings.langfuse_base_url),
    ):
        os.environ.setdefault(key, value)

    try:
        from langfuse.langchain import CallbackHandler

        handler = CallbackHandler()
    except Exception as e:
        log.warning(f"  {YELLOW}Langfuse unavailable, refinement calls are untraced: {e}{RESET}")
        return None
    log.info(f"  {DIM}Langfuse tracing enabled ({settings.langfuse_base_url}){RESET}")
    return handler


def refine_run_config(
    kind: str,
    target_language: str,
    model: str,
    metadata: dict | None = None,
) -> RunnableConfig:
    """RunnableConfig for one refinement call."""
    tags = ["refine", kind, target_language]
    meta = {
        "refine_kind": kind,
        "target_language": target_language,
        "model": model,
        **(metadata or {}),
        "langfuse_tags": tags,
    }
    if meta.get("run_id"):
        meta["langfuse_session_id"] = meta["run_id"]

    config: RunnableConfig = {"run_name": f"refine-{kind}", "tags": tags, "metadata": meta}
    handler = langfuse_handler()
    if handler is not None:
        config["callbacks"] = [handler]
    return config
