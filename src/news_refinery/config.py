from pathlib import Path

from pydantic_settings import BaseSettings

_PACKAGE_DIR = Path(__file__).parent


class Settings(BaseSettings):
    # Empty string = in-memory repositories (schedules and batch jobs are lost on restart)
    database_url: str = ""
    log_level: str = "info"
    sources_file: str = str(_PACKAGE_DIR / "sources.yaml")
    seo_keywords_file: str = str(_PACKAGE_DIR / "seo_keywords.yaml")
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    )
    fetch_timeout_s: float = 30.0
    # OpenRouter LLM config for the refinement stage
    openrouter_api_key: str = ""
    openrouter_model: str = "nvidia/nemotron-3-nano-30b-a3b:free"
    # LLM base URL — change to switch provider (Ollama, LM Studio, etc.)
    llm_base_url: str = "https://openrouter.ai/api/v1"
    refine_timeout_s: float = 60.0
    refine_retry_backoff_s: float = 2.0
    # Langfuse Cloud observability
    langfuse_public_key: str = ""
    langfuse_secret_key: str = ""
    langfuse_base_url: str = "https://us.cloud.langfuse.com"
    # Crawl run limits
    run_timeout_s: float = 1800.0
    default_budget_per_language: int = 5
    default_max_articles_per_source: int = 10
    max_sources_per_language: int = 10
    min_content_chars: int = 100
    # Near-duplicate titles: Jaccard overlap above this is rejected
    title_similarity_threshold: float = 0.8
    max_recent_titles: int = 5000
    batch_concurrency: int = 2
    scheduler_poll_interval_s: float = 30.0
    max_results: int = 50

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
