"""LangChain chain definitions for article refinement."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import yaml
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI

from news_refinery.config import settings

_PROMPTS_DIR = Path(__file__).parent / "prompts"

LANGUAGE_NAMES = {
    "zh": "Simplified Chinese",
    "en": "English",
    "ja": "Japanese",
    "ko": "Korean",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "ar": "Arabic",
    "nl": "Dutch",
    "tr": "Turkish",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def get_llm(model: str | None = None) -> ChatOpenAI:
    """Create OpenRouter-backed (OpenAI-compatible) LLM instance."""
    return ChatOpenAI(
        model=model or settings.openrouter_model,
        api_key=settings.openrouter_api_key,
        base_url=settings.llm_base_url,
        temperature=0.3,
        max_tokens=4096,
    )


@lru_cache(maxsize=4)
def load_prompts(prompt_version: str = "v1") -> dict:
    with open(_PROMPTS_DIR / f"refine_{prompt_version}.yaml", encoding="utf-8") as f:
        return yaml.safe_load(f)


def build_refine_prompt(kind: str, prompt_version: str = "v1") -> ChatPromptTemplate:
    data = load_prompts(prompt_version)
    try:
        task = data["tasks"][kind]
    except KeyError:
        raise ValueError(f"no refinement prompt for kind '{kind}'") from None
    return ChatPromptTemplate.from_messages([
        ("system", data["system"]),
        ("human", task + "\n\nInput:\n{text}"),
    ])


def build_refine_chain(kind: str, llm: ChatOpenAI, prompt_version: str = "v1"):
    """Build chain: {text, language} → refined plain text."""
    return build_refine_prompt(kind, prompt_version) | llm | StrOutputParser()
