import pytest
from langchain_core.language_models import FakeListChatModel

from news_refinery.agents.chains import build_refine_prompt, language_name
from news_refinery.agents import refiner as refiner_module
from news_refinery.agents import tracing
from news_refinery.agents.refiner import LLMTextRefiner
from news_refinery.agents.tracing import refine_run_config


def test_language_names():
    assert language_name("zh") == "Simplified Chinese"
    assert language_name("xx") == "xx"


@pytest.mark.parametrize("kind", ["title", "content", "summary", "seo_title", "seo_description"])
def test_prompt_for_every_kind(kind):
    messages = build_refine_prompt(kind).format_messages(text="Cotton prices rise", language="Japanese")
    assert len(messages) == 2
    assert "Japanese" in messages[0].content
    assert messages[1].content.endswith("Cotton prices rise")


def test_unknown_kind():
    with pytest.raises(ValueError):
        build_refine_prompt("headline")


@pytest.mark.asyncio
async def test_llm_refiner_returns_model_text():
    refiner = LLMTextRefiner(model="test-model", llm=FakeListChatModel(responses=["棉价上涨"]))
    assert refiner.model_name == "test-model"
    assert await refiner.refine("Cotton prices rise", "zh", "title") == "棉价上涨"


def test_run_config_carries_refinement_metadata(monkeypatch):
    monkeypatch.setattr(tracing, "langfuse_handler", lambda: None)
    config = refine_run_config("title", "ja", "test-model", {"run_id": "run_1", "origin_id": "src:1"})
    assert config["run_name"] == "refine-title"
    assert config["tags"] == ["refine", "title", "ja"]
    meta = config["metadata"]
    assert (meta["refine_kind"], meta["target_language"], meta["model"]) == ("title", "ja", "test-model")
    assert meta["origin_id"] == "src:1"
    assert meta["langfuse_session_id"] == "run_1"
    assert "callbacks" not in config


def test_run_config_attaches_langfuse_handler(monkeypatch):
    handler = object()
    monkeypatch.setattr(tracing, "langfuse_handler", lambda: handler)
    config = refine_run_config("summary", "en", "test-model")
    assert config["callbacks"] == [handler]
    assert "langfuse_session_id" not in config["metadata"]


def test_langfuse_disabled_without_keys(monkeypatch):
    monkeypatch.setattr(tracing.settings, "langfuse_public_key", "")
    tracing.langfuse_handler.cache_clear()
    try:
        assert tracing.langfuse_handler() is None
    finally:
        tracing.langfuse_handler.cache_clear()


@pytest.mark.asyncio
async def test_llm_refiner_builds_config_per_call(monkeypatch):
    seen = []

    def recording_config(kind, target_language, model, metadata=None):
        seen.append((kind, target_language, model, metadata))
        return {"run_name": f"refine-{kind}"}

    monkeypatch.setattr(refiner_module, "refine_run_config", recording_config)
    refiner = LLMTextRefiner(model="test-model", llm=FakeListChatModel(responses=["a", "b"]))
    await refiner.refine("Cotton prices rise", "zh", "title", {"run_id": "run_7"})
    await refiner.refine("Silk exports climb", "ja", "summary")
    assert seen == [
        ("title", "zh", "test-model", {"run_id": "run_7"}),
        ("summary", "ja", "test-model", None),
    ]
