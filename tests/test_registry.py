import pytest

from conftest import make_source
from news_refinery.config import settings
from news_refinery.errors import NotFoundError
from news_refinery.registry import SourceRegistry, build_registry


def test_active_sources_ordered_by_priority_then_quality():
    registry = SourceRegistry([
        make_source("low", "zh", priority=1, quality=0.9),
        make_source("high-b", "zh", priority=5, quality=0.6),
        make_source("high-a", "zh", priority=5, quality=0.8),
        make_source("other-lang", "en", priority=9),
    ])
    assert [s.id for s in registry.active_sources_for("zh")] == ["high-a", "high-b", "low"]


def test_ties_keep_registration_order():
    registry = SourceRegistry([
        make_source("first", "en", priority=3, quality=0.7),
        make_source("second", "en", priority=3, quality=0.7),
    ])
    assert [s.id for s in registry.active_sources_for("en")] == ["first", "second"]


def test_deactivate_hides_but_keeps_source():
    registry = SourceRegistry([make_source("a", "en"), make_source("b", "en")])
    registry.deactivate("a")
    assert [s.id for s in registry.active_sources_for("en")] == ["b"]
    assert registry.get("a").active is False


def test_upsert_replaces():
    registry = SourceRegistry([make_source("a", "en", priority=1)])
    registry.upsert(make_source("a", "en", priority=7))
    assert registry.get("a").priority == 7
    assert len(registry.all()) == 1


def test_unknown_source_raises():
    with pytest.raises(NotFoundError):
        SourceRegistry().get("missing")
    with pytest.raises(NotFoundError):
        SourceRegistry().deactivate("missing")


def test_unknown_language_is_empty():
    assert SourceRegistry([make_source("a", "en")]).active_sources_for("fr") == []


def test_bundled_catalogue_loads():
    registry = build_registry(settings.sources_file)
    assert {"en", "zh"} <= set(registry.languages())
    for language in registry.languages():
        ordered = registry.active_sources_for(language)
        keys = [(-s.priority, -s.quality_score) for s in ordered]
        assert keys == sorted(keys)
