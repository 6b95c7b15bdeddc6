import pytest

from conftest import FakeRefiner, make_article, make_source
from news_refinery.errors import RefinementError
from news_refinery.refinement import (
    STAGE_CONTENT,
    STAGE_KEYWORDS,
    STAGE_SEO,
    STAGE_SUMMARY,
    STAGE_TITLE,
    RefinementStage,
)


@pytest.fixture
def article():
    return make_article(make_source("textile-en", "en"), 1, title="Cotton prices rise")


@pytest.mark.asyncio
async def test_stages_run_in_order(refinement, article):
    stages = []
    refined = await refinement.refine(article, on_stage=stages.append)
    expected = [STAGE_TITLE, STAGE_CONTENT, STAGE_SUMMARY, STAGE_SEO, STAGE_KEYWORDS]
    assert stages == expected
    assert refined.refine_stages_completed == expected


@pytest.mark.asyncio
async def test_refined_article_fields(refinement, article):
    refined = await refinement.refine(article)
    assert refined.origin_id == article.origin_id
    assert refined.source_id == article.source_id
    assert refined.title == "[en:title] Cotton prices rise"
    assert refined.content.startswith("[en:content] ")
    assert refined.summary.startswith("[en:summary] ")
    assert refined.seo_title.endswith(" | underwear wholesale supplier")
    assert refined.refinement_model == "fake-model"
    assert refined.target_languages == ["en"]
    assert refined.keyword_injected is True
    assert refined.content.count("underwear wholesale supplier") == 1


@pytest.mark.asyncio
async def test_first_target_language_is_used(refinement, refiner, article):
    refined = await refinement.refine(article, ["zh", "en"])
    assert refined.language == "zh"
    assert refined.target_languages == ["zh", "en"]
    assert {language for _, language in refiner.calls} == {"zh"}
    assert refined.seo_title.startswith("内衣批发厂家 - ")


@pytest.mark.asyncio
async def test_transient_failure_retried_once(seo, article):
    refiner = FakeRefiner(fail_first={"title": 1})
    stage = RefinementStage(refiner, seo, timeout_s=1.0, retry_backoff_s=0)
    refined = await stage.refine(article)
    assert refined.title == "[en:title] Cotton prices rise"
    assert [kind for kind, _ in refiner.calls].count("title") == 2


@pytest.mark.asyncio
async def test_second_failure_raises(seo, article):
    refiner = FakeRefiner(always_fail={"summary"})
    stage = RefinementStage(refiner, seo, timeout_s=1.0, retry_backoff_s=0)
    with pytest.raises(RefinementError) as exc:
        await stage.refine(article)
    assert exc.value.stage == STAGE_SUMMARY
    assert [kind for kind, _ in refiner.calls].count("summary") == 2


@pytest.mark.asyncio
async def test_timeout_counts_as_failure(seo, article):
    stage = RefinementStage(FakeRefiner(hang={"content"}), seo, timeout_s=0.05, retry_backoff_s=0)
    with pytest.raises(RefinementError) as exc:
        await stage.refine(article)
    assert exc.value.stage == STAGE_CONTENT
    assert "timed out" in exc.value.reason


class _EmptyRefiner:
    model_name = "empty"

    async def refine(self, text, target_language, kind, metadata=None):
        return "   "


@pytest.mark.asyncio
async def test_empty_response_is_an_error(seo, article):
    stage = RefinementStage(_EmptyRefiner(), seo, timeout_s=1.0, retry_backoff_s=0)
    with pytest.raises(RefinementError):
        await stage.refine(article)


@pytest.mark.asyncio
async def test_keyword_injection_can_be_disabled(refiner, seo, article):
    stage = RefinementStage(refiner, seo, timeout_s=1.0, retry_backoff_s=0, inject_keywords=False)
    refined = await stage.refine(article)
    assert refined.keyword_injected is False
    assert STAGE_KEYWORDS not in refined.refine_stages_completed


@pytest.mark.asyncio
async def test_re_refining_does_not_inject_twice(refinement, article):
    first = await refinement.refine(article)
    second = await refinement.refine(first, first.target_languages)
    assert second.keyword_injected is False
    assert second.content.count("underwear wholesale supplier") == 1
    assert second.refined_at >= first.refined_at
