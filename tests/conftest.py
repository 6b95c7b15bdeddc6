import asyncio

import pytest

from news_refinery.dedup import DedupGate
from news_refinery.models import RawArticle, Source
from news_refinery.progress import ProgressTracker
from news_refinery.refinement import RefinementStage
from news_refinery.repository import InMemorySeenStore
from news_refinery.seo import SEOCatalogue, SEOKeyword
from news_refinery.text.dedup import make_origin_id

ZH_BODY = (
    "中国纺织服装行业今年上半年保持稳定增长，出口订单持续回暖，"
    "多家内衣企业加大了智能制造和绿色面料的投入，行业整体利润水平明显改善。"
) * 2

EN_BODY = (
    "Global textile makers reported steady demand in the second quarter as "
    "retailers rebuilt inventories and brands shifted sourcing toward nearshore suppliers."
)

LONG_EN_BODY = "\n".join([
    "Lingerie brands across Asia are expanding sustainable cotton lines as retail demand recovers.",
    "Manufacturing partners in Vietnam reported higher orders for lace and silk designs this season.",
    "Industry analysts expect export growth to continue while consumer spending stabilises in Europe.",
    "Several suppliers invested in recycled polyester and spandex blends to meet new brand standards.",
    "The market trend favours comfortable fabric and inclusive sizing, according to sales data.",
])

ZH_HEADLINES = [
    "棉花价格持续上涨",
    "内衣出口订单回暖",
    "纺织企业加快智能制造",
    "绿色面料需求增长",
    "服装零售市场复苏",
    "化纤行业利润改善",
    "丝绸产业走向国际",
    "童装品牌加速扩张",
]


def make_source(source_id: str, language: str = "en", priority: int = 0, quality: float = 0.5, **fields) -> Source:
    return Source(
        id=source_id,
        name=fields.pop("name", source_id.replace("-", " ").title()),
        url=f"https://{source_id}.example.com",
        language=language,
        priority=priority,
        quality_score=quality,
        **fields,
    )


def make_article(source: Source, n: int, title: str | None = None, content: str | None = None) -> RawArticle:
    link = f"{source.url}/news/{n}"
    if title is None:
        title = ZH_HEADLINES[n % len(ZH_HEADLINES)] if source.language == "zh" else f"{source.name} headline {n}"
    if content is None:
        content = ZH_BODY if source.language == "zh" else EN_BODY
    return RawArticle(
        origin_id=make_origin_id(source.id, link),
        title=title,
        content=content,
        language=source.language,
        source_id=source.id,
        source_url=link,
    )


class FakeFetcher:
    """Serves canned articles per source id; an Exception value is raised instead."""

    def __init__(self, feeds: dict | None = None, delays: dict[str, float] | None = None):
        self.feeds = feeds or {}
        self.delays = delays or {}
        self.calls: list[str] = []

    async def fetch(self, source: Source) -> list[RawArticle]:
        self.calls.append(source.id)
        if source.id in self.delays:
            await asyncio.sleep(self.delays[source.id])
        feed = self.feeds.get(source.id, [])
        if isinstance(feed, Exception):
            raise feed
        return list(feed)


class FakeRefiner:
    """Echo refiner: returns ``[lang:kind] text``.

    ``fail_first`` fails that many calls per kind before succeeding,
    ``always_fail`` fails every call of those kinds, ``hang`` never returns.
    """

    model_name = "fake-model"

    def __init__(self, fail_first: dict[str, int] | None = None, always_fail=(), hang=(), fail_text: str | None = None):
        self.fail_first = dict(fail_first or {})
        self.always_fail = set(always_fail)
        self.hang = set(hang)
        self.fail_text = fail_text
        self.calls: list[tuple[str, str]] = []
        self.metadata: list[dict] = []

    async def refine(self, text: str, target_language: str, kind: str, metadata: dict | None = None) -> str:
        self.calls.append((kind, target_language))
        self.metadata.append(metadata or {})
        if kind in self.hang:
            await asyncio.sleep(3600)
        if kind in self.always_fail or (self.fail_text and self.fail_text in text):
            raise RuntimeError(f"{kind} backend error")
        if self.fail_first.get(kind, 0) > 0:
            self.fail_first[kind] -= 1
            raise RuntimeError(f"{kind} transient error")
        return f"[{target_language}:{kind}] {text}"


@pytest.fixture
def seo():
    return SEOCatalogue([
        SEOKeyword(keyword="underwear wholesale supplier", language="en", search_engine="google",
                   search_volume=8900, relevance_score=0.95),
        SEOKeyword(keyword="intimate apparel manufacturer", language="en", search_engine="google",
                   search_volume=6700, relevance_score=0.93),
        SEOKeyword(keyword="plus size lingerie", language="en", search_engine="google",
                   search_volume=67000, relevance_score=0.78),
        SEOKeyword(keyword="内衣批发厂家", language="zh", search_engine="baidu",
                   search_volume=12000, relevance_score=0.95),
        SEOKeyword(keyword="niche keyword", language="zh", search_engine="google",
                   search_volume=50000, relevance_score=0.99),
    ])


@pytest.fixture
def refiner():
    return FakeRefiner()


@pytest.fixture
def refinement(refiner, seo):
    return RefinementStage(refiner, seo, timeout_s=1.0, retry_backoff_s=0)


@pytest.fixture
def seen_store():
    return InMemorySeenStore()


@pytest.fixture
def dedup(seen_store):
    return DedupGate(seen_store)


@pytest.fixture
def tracker():
    return ProgressTracker()
