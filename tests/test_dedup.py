import asyncio

import pytest

from news_refinery.dedup import DedupGate, TitleIndex
from news_refinery.errors import StorageUnavailable
from news_refinery.repository import InMemorySeenStore
from news_refinery.text.dedup import canonical_url, make_origin_id, normalize_title, title_similarity, title_tokens


def test_basic_normalization():
    assert normalize_title("Hello, World!") == "helloworld"


def test_zwj_zwnj_preserved():
    """ZWJ/ZWNJ are part of Indic conjuncts and must survive normalization."""
    assert "\u200D" in normalize_title("ශ්\u200Dරී")
    assert "\u200C" in normalize_title("test\u200Cword")


def test_duplicate_titles_normalize_equal():
    t1 = normalize_title("Cotton Prices Rise")
    t2 = normalize_title("Cotton prices rise!")
    t3 = normalize_title("  cotton  prices rise? ")
    assert t1 == t2 == t3


def test_canonical_url_drops_tracking():
    a = canonical_url("https://Example.com/news/1/?utm_source=rss&id=7#top")
    b = canonical_url("https://example.com/news/1?id=7&fbclid=abc")
    assert a == b == "https://example.com/news/1?id=7"


def test_origin_id_is_stable():
    first = make_origin_id("src-a", "https://example.com/a?utm_medium=feed")
    second = make_origin_id("src-a", "https://example.com/a")
    assert first == second
    assert first.startswith("src-a:")


def test_origin_id_depends_on_source():
    assert make_origin_id("src-a", "https://example.com/a") != make_origin_id("src-b", "https://example.com/a")


def test_origin_id_title_fallback():
    assert make_origin_id("src-a", None, "Cotton Prices Rise") == make_origin_id("src-a", "", "cotton prices rise!")


@pytest.mark.asyncio
async def test_gate_admits_once(dedup):
    assert await dedup.accept("src:1") is True
    assert await dedup.accept("src:1") is False
    assert await dedup.accept("src:2") is True
    assert await dedup.seen("src:1") is True
    assert await dedup.seen("src:3") is False


@pytest.mark.asyncio
async def test_gate_concurrent_accepts_single_winner(dedup):
    results = await asyncio.gather(*(dedup.accept("src:same") for _ in range(10)))
    assert results.count(True) == 1


class _BrokenStore:
    async def add_if_absent(self, origin_id):
        raise ConnectionError("connection refused")

    async def contains(self, origin_id):
        raise ConnectionError("connection refused")

    async def discard(self, origin_id):
        raise ConnectionError("connection refused")


@pytest.mark.asyncio
async def test_gate_backend_failure_is_storage_unavailable():
    gate = DedupGate(_BrokenStore())
    with pytest.raises(StorageUnavailable):
        await gate.accept("src:1")
    with pytest.raises(StorageUnavailable):
        await gate.seen("src:1")
    with pytest.raises(StorageUnavailable):
        await gate.release("src:1")


def test_reworded_title_is_similar():
    assert title_similarity("Cotton prices rise sharply in Asia today", "Cotton prices rise sharply in Asia!") > 0.8
    assert title_similarity("Cotton prices rise sharply in Asia", "Cotton prices fall in Europe") < 0.5


def test_cjk_titles_use_bigrams():
    assert title_tokens("棉花价格") == {"棉花", "花价", "价格"}
    assert title_similarity("棉花价格持续上涨", "棉花价格持续上涨！") == 1.0
    assert title_similarity("棉花价格持续上涨", "内衣出口订单回暖") == 0.0


def test_mixed_script_title_tokens():
    assert title_tokens("H&M 内衣 2024") == {"h", "m", "内衣", "2024"}


def test_empty_title_is_never_similar():
    assert title_similarity("", "") == 0.0


def test_title_index_is_bounded_per_language():
    index = TitleIndex(threshold=0.8, max_titles=2)
    for n, title in enumerate(["cotton rally", "silk exports", "lace demand"]):
        index.add(f"src:{n}", title, "en")
    assert len(index) == 2
    assert index.find_similar("cotton rally", "en") is None
    assert index.find_similar("lace demand", "en") == "src:2"
    assert index.find_similar("lace demand", "fr") is None


@pytest.mark.asyncio
async def test_gate_rejects_near_duplicate_titles(dedup):
    assert await dedup.accept("a:1", "Cotton prices rise sharply in Asia today", "en")
    assert not await dedup.accept("b:1", "Cotton prices rise sharply in Asia", "en")
    assert not await dedup.seen("b:1")
    # titles are compared within one language only
    assert await dedup.accept("c:1", "Cotton prices rise sharply in Asia", "fr")


@pytest.mark.asyncio
async def test_release_allows_readmission(dedup):
    assert await dedup.accept("a:1", "Lace demand grows", "en")
    await dedup.release("a:1")
    assert not await dedup.seen("a:1")
    assert len(dedup.titles) == 0
    assert await dedup.accept("a:1", "Lace demand grows", "en")


@pytest.mark.asyncio
async def test_load_titles_seeds_index(dedup):
    dedup.load_titles([("a:2", "Silk exports climb", "en"), ("a:1", "Lace demand grows", "en")])
    assert not await dedup.accept("b:9", "Silk exports climb!", "en")


class _SlowStore(InMemorySeenStore):
    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0

    async def add_if_absent(self, origin_id):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        return await super().add_if_absent(origin_id)


@pytest.mark.asyncio
async def test_gate_does_not_serialize_distinct_ids():
    store = _SlowStore()
    gate = DedupGate(store)
    results = await asyncio.gather(*(gate.accept(f"src:{n}") for n in range(5)))
    assert all(results)
    assert store.max_in_flight == 5


@pytest.mark.asyncio
async def test_title_checks_lock_per_language_only():
    store = _SlowStore()
    gate = DedupGate(store)
    await asyncio.gather(
        gate.accept("en:1", "Cotton rally", "en"),
        gate.accept("zh:1", "棉花价格持续上涨", "zh"),
    )
    assert store.max_in_flight == 2
