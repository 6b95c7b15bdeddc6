import httpx
import pytest

from conftest import make_source
from news_refinery.errors import SourceFetchError
from news_refinery.scraper.rss import RSSFetcher, parse_feed
from news_refinery.text.dedup import make_origin_id

FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
  <title>Textile News</title>
  <link>https://example.com</link>
  <item>
    <title>Cotton &amp; yarn prices rise</title>
    <link>https://example.com/news/cotton?utm_source=rss</link>
    <description>&lt;p&gt;Cotton &lt;b&gt;prices&lt;/b&gt; rose.&lt;/p&gt;&lt;img src="https://example.com/cotton.jpg" /&gt;</description>
    <pubDate>Mon, 15 Jan 2024 09:00:00 GMT</pubDate>
  </item>
  <item>
    <title>Second story</title>
    <link>https://example.com/news/second</link>
    <description>Plain text body</description>
  </item>
</channel>
</rss>
"""


@pytest.fixture
def source():
    return make_source("textile-en", "en", category="industry")


def test_parse_feed_entries(source):
    articles = parse_feed(source, FEED)
    assert [a.title for a in articles] == ["Cotton & yarn prices rise", "Second story"]

    first = articles[0]
    assert first.content == "Cotton prices rose."
    assert first.image_url == "https://example.com/cotton.jpg"
    assert first.language == "en"
    assert first.category == "industry"
    assert first.source_id == "textile-en"
    assert first.published_at.year == 2024
    assert first.origin_id == make_origin_id("textile-en", "https://example.com/news/cotton")


def test_parse_feed_is_deterministic(source):
    assert [a.origin_id for a in parse_feed(source, FEED)] == [a.origin_id for a in parse_feed(source, FEED)]


def test_unparseable_feed(source):
    with pytest.raises(SourceFetchError):
        parse_feed(source, b"this is not a feed")


@pytest.mark.asyncio
async def test_fetcher_uses_client(source):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, content=FEED)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        articles = await RSSFetcher(client=client).fetch(source)
    assert len(articles) == 2
    assert len(seen) == 1 and seen[0].startswith(source.url)


@pytest.mark.asyncio
async def test_fetcher_http_error(source):
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(SourceFetchError) as exc:
            await RSSFetcher(client=client).fetch(source)
    assert exc.value.reason == "HTTP 503"
