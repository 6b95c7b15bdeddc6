"""RSS/Atom fetcher: the default Fetcher implementation.

httpx downloads the feed (so timeouts and the User-Agent are under our
control) and feedparser does charset detection and parsing. Every failure
mode of a single feed is raised as SourceFetchError; the LanguageWorker logs
it on the progress slot and moves on to the next source.
"""

from __future__ import annotations

import re
from datetime import datetime
from email.utils import parsedate_to_datetime

import feedparser
import httpx

from news_refinery.config import settings
from news_refinery.errors import SourceFetchError
from news_refinery.models import RawArticle, Source
from news_refinery.text.dedup import make_origin_id
from news_refinery.text.normalize import normalize_text, strip_html, truncate
from news_refinery.utils.logging import DIM, RESET, get_logger

log = get_logger()

_IMG_RE = re.compile(r'src=[\'"](https?://[^\'"]+)[\'"]', re.IGNORECASE)
_SUMMARY_CHARS = 300


def _entry_content(entry) -> str:
    contents = entry.get("content") or []
    if contents:
        return contents[0].get("value", "")
    return entry.get("summary") or entry.get("description") or ""


def _published_at(entry) -> datetime | None:
    raw = entry.get("published") or entry.get("updated")
    if not raw:
        return None
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None


def parse_feed(source: Source, payload: bytes) -> list[RawArticle]:
    """Turn a feed document into RawArticles attributed to ``source``."""
    feed = feedparser.parse(payload)
    if feed.bozo and not feed.entries:
        raise SourceFetchError(source.id, f"unparseable feed: {feed.get('bozo_exception')}")

    articles: list[RawArticle] = []
    for entry in feed.entries:
        title = normalize_text(entry.get("title", ""))
        link = entry.get("link") or entry.get("id") or ""
        if not title and not link:
            continue

        raw_html = _entry_content(entry)
        content = strip_html(raw_html)
        description = strip_html(entry.get("summary") or "")
        image = _IMG_RE.search(raw_html)

        articles.append(
            RawArticle(
                origin_id=make_origin_id(source.id, link, title),
                title=title,
                content=content,
                summary=truncate(description, _SUMMARY_CHARS) if description != content else "",
                language=source.language,
                category=source.category,
                source_id=source.id,
                source_url=link,
                image_url=image.group(1) if image else None,
                author=entry.get("author"),
                published_at=_published_at(entry),
            )
        )
    return articles


class RSSFetcher:
    def __init__(self, timeout_s: float | None = None, client: httpx.AsyncClient | None = None):
        self.timeout_s = settings.fetch_timeout_s if timeout_s is None else timeout_s
        self._client = client

    async def fetch(self, source: Source) -> list[RawArticle]:
        url = source.rss_url or source.url
        try:
            if self._client is not None:
                response = await self._client.get(url)
            else:
                async with httpx.AsyncClient(
                    timeout=self.timeout_s,
                    follow_redirects=True,
                    headers={"User-Agent": settings.user_agent},
                ) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SourceFetchError(source.id, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise SourceFetchError(source.id, f"{type(e).__name__}: {e}") from e

        articles = parse_feed(source, response.content)
        log.info(f"    {DIM}[{source.id}] feed returned {len(articles)} entries{RESET}")
        return articles
