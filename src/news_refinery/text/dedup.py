"""Stable origin identifiers for deduplication.

An article's origin id must be identical across repeated fetches of the same
feed, so it is derived from the source id plus the canonical article link.
Entries without a link fall back to the normalized title, which is
script-safe: ZWJ/ZWNJ used by Indic conjuncts are kept.

``title_similarity`` catches the same story syndicated under different links:
Jaccard overlap of title tokens, where unspaced CJK text is split into
character bigrams and everything else into words.
"""

import hashlib
import re
import unicodedata
from urllib.parse import urlsplit, urlunsplit

_TRACKING_PARAMS = re.compile(r"^(utm_[a-z]+|fbclid|gclid|ref)$", re.IGNORECASE)
_CJK_RUN = re.compile(r"[\u3040-\u30FF\u3400-\u9FFF\uAC00-\uD7AF]+")


def normalize_title(title: str) -> str:
    """Lowercase, NFC, keep only letters/digits plus ZWJ and ZWNJ."""
    title = unicodedata.normalize("NFC", title).lower()
    title = re.sub(r"[^\w\u200C\u200D]", "", title, flags=re.UNICODE)
    return title.strip()


def canonical_url(url: str) -> str:
    """Drop fragments, tracking query params and trailing slashes."""
    parts = urlsplit(url.strip())
    query = "&".join(
        pair for pair in parts.query.split("&")
        if pair and not _TRACKING_PARAMS.match(pair.split("=", 1)[0])
    )
    path = parts.path.rstrip("/") or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, ""))


def make_origin_id(source_id: str, link: str | None, title: str = "") -> str:
    key = canonical_url(link) if link else normalize_title(title)
    digest = hashlib.sha1(f"{source_id}|{key}".encode("utf-8")).hexdigest()
    return f"{source_id}:{digest[:20]}"


def title_tokens(title: str) -> frozenset[str]:
    text = unicodedata.normalize("NFKC", title).lower()
    tokens: set[str] = set()
    for run in _CJK_RUN.findall(text):
        if len(run) == 1:
            tokens.add(run)
        tokens.update(run[i:i + 2] for i in range(len(run) - 1))
    tokens.update(re.findall(r"\w+", _CJK_RUN.sub(" ", text)))
    return frozenset(tokens)


def jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def title_similarity(a: str, b: str) -> float:
    return jaccard(title_tokens(a), title_tokens(b))
