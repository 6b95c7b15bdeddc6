"""Text cleanup applied to fetched feed entries before dedup and refinement."""

import html
import re
import unicodedata

# Double-encoded UTF-8 patterns (mojibake) — shows as Ã¢â‚¬ etc.
_MOJIBAKE_REPLACEMENTS = {
    "Ã¢â\u201aÂ¬â\u201e¢": "\u2019",  # right single quote
    "Ã¢â\u201aÂ¬â\u20ac\u201d": "\u2014",  # em dash
    "Ã¢â\u201aÂ¬Â¦": "\u2026",  # ellipsis
}

_TAG_RE = re.compile(r"<[^>]+>")


def normalize_text(text: str) -> str:
    """NFC-normalize, unescape entities, repair mojibake and collapse whitespace."""
    text = unicodedata.normalize("NFC", text)
    text = html.unescape(text)
    for bad, good in _MOJIBAKE_REPLACEMENTS.items():
        text = text.replace(bad, good)
    return re.sub(r"\s+", " ", text).strip()


def strip_html(text: str) -> str:
    """Drop markup from feed descriptions, keeping the visible text."""
    return normalize_text(_TAG_RE.sub(" ", text))


def truncate(text: str, limit: int, suffix: str = "...") -> str:
    if len(text) <= limit:
        return text
    return text[: limit - len(suffix)].rstrip() + suffix
