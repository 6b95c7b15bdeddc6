"""Script checks used by the quality policy.

A candidate is rejected when the source promises one language but the text
is written in a different script (e.g. an English placeholder page in a
Japanese feed). Latin-script languages are not distinguished from each other.
"""

import re

_SCRIPT_RANGES: dict[str, re.Pattern] = {
    "zh": re.compile(r"[\u4E00-\u9FFF]"),
    "ja": re.compile(r"[\u3040-\u30FF\u4E00-\u9FFF]"),
    "ko": re.compile(r"[\uAC00-\uD7AF]"),
    "ru": re.compile(r"[\u0400-\u04FF]"),
    "ar": re.compile(r"[\u0600-\u06FF]"),
    "si": re.compile(r"[\u0D80-\u0DFF]"),
}

# Fraction of the sample that must be in the expected script
_MIN_RATIO = 0.10


def script_matches(text: str, language: str) -> bool:
    """True when the first 500 chars look like ``language``'s script.

    Languages without a dedicated range (Latin script) always match.
    """
    pattern = _SCRIPT_RANGES.get(language)
    if pattern is None:
        return True
    sample = re.sub(r"\s+", "", text[:500])
    if not sample:
        return False
    return len(pattern.findall(sample)) / len(sample) > _MIN_RATIO
