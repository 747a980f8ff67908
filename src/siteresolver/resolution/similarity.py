"""Token-level string similarity helpers."""

from __future__ import annotations

import re
from collections.abc import Sequence


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens longer than two characters."""
    cleaned = re.sub(r"[^\w\s]", "", text.lower())
    return [t for t in cleaned.split() if len(t) > 2]


def jaccard(a: str, b: str) -> float:
    """Jaccard similarity of the token sets of *a* and *b*."""
    set_a, set_b = set(tokenize(a)), set(tokenize(b))
    if not set_a and not set_b:
        return 1.0
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def substring_fraction(tokens: Sequence[str], text: str) -> float:
    """Fraction of *tokens* occurring verbatim as substrings of *text*."""
    tokens = [t for t in tokens if t]
    if not tokens:
        return 0.0
    hits = sum(1 for t in tokens if t in text)
    return hits / len(tokens)
