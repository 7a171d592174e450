"""Title normalisation and bigram (Dice coefficient) similarity."""

from __future__ import annotations

import re
from collections import Counter

_NON_WORD = re.compile(r"[^\w]")
_SPACES = re.compile(r"\s+")


def normalize_title(title: str | None) -> str:
    return _NON_WORD.sub("", (title or "").lower())


def _bigrams(s: str) -> Counter:
    return Counter(s[i:i + 2] for i in range(len(s) - 1))


def dice_similarity(first: str, second: str) -> float:
    """Sørensen–Dice coefficient over character bigrams, in [0, 1].

    Whitespace is ignored; identical strings score 1.0 and strings shorter
    than two characters score 0.0 unless identical.
    """
    first = _SPACES.sub("", first or "")
    second = _SPACES.sub("", second or "")
    if first == second:
        return 1.0
    if len(first) < 2 or len(second) < 2:
        return 0.0
    left = _bigrams(first)
    right = _bigrams(second)
    overlap = sum((left & right).values())
    return (2.0 * overlap) / (len(first) + len(second) - 2)


def title_similarity(a: str | None, b: str | None) -> float:
    return dice_similarity(normalize_title(a), normalize_title(b))
