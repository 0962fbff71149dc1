from __future__ import annotations

from typing import Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur[j] = min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost)
        prev = cur
    return prev[-1]


def similarity(a: Optional[str], b: Optional[str]) -> float:
    """Normalized edit-distance similarity in [0, 1]."""
    if not a or not b:
        return 0.0
    s1 = a.lower().strip()
    s2 = b.lower().strip()
    if s1 == s2:
        return 1.0
    max_len = max(len(s1), len(s2))
    if max_len == 0:
        return 1.0
    return (max_len - levenshtein(s1, s2)) / max_len


def match_score(keyword: Optional[str], text: Optional[str]) -> float:
    """Score how well ``text`` (a title) answers a free-text ``keyword``.

    Containment dominates: a title that contains the keyword scores at least 0.9,
    rising toward 1.0 as the keyword covers more of the title. Otherwise token
    overlap (weight 0.7) is blended with whole-string similarity (weight 0.3).
    """
    if not keyword or not text:
        return 0.0
    k = keyword.lower().strip()
    t = text.lower().strip()
    if not k or not t:
        return 0.0

    if k in t:
        return min(1.0, 0.9 + (len(k) / len(t)) * 0.1)

    keyword_tokens = k.split()
    text_tokens = t.split()
    hits = 0
    for kt in keyword_tokens:
        if any(tt in kt or kt in tt for tt in text_tokens):
            hits += 1
    overlap = hits / len(keyword_tokens)
    sim = similarity(k, t)
    return max(overlap * 0.7 + sim * 0.3, sim)


def rank_candidates(keyword: str,
                    items: Iterable[T],
                    title_of,
                    floor: float) -> List[Tuple[T, float]]:
    """Score items against keyword, keep score > floor, sort descending."""
    scored: List[Tuple[T, float]] = []
    for item in items:
        score = match_score(keyword, title_of(item))
        if score > floor:
            scored.append((item, score))
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored
