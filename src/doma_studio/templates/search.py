"""Candidate selection and weighted scoring over the search index."""

from __future__ import annotations

from datetime import datetime, timezone

from doma_studio.config.constants import Limits, Scoring
from doma_studio.constants import ALL_CATEGORIES

from .canonical import lower_space
from .index import DocMeta, SearchIndex
from .models import Quality, SearchParams, SearchResultItem
from .tokenize import tokenize

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))


def _intersect(postings: list[set[str]]) -> set[str]:
    """AND of posting lists, smallest first."""
    if not postings:
        return set()
    ordered = sorted(postings, key=len)
    out = set(ordered[0])
    for p in ordered[1:]:
        out &= p
        if not out:
            break
    return out


def _passes_quality(q: Quality, floor: Quality | None) -> bool:
    if floor == Quality.GREEN:
        return q == Quality.GREEN
    if floor == Quality.AMBER:
        return q != Quality.RED
    return True


def _recency(m: DocMeta) -> datetime:
    u = m.updated_at
    if u is None:
        return _EPOCH
    return u if u.tzinfo else u.replace(tzinfo=timezone.utc)


def _normalized_filters(params: SearchParams) -> tuple[list[str], str]:
    tags: list[str] = []
    for t in params.tags:
        k = lower_space(t)
        if k and k not in tags:
            tags.append(k)
    category = lower_space(params.category)
    if category == ALL_CATEGORIES:
        category = ""
    return tags, category


def candidates(index: SearchIndex, params: SearchParams) -> set[str]:
    """Signatures matching every query term, every tag and the category."""
    terms = tokenize(params.q)
    tags, category = _normalized_filters(params)
    if terms:
        postings = [index.term.get(w) for w in terms]
        if any(p is None for p in postings):
            return set()
        found = _intersect(postings)  # type: ignore[arg-type]
    else:
        found = set(index.meta)
    for tg in tags:
        found &= index.tag.get(tg, set())
    if category:
        found &= index.category.get(category, set())
    return found


def score_candidate(
    index: SearchIndex,
    sig: str,
    terms: set[str],
    tags: list[str],
    category: str,
    avg_len: float,
) -> float:
    """Weighted score in [0, 1] for one candidate."""
    m = index.meta[sig]
    if terms:
        hits = sum(1 for w in terms if sig in index.term.get(w, ()))
        text = hits / len(terms)
    else:
        text = Scoring.NEUTRAL_TEXT
    tag_score = 0.0
    if tags:
        matched = sum(1 for tg in tags if sig in index.tag.get(tg, ()))
        tag_score = min(Scoring.TAG_CAP, matched * Scoring.TAG_STEP)
    cat = Scoring.CATEGORY_BONUS if category and lower_space(m.category) == category else 0.0
    qual = Scoring.QUALITY_BONUS[m.quality.value]
    concise = Scoring.CONCISE_BONUS if 0 < m.text_len < avg_len else 0.0
    return _clamp(
        text * Scoring.TEXT_WEIGHT
        + tag_score * Scoring.TAG_WEIGHT
        + cat * Scoring.CATEGORY_WEIGHT
        + qual * Scoring.QUALITY_WEIGHT
        + concise
    )


def search_templates(
    index: SearchIndex, params: SearchParams, default_limit: int = Limits.SEARCH_DEFAULT
) -> list[SearchResultItem]:
    """Rank indexed templates against a query.

    Text terms and tags use AND semantics. Results under the minimum score
    are dropped; the rest sort by score, then most recently updated.
    """
    terms = tokenize(params.q)
    tags, category = _normalized_filters(params)
    avg_len = index.average_text_len()
    scored: list[tuple[float, str]] = []
    for sig in candidates(index, params):
        m = index.meta.get(sig)
        if m is None or not _passes_quality(m.quality, params.min_quality):
            continue
        s = score_candidate(index, sig, terms, tags, category, avg_len)
        if s >= Scoring.MIN_SCORE:
            scored.append((s, sig))
    scored.sort(key=lambda x: (x[0], _recency(index.meta[x[1]])), reverse=True)
    limit = params.limit or default_limit
    return [
        SearchResultItem(
            signature=sig,
            name=index.meta[sig].name,
            score=s,
            quality=index.meta[sig].quality,
            tags=list(index.meta[sig].tags),
            category=index.meta[sig].category,
        )
        for s, sig in scored[:limit]
    ]
