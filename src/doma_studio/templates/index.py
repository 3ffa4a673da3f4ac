"""In-memory inverted index over templates.

Maps terms, tags and categories to posting lists of signatures, plus a
per-signature metadata cache for scoring. The index is derived state: it
can always be rebuilt from the collection.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from doma_studio.constants import DEFAULT_CATEGORY

from .canonical import lower_space
from .models import Quality, Template
from .tokenize import tokenize

logger = logging.getLogger(__name__)

Postings = dict[str, set[str]]


@dataclass
class DocMeta:
    """Denormalized summary of one indexed template."""

    name: str
    quality: Quality
    tags: list[str]
    category: str
    text_len: int
    updated_at: datetime | None


def _category_key(t: Template) -> str:
    return lower_space(t.category) or DEFAULT_CATEGORY


def _tag_keys(t: Template) -> set[str]:
    return {k for k in (lower_space(tg) for tg in t.tags or []) if k}


def _add(m: Postings, key: str, sig: str) -> None:
    m.setdefault(key, set()).add(sig)


def _discard(m: Postings, key: str, sig: str) -> None:
    sigs = m.get(key)
    if sigs is None:
        return
    sigs.discard(sig)
    if not sigs:
        del m[key]


@dataclass
class SearchIndex:
    """Inverted maps term/tag/category -> signatures, and signature -> DocMeta."""

    term: Postings = field(default_factory=dict)
    tag: Postings = field(default_factory=dict)
    category: Postings = field(default_factory=dict)
    meta: dict[str, DocMeta] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.meta)

    def __contains__(self, signature: object) -> bool:
        return signature in self.meta

    def add_entry(self, template: Template) -> None:
        """Index a template under its signature. Templates without one are skipped."""
        sig = template.signature
        if not sig:
            return
        text = template.prompt_text
        for w in tokenize(text):
            _add(self.term, w, sig)
        for tg in _tag_keys(template):
            _add(self.tag, tg, sig)
        _add(self.category, _category_key(template), sig)
        self.meta[sig] = DocMeta(
            name=template.name,
            quality=template.quality or Quality.AMBER,
            tags=list(template.tags or []),
            category=template.category or DEFAULT_CATEGORY,
            text_len=len(text),
            updated_at=template.updated_at,
        )

    def remove_entry(self, template: Template) -> None:
        """Undo add_entry for the template's current content.
        Keys whose posting list becomes empty are deleted."""
        sig = template.signature
        if not sig:
            return
        for w in tokenize(template.prompt_text):
            _discard(self.term, w, sig)
        for tg in _tag_keys(template):
            _discard(self.tag, tg, sig)
        _discard(self.category, _category_key(template), sig)
        self.meta.pop(sig, None)

    def average_text_len(self) -> float:
        if not self.meta:
            return 0.0
        return sum(m.text_len for m in self.meta.values()) / len(self.meta)


def build_index(templates: Iterable[Template]) -> SearchIndex:
    """Build a fresh index from the full collection."""
    idx = SearchIndex()
    for t in templates:
        idx.add_entry(t)
    logger.debug(
        "Built search index: %d docs, %d terms, %d tags, %d categories",
        len(idx.meta),
        len(idx.term),
        len(idx.tag),
        len(idx.category),
    )
    return idx
