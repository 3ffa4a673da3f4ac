"""Canonical form and content signature for templates.

The signature is a SHA-256 over the canonical content fields (tags excluded),
so it identifies a template by what it says rather than by its record id.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from doma_studio.config.constants import Limits
from doma_studio.constants import DEFAULT_CATEGORY, PROMPT_FIELDS, SIGNATURE_FIELDS

from .models import CanonicalTemplate

_SPACES = re.compile(r"\s+")


def single_space(s: str | None) -> str:
    """Collapse whitespace runs to one space and trim."""
    return _SPACES.sub(" ", s).strip() if s else ""


def lower_space(s: str | None) -> str:
    return single_space(s).lower()


def _as_mapping(data: Mapping[str, Any] | BaseModel) -> Mapping[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return data


def normalize_tags(tags: Iterable[Any] | None, limit: int = Limits.MAX_TAGS) -> list[str]:
    """Lowercase, trim and dedupe tags, keeping first-seen order, capped to limit."""
    out: list[str] = []
    for t in tags or []:
        k = lower_space(str(t))
        if k and k not in out:
            out.append(k)
    return out[:limit]


def normalize_template(data: Mapping[str, Any] | BaseModel) -> CanonicalTemplate:
    """Return the canonical content fields of a template draft.
    Name keeps its casing; everything else is lowercased. Identity, usage
    and timestamp fields are ignored."""
    d = _as_mapping(data)
    fields = {f: lower_space(d.get(f)) for f in PROMPT_FIELDS}
    return CanonicalTemplate(
        name=single_space(d.get("name")),
        category=lower_space(d.get("category")) or DEFAULT_CATEGORY,
        tags=normalize_tags(d.get("tags")),
        **fields,
    )


def signature_payload(canonical: CanonicalTemplate) -> str:
    """Compact sorted-key JSON of the signed fields."""
    payload = {f: getattr(canonical, f) for f in SIGNATURE_FIELDS}
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_signature(data: Mapping[str, Any] | BaseModel) -> str:
    """Lowercase hex SHA-256 of the canonical content of data."""
    canonical = normalize_template(data)
    return hashlib.sha256(signature_payload(canonical).encode("utf-8")).hexdigest()
