"""First-run bootstrap and one-time data migrations for the template blob.

- Legacy presets (`[{name, data}]` under the old key) become templates.
- Stored records written before quality/usage tracking get those fields.
- An empty collection is seeded with the built-in presets.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from doma_studio.constants import MIGRATED_CATEGORY

from .canonical import compute_signature
from .drafts import suggest_tags
from .merge import new_template
from .models import PromptData, Template, TemplateDraft
from .presets import STYLE_PRESETS
from .validation import validate_template

logger = logging.getLogger(__name__)

# Keys whose absence marks a record as written by an older version
_BACKFILL_KEYS = (
    ("quality",),
    ("usageCount", "usage_count"),
    ("renderSuccessCount", "render_success_count"),
)


def convert_legacy_preset(name: str, prompt: PromptData, pinned: bool = False) -> Template:
    """Turn a named prompt preset into a template."""
    draft = TemplateDraft(
        name=name,
        category=MIGRATED_CATEGORY,
        tags=suggest_tags(prompt),
        pinned=pinned,
        **prompt.model_dump(),
    )
    return new_template(draft)


def seed_templates() -> list[Template]:
    """Built-in presets as pinned templates."""
    return [convert_legacy_preset(n, p, pinned=True) for n, p in STYLE_PRESETS]


def dedupe_by_signature(templates: Iterable[Template]) -> list[Template]:
    """Keep one record per signature: first position, last value wins."""
    by_sig: dict[str, Template] = {}
    for t in templates:
        by_sig[t.signature] = t
    return list(by_sig.values())


def parse_legacy_presets(raw: str) -> list[tuple[str, PromptData]] | None:
    """Parse the legacy preset blob. Returns None if it is not a JSON array."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON in legacy presets: %s", e)
        return None
    if not isinstance(data, list):
        logger.warning("Legacy presets blob is not an array; ignoring")
        return None
    out: list[tuple[str, PromptData]] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            prompt = PromptData.model_validate(item.get("data") or {})
        except ValidationError as e:
            logger.warning("Skipping unreadable legacy preset %r: %s", item.get("name"), e)
            continue
        out.append((str(item.get("name") or ""), prompt))
    return out


def migrate_legacy_presets(presets: list[tuple[str, PromptData]]) -> list[Template]:
    """Seeded presets plus converted legacy presets, deduplicated by signature."""
    migrated = [convert_legacy_preset(n, p) for n, p in presets]
    combined = dedupe_by_signature(seed_templates() + migrated)
    logger.info("Migrated %d legacy presets", len(presets))
    return combined


def _missing(record: dict[str, Any], names: tuple[str, ...]) -> bool:
    return not any(record.get(n) is not None for n in names)


def clean_record(record: dict[str, Any], drop: Iterable[str] = ()) -> dict[str, Any]:
    """Copy of a raw record ready for model validation.

    Null values and the keys in drop are removed so model defaults apply. A
    lastUsed of 0 (never used, in browser exports) is removed too.
    """
    skip = set(drop)
    out = {k: v for k, v in record.items() if v is not None and k not in skip}
    for k in ("lastUsed", "last_used"):
        if k in out and out[k] == 0:
            del out[k]
    return out


def backfill_records(records: list[Any]) -> tuple[list[Template], list[Any], bool]:
    """Validate stored records, filling fields older versions did not write.

    Returns the templates, the raw records that could not be read, and whether
    anything was backfilled (meaning the collection should be re-persisted).
    Unreadable records are returned untouched so a later write keeps them.
    """
    out: list[Template] = []
    unreadable: list[Any] = []
    changed = False
    for rec in records:
        if not isinstance(rec, dict):
            logger.warning("Keeping non-object template record as is")
            unreadable.append(rec)
            continue
        needs = any(_missing(rec, names) for names in _BACKFILL_KEYS)
        try:
            t = Template.model_validate(clean_record(rec))
        except ValidationError as e:
            logger.warning("Keeping unreadable template %r as is: %s", rec.get("id"), e)
            unreadable.append(rec)
            continue
        if t.quality is None:
            t.quality = validate_template(t).quality
        if not t.signature:
            t.signature = compute_signature(t)
            needs = True
        changed = changed or needs
        out.append(t)
    if changed:
        logger.info("Backfilled missing fields on stored templates")
    return out, unreadable, changed
