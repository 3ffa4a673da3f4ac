"""Typed record merges for templates.

Each write path states which fields it may overwrite and which it must keep:

- id and created_at are never changed after the first write.
- signature and quality are always derived from the merged content.
- updated_at always moves forward.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from doma_studio.config.constants import Limits
from doma_studio.constants import SIGNATURE_FIELDS

from .canonical import compute_signature, normalize_template
from .models import CanonicalTemplate, Template, TemplateDraft, utc_now
from .validation import validate_template

# Fields a patch may set directly (content fields are re-canonicalized)
CONTENT_FIELDS = SIGNATURE_FIELDS + ("tags",)
METADATA_FIELDS = (
    "favorite",
    "pinned",
    "usage_count",
    "render_success_count",
    "last_used",
    "thumbnail",
    "variant_of",
)
_NULLABLE_FIELDS = ("last_used", "thumbnail", "variant_of")


class TemplatePatch(BaseModel):
    """Partial update for an existing template. Only explicitly set fields apply."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")
    name: str | None = None
    subject: str | None = None
    action: str | None = None
    environment: str | None = None
    style: str | None = None
    lighting: str | None = None
    camera: str | None = None
    category: str | None = None
    tags: list[str] | None = None
    favorite: bool | None = None
    pinned: bool | None = None
    usage_count: int | None = Field(default=None, ge=0)
    render_success_count: int | None = Field(default=None, ge=0)
    last_used: datetime | None = None
    thumbnail: str | None = None
    variant_of: str | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def next_timestamp(previous: datetime | None = None) -> datetime:
    """Now, or just after previous if the clock has not moved past it."""
    now = utc_now()
    if previous is not None and now <= _aware(previous):
        return _aware(previous) + timedelta(microseconds=1)
    return now


def _content(c: CanonicalTemplate) -> dict:
    return c.model_dump()


def new_template(
    draft: TemplateDraft,
    *,
    usage_count: int = 0,
    render_success_count: int = 0,
    last_used: datetime | None = None,
) -> Template:
    """Fresh record from a draft with canonical content, signature and grade."""
    canonical = normalize_template(draft)
    now = utc_now()
    return Template(
        **_content(canonical),
        favorite=draft.favorite,
        pinned=draft.pinned,
        usage_count=usage_count,
        render_success_count=render_success_count,
        last_used=last_used,
        created_at=now,
        updated_at=now,
        signature=compute_signature(canonical),
        quality=validate_template(canonical).quality,
        thumbnail=draft.thumbnail,
        variant_of=draft.variant_of,
    )


def merge_upsert(existing: Template, draft: TemplateDraft) -> Template:
    """Merge a draft into the record that already has its signature.

    Content is overwritten and tags are unioned (sorted, capped). Identity,
    flags and usage counters are kept; thumbnail and variant_of only change
    when the draft provides them.
    """
    canonical = normalize_template(draft)
    tags = sorted(set(existing.tags) | set(canonical.tags))[: Limits.MAX_TAGS]
    content = _content(canonical)
    content["tags"] = tags
    return existing.model_copy(
        update={
            **content,
            "signature": compute_signature(canonical),
            "quality": validate_template(canonical).quality,
            "thumbnail": draft.thumbnail if draft.thumbnail is not None else existing.thumbnail,
            "variant_of": draft.variant_of if draft.variant_of is not None else existing.variant_of,
            "updated_at": next_timestamp(existing.updated_at),
        }
    )


def apply_patch(existing: Template, patch: TemplatePatch) -> Template:
    """Apply a direct update: patched fields replace old ones (tags included),
    then content is re-canonicalized, re-signed and re-graded."""
    changes = patch.changes()
    base = existing.model_dump()
    base.update({k: v for k, v in changes.items() if k in CONTENT_FIELDS})
    canonical = normalize_template(base)
    meta = {
        k: v
        for k, v in changes.items()
        if k in METADATA_FIELDS and (v is not None or k in _NULLABLE_FIELDS)
    }
    return existing.model_copy(
        update={
            **_content(canonical),
            **meta,
            "signature": compute_signature(canonical),
            "quality": validate_template(canonical).quality,
            "updated_at": next_timestamp(existing.updated_at),
        }
    )
