"""Pydantic models for prompt templates and their search/ranking results."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from doma_studio.constants import DEFAULT_CATEGORY, PROMPT_FIELDS


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Quality(str, Enum):
    """Tri-level linting grade."""

    GREEN = "Green"
    AMBER = "Amber"
    RED = "Red"


class PromptData(BaseModel):
    """The six descriptive prompt fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    subject: str = ""
    action: str = ""
    environment: str = ""
    style: str = ""
    lighting: str = ""
    camera: str = ""


class CanonicalTemplate(PromptData):
    """Normalized content fields of a template (no identity or usage data)."""

    name: str = ""
    category: str = DEFAULT_CATEGORY
    tags: list[str] = Field(default_factory=list)


class TemplateDraft(BaseModel):
    """Candidate template content submitted for create or upsert.
    Every field is optional; absent content fields canonicalize to ''."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    name: str | None = None
    subject: str | None = None
    action: str | None = None
    environment: str | None = None
    style: str | None = None
    lighting: str | None = None
    camera: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    favorite: bool = False
    pinned: bool = False
    thumbnail: str | None = None
    variant_of: str | None = Field(default=None, description="Parent signature")


class Template(BaseModel):
    """A saved, reusable prompt definition with usage/quality metadata.

    Serialized with camelCase keys so exports stay compatible with the
    browser workbench format.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Stable record id")
    name: str = ""
    subject: str = ""
    action: str = ""
    environment: str = ""
    style: str = ""
    lighting: str = ""
    camera: str = ""
    category: str = DEFAULT_CATEGORY
    tags: list[str] = Field(default_factory=list)
    favorite: bool = False
    pinned: bool = Field(default=False, description="Surfaces in quick-access UI")
    usage_count: int = Field(default=0, ge=0, description="Times applied")
    render_success_count: int = Field(default=0, ge=0, description="Confirmed good renders")
    last_used: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    signature: str = Field(default="", description="Content hash of canonical fields")
    quality: Quality | None = None
    thumbnail: str | None = None
    variant_of: str | None = Field(default=None, description="Parent signature")

    @property
    def prompt_text(self) -> str:
        """Non-empty prompt fields joined by single spaces."""
        return " ".join(v for v in (getattr(self, f) for f in PROMPT_FIELDS) if v)

    def to_prompt_data(self) -> PromptData:
        return PromptData(**{f: getattr(self, f) for f in PROMPT_FIELDS})

    def to_json_dict(self) -> dict:
        """Full field set with camelCase keys, JSON-safe values."""
        return self.model_dump(mode="json", by_alias=True)


class ValidationResult(BaseModel):
    """Outcome of linting a template draft."""

    ok: bool
    issues: list[str] = Field(default_factory=list)
    quality: Quality


class UpsertResult(BaseModel):
    """Which branch an upsert took, and the stored record."""

    status: Literal["created", "updated"]
    template: Template


class ImportResult(BaseModel):
    """Partial-success summary of a JSON import."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    success: bool
    message: str
    imported_count: int = 0


class BestOfResult(BaseModel):
    """A template ranked by usage and render success."""

    template: Template
    score: float


class SearchParams(BaseModel):
    """Query and facet filters for template search."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    q: str = ""
    tags: list[str] = Field(default_factory=list)
    category: str | None = None
    min_quality: Quality | None = None
    limit: int | None = Field(default=None, ge=1)


class SearchResultItem(BaseModel):
    """A ranked search hit, built from the index metadata cache."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    signature: str
    name: str
    score: float
    quality: Quality
    tags: list[str] = Field(default_factory=list)
    category: str
