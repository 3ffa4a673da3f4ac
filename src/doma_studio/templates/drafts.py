"""Helpers for turning raw prompt data into template drafts."""

from __future__ import annotations

import re

from doma_studio.config.constants import Limits
from doma_studio.constants import PROMPT_FIELDS

from .models import PromptData

_WORD_SPLIT = re.compile(r"[,\s]+")
_NOT_TAG_CHAR = re.compile(r"[^a-z0-9\-]")


def suggest_tags(prompt: PromptData, limit: int = Limits.MAX_SUGGESTED_TAGS) -> list[str]:
    """Pick candidate tags from the prompt's words (longer than two chars)."""
    out: list[str] = []
    for f in PROMPT_FIELDS:
        for w in _WORD_SPLIT.split(getattr(prompt, f) or ""):
            k = _NOT_TAG_CHAR.sub("", w.lower())
            if len(k) > 2 and k not in out:
                out.append(k)
    return out[:limit]


def make_template_name(prompt: PromptData) -> str:
    """Default display name, e.g. 'A red fox (watercolor)'."""
    s = (prompt.subject or "Untitled").strip() or "Untitled"
    st = (prompt.style or "style").strip() or "style"
    return f"{s} ({st})"
