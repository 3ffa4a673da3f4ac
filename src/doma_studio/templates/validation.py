"""Quality linting for template drafts.

Every rule yields a human-readable issue. RED issues block saving (the
caller enforces the gate); AMBER issues are stylistic warnings.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from doma_studio.config.constants import Limits
from doma_studio.constants import CONTRADICTORY_LIGHTING, INTENSIFIERS, PROMPT_FIELDS

from .canonical import single_space
from .models import Quality, ValidationResult

_REPEATED_INTENSIFIER = re.compile(
    r"\b(" + "|".join(INTENSIFIERS) + r")\s+\1\b", re.IGNORECASE
)


def _text(v: Any) -> str:
    return v.strip() if isinstance(v, str) else ""


def validate_template(data: Mapping[str, Any] | BaseModel) -> ValidationResult:
    """Lint a draft and grade it Green/Amber/Red.

    Never raises for bad input and never mutates it.
    """
    d = data.model_dump() if isinstance(data, BaseModel) else data
    issues: list[str] = []
    red = False

    name = _text(d.get("name"))
    if not Limits.NAME_MIN <= len(name) <= Limits.NAME_MAX:
        issues.append(f"name: {Limits.NAME_MIN}-{Limits.NAME_MAX} chars required")
        red = True

    subject = _text(d.get("subject"))
    if not subject or len(subject) > Limits.SUBJECT_MAX:
        issues.append(f"subject: required, at most {Limits.SUBJECT_MAX} chars")
        red = True

    filled = [f for f in PROMPT_FIELDS if _text(d.get(f))]
    if len(filled) < Limits.MIN_FILLED_FIELDS:
        issues.append(
            f"at least {Limits.MIN_FILLED_FIELDS} descriptive fields required "
            f"({len(filled)} of {len(PROMPT_FIELDS)} filled)"
        )
        red = True

    text = single_space(" ".join(_text(d.get(f)) for f in filled)).lower()
    for a, b in CONTRADICTORY_LIGHTING:
        if a in text and b in text:
            issues.append(f"lighting contradiction: '{a}' vs '{b}'")
            red = True

    repeated = sorted({m.group(1).lower() for m in _REPEATED_INTENSIFIER.finditer(text)})
    if repeated:
        examples = ", ".join(f"'{w} {w}'" for w in repeated)
        issues.append(f"remove double intensifiers ({examples})")

    if red:
        quality = Quality.RED
    elif issues:
        quality = Quality.AMBER
    else:
        quality = Quality.GREEN
    return ValidationResult(ok=quality != Quality.RED, issues=issues, quality=quality)
