"""Free-text tokenizer shared by the search index and query parsing."""

from __future__ import annotations

import re
import unicodedata

from doma_studio.constants import STOPWORDS

_SPLIT = re.compile(r"[\W_]+")
_SPACES = re.compile(r"\s+")


def tokenize(text: str | None) -> set[str]:
    """Split text into a set of significant lowercase terms.
    Examples:
        "A Cat, A Dog!!" -> {"cat", "dog"}
        "" -> set()
    """
    if not text:
        return set()
    norm = unicodedata.normalize("NFKC", text.lower())
    norm = _SPACES.sub(" ", norm).strip()
    return {w for w in _SPLIT.split(norm) if w and w not in STOPWORDS}
