"""Centralized constants for doma-studio."""

# Well-known blob keys
TEMPLATES_KEY = "doma-image-studio-templates"
LEGACY_PRESETS_KEY = "nano-banana-presets"

# Prompt fields in display order; the six descriptive fields of a template
PROMPT_FIELDS = ("subject", "action", "environment", "style", "lighting", "camera")
# Content fields covered by the signature (tags excluded)
SIGNATURE_FIELDS = ("name",) + PROMPT_FIELDS + ("category",)

DEFAULT_CATEGORY = "uncategorized"
MIGRATED_CATEGORY = "Migrated"
ALL_CATEGORIES = "all"

# Words dropped by the tokenizer
STOPWORDS = frozenset(
    {
        "a",
        "an",
        "the",
        "in",
        "on",
        "of",
        "for",
        "with",
        "by",
        "as",
        "is",
        "are",
        "was",
        "were",
        "to",
        "and",
        "it",
        "from",
        "or",
        "at",
        "i",
        "you",
        "he",
        "she",
        "we",
        "they",
    }
)

# Words that should never appear twice in a row
INTENSIFIERS = ("very", "ultra", "super", "extremely", "really", "highly")

# (phrase, phrase) pairs that describe incompatible lighting setups
CONTRADICTORY_LIGHTING = (("soft studio lighting", "high contrast"),)
