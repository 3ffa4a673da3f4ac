"""Tunable limits and scoring weights."""


# Template content limits
class Limits:
    NAME_MIN = 3
    NAME_MAX = 60
    SUBJECT_MAX = 300
    MIN_FILLED_FIELDS = 4
    MAX_TAGS = 10
    MAX_SUGGESTED_TAGS = 8
    SEARCH_DEFAULT = 50
    BEST_OF_DEFAULT = 20


# Search ranking weights
class Scoring:
    TEXT_WEIGHT = 0.6
    TAG_WEIGHT = 0.2
    CATEGORY_WEIGHT = 0.1
    QUALITY_WEIGHT = 0.1
    # Text contribution used when the query has no text terms
    NEUTRAL_TEXT = 0.5
    TAG_STEP = 0.1
    TAG_CAP = 0.3
    CATEGORY_BONUS = 0.1
    QUALITY_BONUS = {"Green": 0.1, "Amber": 0.05, "Red": 0.0}
    CONCISE_BONUS = 0.05
    MIN_SCORE = 0.15


# Best-of ranking weights
class BestOf:
    SUCCESS_WEIGHT = 0.6
    USAGE_WEIGHT = 0.3
    QUALITY_WEIGHT = 0.1
    QUALITY_VALUE = {"Green": 1.0, "Amber": 0.6, "Red": 0.2}
