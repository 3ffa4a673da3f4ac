"""Prompt template library: canonical signatures, linting, search and storage."""

from .blob_store import BlobStore, FileBlobStore, MemoryBlobStore
from .canonical import compute_signature, normalize_template
from .index import SearchIndex, build_index
from .merge import TemplatePatch
from .models import (
    BestOfResult,
    ImportResult,
    PromptData,
    Quality,
    SearchParams,
    SearchResultItem,
    Template,
    TemplateDraft,
    UpsertResult,
    ValidationResult,
)
from .search import search_templates
from .store import CollectionChange, TemplateStore
from .tokenize import tokenize
from .validation import validate_template

__all__ = [
    "BestOfResult",
    "BlobStore",
    "CollectionChange",
    "FileBlobStore",
    "ImportResult",
    "MemoryBlobStore",
    "PromptData",
    "Quality",
    "SearchIndex",
    "SearchParams",
    "SearchResultItem",
    "Template",
    "TemplateDraft",
    "TemplatePatch",
    "TemplateStore",
    "UpsertResult",
    "ValidationResult",
    "build_index",
    "compute_signature",
    "normalize_template",
    "search_templates",
    "tokenize",
    "validate_template",
]
