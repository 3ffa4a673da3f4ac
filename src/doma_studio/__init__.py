"""Prompt template workbench: canonical templates, dedup, linting and search."""

__version__ = "0.1.0"
