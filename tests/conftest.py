"""Shared fixtures for doma-studio tests."""

from __future__ import annotations

import pytest

from doma_studio.config.settings import clear_settings_cache
from doma_studio.templates import MemoryBlobStore, TemplateDraft, TemplateStore


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    """Keep settings isolated from the developer's environment."""
    for var in ("DOMA_DATA_DIR", "DOMA_LOG_LEVEL", "DOMA_SEARCH_LIMIT", "DOMA_SEED_PRESETS"):
        monkeypatch.delenv(var, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def blobs() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def store(blobs: MemoryBlobStore) -> TemplateStore:
    """Store over an empty in-memory blob, without seeded presets."""
    return TemplateStore(blobs, seed_presets=False)


@pytest.fixture
def cat_draft() -> TemplateDraft:
    """A draft that lints Green."""
    return TemplateDraft(
        name="Neon Alley Cat",
        subject="A cat",
        action="walking along a wall",
        environment="in a neon-lit alley",
        style="cyberpunk illustration",
        lighting="neon glow",
        camera="wide shot",
        category="Illustration",
        tags=["cyberpunk", "neon"],
    )


@pytest.fixture
def fox_draft() -> TemplateDraft:
    return TemplateDraft(
        name="Watercolor Fox",
        subject="a red fox",
        action="sitting in snow",
        environment="in a quiet forest",
        style="watercolor painting",
        lighting="soft morning light",
        camera="close-up",
        category="Painting",
        tags=["watercolor"],
    )


@pytest.fixture
def street_draft() -> TemplateDraft:
    return TemplateDraft(
        name="Cyberpunk Street",
        subject="a crowded street market",
        action="bustling with vendors",
        environment="under neon signs",
        style="cyberpunk concept art",
        lighting="rain reflections",
        camera="low angle",
        category="Illustration",
        tags=["cyberpunk"],
    )
