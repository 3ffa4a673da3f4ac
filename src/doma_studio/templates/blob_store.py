"""Key-value blob persistence for template collections.

A blob is one JSON document stored under a well-known key. The store only
ever reads or overwrites whole blobs.
"""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path

from doma_studio.exceptions import StorageError

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")


def validate_key(key: str) -> None:
    """Raise StorageError if key is not a safe blob name."""
    if not key or len(key) > 100:
        raise StorageError("Blob key empty or too long")
    if ".." in key or not _KEY_RE.match(key):
        raise StorageError(f"Invalid blob key: {key!r}")


class BlobStore(ABC):
    """Abstract whole-blob storage."""

    @abstractmethod
    def read(self, key: str) -> str | None:
        """Return the blob for key, or None if absent."""

    @abstractmethod
    def write(self, key: str, data: str) -> None:
        """Overwrite the blob for key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove the blob for key. Returns True if it existed."""


class MemoryBlobStore(BlobStore):
    """Dict-backed blob store for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._blobs: dict[str, str] = dict(initial or {})

    def read(self, key: str) -> str | None:
        return self._blobs.get(key)

    def write(self, key: str, data: str) -> None:
        self._blobs[key] = data

    def delete(self, key: str) -> bool:
        return self._blobs.pop(key, None) is not None

    def keys(self) -> list[str]:
        return sorted(self._blobs)


class FileBlobStore(BlobStore):
    """One `<key>.json` file per blob under a root directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        validate_key(key)
        return self.root / f"{key}.json"

    def read(self, key: str) -> str | None:
        p = self.path_for(key)
        if not p.exists():
            return None
        try:
            return p.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to read blob '{key}'", str(e)) from e

    def write(self, key: str, data: str) -> None:
        """Atomically replace the blob: temp file + fsync + os.replace."""
        p = self.path_for(key)
        tmp = p.with_suffix(p.suffix + ".tmp")
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, p)
        except OSError as e:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass
            raise StorageError(f"Failed to write blob '{key}'", str(e)) from e
        logger.debug("Wrote blob %s (%d bytes)", key, len(data))

    def delete(self, key: str) -> bool:
        p = self.path_for(key)
        if not p.exists():
            return False
        try:
            p.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete blob '{key}'", str(e)) from e
        return True
