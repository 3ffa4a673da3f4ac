"""Shared types for bridge layer."""

from dataclasses import asdict, dataclass
from typing import Any

__all__ = [
    "BridgeResponse",
    "bridge_ok",
    "bridge_error",
]


@dataclass
class BridgeResponse:
    """Standard response format for bridge methods."""

    success: bool
    data: Any = None
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def bridge_ok(data: Any = None) -> dict:
    """Return a success response."""
    return BridgeResponse(success=True, data=data).to_dict()


def bridge_error(error: str) -> dict:
    """Return an error response."""
    return BridgeResponse(success=False, error=error).to_dict()
