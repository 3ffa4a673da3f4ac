"""Centralized exception classes for doma-studio.

This module provides a hierarchy of exceptions for the template store and
its surfaces. Most store operations report failures through return values;
these are raised only where a caller cannot reasonably continue.
"""


class DomaStudioError(Exception):
    """Base exception for all doma-studio errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(self, message: str, details: str | None = None):
        """Initialize the exception.

        Args:
            message: User-friendly error message.
            details: Additional technical details for debugging.
        """
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}\n  Details: {self.details}"
        return self.message


class ConfigurationError(DomaStudioError):
    """Raised when configuration is missing or invalid."""

    pass


class ValidationError(DomaStudioError):
    """Raised when a template draft is rejected by the quality gate."""

    def __init__(self, message: str, issues: list[str] | None = None):
        super().__init__(message, "; ".join(issues) if issues else None)
        self.issues = list(issues or [])


class StorageError(DomaStudioError, ValueError):
    """Raised when blob storage operations fail."""

    pass


class TemplateNotFoundError(DomaStudioError, ValueError):
    """Raised when a template doesn't exist."""

    pass
