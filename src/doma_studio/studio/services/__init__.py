"""Studio bridge services."""

from .template_service import TemplateService

__all__ = ["TemplateService"]
