"""Template library service."""

from __future__ import annotations

import logging
from typing import Any

from doma_studio.exceptions import TemplateNotFoundError, ValidationError
from doma_studio.templates import (
    Quality,
    SearchParams,
    Template,
    TemplateDraft,
    TemplatePatch,
    TemplateStore,
    validate_template,
)

from ..utils.bridge_types import bridge_error, bridge_ok

logger = logging.getLogger(__name__)


def _summary(t: Template) -> dict:
    return t.to_json_dict()


class TemplateService:
    """Template CRUD, search, ranking and import/export for the UI."""

    def __init__(self, store: TemplateStore):
        self._store = store

    def _ok(self, data: Any = None) -> dict:
        """Success response, flagged when the last write did not reach storage."""
        err = self._store.last_persist_error
        if err is None:
            return bridge_ok(data)
        payload = dict(data) if isinstance(data, dict) else {"result": data}
        payload["durable"] = False
        payload["warning"] = f"Changes may not have been saved: {err}"
        return bridge_ok(payload)

    def get_templates(self) -> dict:
        """Get every stored template."""
        try:
            return bridge_ok({"templates": [_summary(t) for t in self._store.get_all()]})
        except Exception as e:
            return bridge_error(str(e))

    def get_pinned(self) -> dict:
        """Get pinned templates sorted by name."""
        try:
            return bridge_ok({"templates": [_summary(t) for t in self._store.get_pinned()]})
        except Exception as e:
            return bridge_error(str(e))

    def search(
        self,
        q: str = "",
        tags: list[str] | None = None,
        category: str | None = None,
        min_quality: str | None = None,
        limit: int | None = None,
    ) -> dict:
        """Ranked search over the template library."""
        try:
            params = SearchParams(
                q=q,
                tags=tags or [],
                category=category,
                min_quality=Quality(min_quality) if min_quality else None,
                limit=limit,
            )
            results = self._store.search(params)
            return bridge_ok(
                {"results": [r.model_dump(mode="json", by_alias=True) for r in results]}
            )
        except Exception as e:
            return bridge_error(str(e))

    def validate(self, draft: dict) -> dict:
        """Lint a draft without saving it."""
        try:
            result = validate_template(TemplateDraft.model_validate(draft))
            return bridge_ok(result.model_dump(mode="json"))
        except Exception as e:
            return bridge_error(str(e))

    def save_template(self, draft: dict, confirm: bool = False) -> dict:
        """Validate then upsert a draft.

        RED drafts are refused with their issues. AMBER drafts are saved only
        with confirm=True; otherwise the issues come back for the user to review.
        """
        try:
            d = TemplateDraft.model_validate(draft)
            result = validate_template(d)
            if result.quality == Quality.RED:
                raise ValidationError("Template has errors", result.issues)
            if result.quality == Quality.AMBER and not confirm:
                return bridge_ok(
                    {"saved": False, "needsConfirmation": True, "issues": result.issues}
                )
            up = self._store.upsert_by_signature(d)
            return self._ok(
                {
                    "saved": True,
                    "status": up.status,
                    "template": _summary(up.template),
                    "issues": result.issues,
                }
            )
        except ValidationError as e:
            logger.info("Refused template draft: %s", "; ".join(e.issues))
            return bridge_error(str(e))
        except Exception as e:
            return bridge_error(str(e))

    def update_template(self, template_id: str, patch: dict) -> dict:
        """Apply a partial update to one template."""
        try:
            updated = self._store.update_by_id(template_id, TemplatePatch.model_validate(patch))
            if updated is None:
                return bridge_error(f"Template '{template_id}' not found")
            return self._ok({"template": _summary(updated)})
        except Exception as e:
            return bridge_error(str(e))

    def delete_template(self, template_id: str) -> dict:
        """Delete one template."""
        try:
            if not self._store.delete_by_id(template_id):
                return bridge_error(f"Template '{template_id}' not found")
            return self._ok({"deleted": template_id})
        except Exception as e:
            return bridge_error(str(e))

    def delete_templates(self, ids: list[str]) -> dict:
        """Delete several templates with one write."""
        try:
            return self._ok({"deleted": self._store.delete_many(ids)})
        except Exception as e:
            return bridge_error(str(e))

    def update_templates(self, ids: list[str], patch: dict) -> dict:
        """Apply one patch (e.g. pin, category) to several templates."""
        try:
            n = self._store.update_many(ids, TemplatePatch.model_validate(patch))
            return self._ok({"updated": n})
        except Exception as e:
            return bridge_error(str(e))

    def apply_template(self, signature: str) -> dict:
        """Count a use and return the template's prompt fields for the composer."""
        try:
            t = self._store.apply_usage(signature)
            if t is None:
                raise TemplateNotFoundError(f"Template '{signature}' not found")
            return self._ok(
                {
                    "prompt": t.to_prompt_data().model_dump(by_alias=True),
                    "template": _summary(t),
                }
            )
        except Exception as e:
            return bridge_error(str(e))

    def record_success(self, signature: str) -> dict:
        """Count a render the user marked as good."""
        try:
            t = self._store.record_success(signature)
            if t is None:
                raise TemplateNotFoundError(f"Template '{signature}' not found")
            return self._ok({"renderSuccessCount": t.render_success_count})
        except Exception as e:
            return bridge_error(str(e))

    def create_variant(self, parent_signature: str, patch: dict) -> dict:
        """Derive a variant that changes style, lighting, environment or camera."""
        try:
            up = self._store.create_variant(parent_signature, patch)
            if up is None:
                raise TemplateNotFoundError(f"Parent template '{parent_signature}' not found")
            return self._ok({"status": up.status, "template": _summary(up.template)})
        except Exception as e:
            return bridge_error(str(e))

    def get_best_of(self, limit: int = 20, min_uses: int = 1) -> dict:
        """Top templates by render success, usage and quality."""
        try:
            ranked = self._store.get_best_of(limit=limit, min_uses=min_uses)
            return bridge_ok(
                {"results": [{"template": _summary(r.template), "score": r.score} for r in ranked]}
            )
        except Exception as e:
            return bridge_error(str(e))

    def export_templates(self, ids: list[str] | None = None) -> dict:
        """Export templates (all, or the given ids) as a JSON string."""
        try:
            return bridge_ok({"json": self._store.export_all(ids)})
        except Exception as e:
            return bridge_error(str(e))

    def import_templates(self, payload: str) -> dict:
        """Import templates from a JSON string, skipping duplicates."""
        try:
            result = self._store.import_all(payload)
            if not result.success:
                return bridge_error(result.message)
            return self._ok(result.model_dump(by_alias=True))
        except Exception as e:
            return bridge_error(str(e))
