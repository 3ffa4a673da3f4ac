"""Template store: CRUD, upsert-by-signature and bulk operations.

The whole collection lives in one blob. Every mutation reads it, applies the
change, writes it back in one piece, then patches the search index (single
record changes) or invalidates it (bulk changes). The store holds no locks;
callers issuing overlapping mutations must serialize them.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from doma_studio.config.constants import BestOf, Limits
from doma_studio.config.settings import Settings, get_settings
from doma_studio.constants import LEGACY_PRESETS_KEY, PROMPT_FIELDS, TEMPLATES_KEY
from doma_studio.exceptions import StorageError

from .blob_store import BlobStore, FileBlobStore
from .canonical import compute_signature, normalize_template
from .drafts import make_template_name
from .index import SearchIndex, build_index
from .merge import TemplatePatch, apply_patch, merge_upsert, new_template, next_timestamp
from .migration import (
    backfill_records,
    clean_record,
    migrate_legacy_presets,
    parse_legacy_presets,
    seed_templates,
)
from .models import (
    BestOfResult,
    ImportResult,
    PromptData,
    SearchParams,
    SearchResultItem,
    Template,
    TemplateDraft,
    UpsertResult,
    utc_now,
)
from .search import search_templates
from .validation import validate_template

logger = logging.getLogger(__name__)

# Fields a variant may take from its patch
VARIANT_FIELDS = ("style", "lighting", "environment", "camera")

# Import fields that are always recomputed from content
RECOMPUTED_FIELDS = ("quality", "signature")


@dataclass
class CollectionChange:
    """Notification payload sent to subscribers after a persisted mutation."""

    reason: str
    ids: list[str] = field(default_factory=list)


Listener = Callable[[CollectionChange], None]


def _as_draft(data: TemplateDraft | Mapping[str, Any]) -> TemplateDraft:
    if isinstance(data, TemplateDraft):
        return data
    return TemplateDraft.model_validate(data)


def _as_patch(data: TemplatePatch | Mapping[str, Any]) -> TemplatePatch:
    if isinstance(data, TemplatePatch):
        return data
    return TemplatePatch.model_validate(data)


class TemplateStore:
    """Persistent template collection with a lazily built search index."""

    def __init__(
        self,
        blobs: BlobStore,
        *,
        key: str = TEMPLATES_KEY,
        legacy_key: str = LEGACY_PRESETS_KEY,
        seed_presets: bool = True,
        search_limit: int = Limits.SEARCH_DEFAULT,
    ):
        self._blobs = blobs
        self._key = key
        self._legacy_key = legacy_key
        self._seed_presets = seed_presets
        self._search_limit = search_limit
        self._index: SearchIndex | None = None
        self._listeners: list[Listener] = []
        self._unreadable: list[Any] = []
        self.last_persist_error: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> TemplateStore:
        """File-backed store configured from application settings."""
        s = settings or get_settings()
        return cls(
            FileBlobStore(s.templates_dir),
            seed_presets=s.doma_seed_presets,
            search_limit=s.doma_search_limit,
        )

    # Change notifications
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a collection-changed listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, reason: str, ids: list[str]) -> None:
        change = CollectionChange(reason=reason, ids=ids)
        for fn in list(self._listeners):
            try:
                fn(change)
            except Exception as e:
                logger.warning("Template change listener failed: %s", e)

    # Persistence
    def _read_raw(self) -> list[Any]:
        """Read the collection blob. Unreadable data counts as empty."""
        try:
            raw = self._blobs.read(self._key)
        except StorageError as e:
            logger.error("Failed to read templates: %s", e)
            return []
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in templates blob: %s", e)
            return []
        if not isinstance(data, list):
            logger.error("Templates blob is not an array; treating as empty")
            return []
        return data

    def _persist(self, templates: list[Template], reason: str, ids: Iterable[str] = ()) -> bool:
        """Overwrite the collection blob. Failures are logged, not raised.

        Stored records that could not be read on the last load are written back
        unchanged after the templates.
        """
        records = [t.to_json_dict() for t in templates] + self._unreadable
        payload = json.dumps(records, ensure_ascii=False)
        try:
            self._blobs.write(self._key, payload)
        except (StorageError, OSError) as e:
            self.last_persist_error = str(e)
            logger.error("Failed to save templates (%s): %s", reason, e)
            return False
        self.last_persist_error = None
        logger.debug("Saved %d templates (%s)", len(templates), reason)
        self._notify(reason, list(ids))
        return True

    def _bootstrap(self) -> list[Template]:
        """Fill an empty collection from legacy presets, or seed built-ins."""
        try:
            legacy = self._blobs.read(self._legacy_key)
        except StorageError as e:
            logger.warning("Failed to read legacy presets: %s", e)
            legacy = None
        presets = parse_legacy_presets(legacy) if legacy else None
        if presets:
            templates = migrate_legacy_presets(presets)
            if self._persist(templates, "migrated", [t.id for t in templates]):
                try:
                    self._blobs.delete(self._legacy_key)
                except StorageError as e:
                    logger.warning("Failed to remove legacy presets: %s", e)
            self.invalidate()
            return templates
        if not self._seed_presets:
            return []
        templates = seed_templates()
        self._persist(templates, "seeded", [t.id for t in templates])
        self.invalidate()
        logger.info("Seeded %d preset templates", len(templates))
        return templates

    # Index lifecycle
    @property
    def index(self) -> SearchIndex:
        """The search index, built from the collection on first access."""
        if self._index is None:
            templates = self.get_all()
            self._index = build_index(templates)
        return self._index

    def invalidate(self) -> None:
        """Discard the index; the next access rebuilds it."""
        self._index = None

    def rebuild(self) -> SearchIndex:
        self.invalidate()
        return self.index

    def _reindex(
        self,
        old: Template | None,
        new: Template | None,
        collection: list[Template],
        persisted: bool,
    ) -> None:
        """Patch the live index for one record: remove old state, add new state."""
        if self._index is None:
            return
        if not persisted:
            # Memory and blob disagree; rebuild from the blob on next access
            self.invalidate()
            return
        if old is not None:
            self._index.remove_entry(old)
            skip = {old.id} | ({new.id} if new is not None else set())
            for t in collection:
                if t.signature == old.signature and t.id not in skip:
                    self._index.add_entry(t)
                    break
        if new is not None:
            self._index.add_entry(new)

    # Queries
    def get_all(self) -> list[Template]:
        """Load the collection, bootstrapping or backfilling it when needed."""
        raw = self._read_raw()
        if not raw:
            self._unreadable = []
            return self._bootstrap()
        templates, self._unreadable, changed = backfill_records(raw)
        if changed:
            self._persist(templates, "migrated", [t.id for t in templates])
            self.invalidate()
        return templates

    def get_by_id(self, template_id: str) -> Template | None:
        return next((t for t in self.get_all() if t.id == template_id), None)

    def find_by_signature(self, signature: str) -> Template | None:
        return next((t for t in self.get_all() if t.signature == signature), None)

    def get_pinned(self) -> list[Template]:
        """Pinned templates sorted by name."""
        return sorted((t for t in self.get_all() if t.pinned), key=lambda t: t.name.casefold())

    def search(
        self, params: SearchParams | Mapping[str, Any] | None = None
    ) -> list[SearchResultItem]:
        if isinstance(params, SearchParams):
            p = params
        else:
            p = SearchParams.model_validate(params or {})
        return search_templates(self.index, p, default_limit=self._search_limit)

    def get_best_of(
        self, limit: int = Limits.BEST_OF_DEFAULT, min_uses: int = 1
    ) -> list[BestOfResult]:
        """Rank templates used at least min_uses times by success, usage and quality."""
        pool = [t for t in self.get_all() if t.usage_count >= min_uses]
        if not pool:
            return []
        max_u = max(1, *(t.usage_count for t in pool))
        max_s = max(1, *(t.render_success_count for t in pool))
        results = []
        for t in pool:
            qw = BestOf.QUALITY_VALUE.get(t.quality.value if t.quality else "Red", 0.2)
            score = (
                BestOf.SUCCESS_WEIGHT * (t.render_success_count / max_s)
                + BestOf.USAGE_WEIGHT * (t.usage_count / max_u)
                + BestOf.QUALITY_WEIGHT * qw
            )
            results.append(BestOfResult(template=t, score=score))
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    # Single-record mutations
    def create(
        self, data: TemplateDraft | Mapping[str, Any], allow_duplicates: bool = True
    ) -> Template:
        """Append a new record.

        With allow_duplicates (the default) no signature check is made, so a
        record with the same content as an existing one can be added. Pass
        allow_duplicates=False to merge into the existing record instead.
        """
        draft = _as_draft(data)
        if not allow_duplicates:
            return self.upsert_by_signature(draft).template
        templates = self.get_all()
        tmpl = new_template(draft)
        templates.append(tmpl)
        ok = self._persist(templates, "created", [tmpl.id])
        self._reindex(None, tmpl, templates, ok)
        logger.info("Created template %s (%s)", tmpl.id, tmpl.name)
        return tmpl

    def upsert_by_signature(self, data: TemplateDraft | Mapping[str, Any]) -> UpsertResult:
        """Create the template, or merge into the record with the same signature."""
        draft = _as_draft(data)
        templates = self.get_all()
        sig = compute_signature(normalize_template(draft))
        pos = next((i for i, t in enumerate(templates) if t.signature == sig), None)
        if pos is None:
            tmpl = new_template(draft)
            templates.append(tmpl)
            ok = self._persist(templates, "created", [tmpl.id])
            self._reindex(None, tmpl, templates, ok)
            logger.info("Upsert created template %s (%s)", tmpl.id, tmpl.name)
            return UpsertResult(status="created", template=tmpl)
        existing = templates[pos]
        merged = merge_upsert(existing, draft)
        templates[pos] = merged
        ok = self._persist(templates, "updated", [merged.id])
        self._reindex(existing, merged, templates, ok)
        logger.info("Upsert merged into template %s (%s)", merged.id, merged.name)
        return UpsertResult(status="updated", template=merged)

    def update_by_id(
        self, template_id: str, patch: TemplatePatch | Mapping[str, Any]
    ) -> Template | None:
        """Apply a partial update. Returns None if the id is unknown."""
        p = _as_patch(patch)
        templates = self.get_all()
        pos = next((i for i, t in enumerate(templates) if t.id == template_id), None)
        if pos is None:
            logger.debug("Template not found for update: %s", template_id)
            return None
        old = templates[pos]
        updated = apply_patch(old, p)
        templates[pos] = updated
        ok = self._persist(templates, "updated", [updated.id])
        self._reindex(old, updated, templates, ok)
        if old.signature != updated.signature:
            logger.info("Template %s re-signed after edit", template_id)
        return updated

    def delete_by_id(self, template_id: str) -> bool:
        """Delete one record. Returns False if the id is unknown."""
        templates = self.get_all()
        target = next((t for t in templates if t.id == template_id), None)
        if target is None:
            return False
        remaining = [t for t in templates if t.id != template_id]
        ok = self._persist(remaining, "deleted", [template_id])
        self._reindex(target, None, remaining, ok)
        logger.info("Deleted template %s", template_id)
        return True

    def apply_usage(self, signature: str) -> Template | None:
        """Count one use of the template and stamp last_used."""
        t = self.find_by_signature(signature)
        if t is None:
            return None
        return self.update_by_id(
            t.id, TemplatePatch(usage_count=t.usage_count + 1, last_used=utc_now())
        )

    def record_success(self, signature: str) -> Template | None:
        """Count one render the user confirmed as good."""
        t = self.find_by_signature(signature)
        if t is None:
            return None
        return self.update_by_id(
            t.id, TemplatePatch(render_success_count=t.render_success_count + 1)
        )

    def create_variant(
        self, parent_signature: str, patch: Mapping[str, str | None]
    ) -> UpsertResult | None:
        """Derive a template from a parent, changing only look-and-feel fields.
        Returns None if the parent is unknown."""
        parent = self.find_by_signature(parent_signature)
        if parent is None:
            return None
        fields = {f: getattr(parent, f) for f in PROMPT_FIELDS}
        fields.update({k: v for k, v in patch.items() if k in VARIANT_FIELDS and v is not None})
        draft = TemplateDraft(
            name=f"{parent.name} • Var",
            category=parent.category,
            tags=list(parent.tags),
            variant_of=parent.signature,
            **fields,
        )
        return self.upsert_by_signature(draft)

    def save_from_prompt_data(
        self,
        prompt: PromptData,
        *,
        name: str | None = None,
        category: str | None = None,
        tags: list[str] | None = None,
        favorite: bool = False,
        pinned: bool = False,
        thumbnail: str | None = None,
    ) -> UpsertResult:
        """Upsert a template straight from the composer's prompt fields."""
        draft = TemplateDraft(
            name=name if name is not None else make_template_name(prompt),
            category=category if category is not None else "Uncategorized",
            tags=tags or [],
            favorite=favorite,
            pinned=pinned,
            thumbnail=thumbnail,
            **prompt.model_dump(),
        )
        return self.upsert_by_signature(draft)

    # Bulk mutations
    def delete_many(self, ids: Iterable[str]) -> int:
        """Delete every listed record with a single write. Returns the count removed."""
        id_set = set(ids)
        templates = self.get_all()
        removed = [t for t in templates if t.id in id_set]
        if not removed:
            return 0
        remaining = [t for t in templates if t.id not in id_set]
        ok = self._persist(remaining, "deleted", [t.id for t in removed])
        for t in removed:
            self._reindex(t, None, remaining, ok)
        logger.info("Deleted %d templates", len(removed))
        return len(removed)

    def update_many(self, ids: Iterable[str], patch: TemplatePatch | Mapping[str, Any]) -> int:
        """Apply one patch to every listed record with a single write."""
        id_set = set(ids)
        p = _as_patch(patch)
        templates = self.get_all()
        pairs: list[tuple[Template, Template]] = []
        for i, t in enumerate(templates):
            if t.id in id_set:
                templates[i] = apply_patch(t, p)
                pairs.append((t, templates[i]))
        if not pairs:
            return 0
        ok = self._persist(templates, "updated", [new.id for _, new in pairs])
        for old, new in pairs:
            self._reindex(old, new, templates, ok)
        logger.info("Updated %d templates", len(pairs))
        return len(pairs)

    # Import / export
    def export_all(self, ids: Iterable[str] | None = None) -> str:
        """JSON array of templates, optionally limited to the given ids."""
        templates = self.get_all()
        id_set = set(ids or [])
        if id_set:
            templates = [t for t in templates if t.id in id_set]
        return json.dumps([t.to_json_dict() for t in templates], indent=2, ensure_ascii=False)

    def import_all(self, payload: str) -> ImportResult:
        """Add templates from a JSON array, skipping duplicates and bad records.

        Missing or null optional fields take their defaults, and a record
        without an id gets a new one. Records without a subject, unreadable
        records, and records whose signature is already stored (or appeared
        earlier in the payload) are skipped. Never raises.
        """
        try:
            incoming = json.loads(payload)
            if not isinstance(incoming, list):
                raise ValueError("Imported file is not a valid template array.")
            existing = self.get_all()
            sigs = {t.signature for t in existing}
            ids = {t.id for t in existing}
            added: list[Template] = []
            for item in incoming:
                if not isinstance(item, dict) or not item.get("subject"):
                    continue
                rec = clean_record(item, drop=RECOMPUTED_FIELDS)
                if rec.get("id"):
                    rec["id"] = str(rec["id"])
                else:
                    rec.pop("id", None)
                try:
                    src = Template.model_validate(rec)
                except ValidationError as e:
                    logger.warning("Skipping unreadable import record %r: %s", item.get("id"), e)
                    continue
                canonical = normalize_template(src)
                sig = compute_signature(canonical)
                if sig in sigs:
                    continue
                tmpl = src.model_copy(
                    update={
                        **canonical.model_dump(),
                        "id": src.id if src.id not in ids else str(uuid.uuid4()),
                        "updated_at": next_timestamp(src.updated_at),
                        "signature": sig,
                        "quality": validate_template(canonical).quality,
                    }
                )
                added.append(tmpl)
                sigs.add(sig)
                ids.add(tmpl.id)
            if added:
                self._persist(existing + added, "imported", [t.id for t in added])
                self.invalidate()
            skipped = len(incoming) - len(added)
            message = f"{len(added)} templates imported successfully."
            if skipped > 0:
                message += (
                    f" {skipped} templates were skipped due to missing fields or being duplicates."
                )
            logger.info("Imported %d templates, skipped %d", len(added), skipped)
            return ImportResult(success=True, message=message, imported_count=len(added))
        except Exception as e:
            logger.warning("Template import failed: %s", e)
            return ImportResult(success=False, message=f"Import failed: {e}", imported_count=0)
