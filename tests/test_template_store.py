"""Tests for TemplateStore."""

import json
from unittest.mock import MagicMock, patch

import pytest

from doma_studio.config.settings import Settings
from doma_studio.constants import LEGACY_PRESETS_KEY, TEMPLATES_KEY
from doma_studio.exceptions import StorageError
from doma_studio.templates import (
    CollectionChange,
    FileBlobStore,
    MemoryBlobStore,
    PromptData,
    Quality,
    SearchParams,
    TemplatePatch,
    TemplateStore,
    build_index,
    compute_signature,
)


def _index_state(idx):
    return (idx.term, idx.tag, idx.category, idx.meta)


def _assert_index_consistent(store: TemplateStore) -> None:
    """The live index must equal one rebuilt from the stored collection."""
    assert _index_state(store.index) == _index_state(build_index(store.get_all()))


def _stored(blobs: MemoryBlobStore) -> list[dict]:
    return json.loads(blobs.read(TEMPLATES_KEY))


class TestBootstrap:
    """First load: seeding, legacy migration and backfill."""

    def test_empty_without_seeding(self, store, blobs):
        assert store.get_all() == []
        assert blobs.read(TEMPLATES_KEY) is None

    def test_seeds_presets(self):
        blobs = MemoryBlobStore()
        store = TemplateStore(blobs)
        seeded = store.get_all()
        assert len(seeded) == 3
        assert all(t.pinned for t in seeded)
        assert [t.id for t in store.get_all()] == [t.id for t in seeded]
        assert len(_stored(blobs)) == 3

    def test_pinned_sorted_by_name(self):
        store = TemplateStore(MemoryBlobStore())
        names = [t.name for t in store.get_pinned()]
        assert names == ["Cinematic Portrait", "Fantasy Landscape", "Product Mockup"]

    def test_migrates_legacy_presets(self):
        legacy = [{"name": "My Dog", "data": {"subject": "A dog", "style": "Sketch"}}]
        blobs = MemoryBlobStore({LEGACY_PRESETS_KEY: json.dumps(legacy)})
        store = TemplateStore(blobs)
        templates = store.get_all()
        assert len(templates) == 4
        dog = next(t for t in templates if t.name == "My Dog")
        assert dog.category == "migrated"
        assert dog.pinned is False
        assert blobs.read(LEGACY_PRESETS_KEY) is None

    def test_unreadable_legacy_falls_back_to_seeding(self):
        blobs = MemoryBlobStore({LEGACY_PRESETS_KEY: "{broken"})
        assert len(TemplateStore(blobs).get_all()) == 3

    def test_backfills_old_records(self, blobs):
        old = {
            "id": "old-1",
            "name": "Old Cat",
            "subject": "a cat",
            "action": "sleeping",
            "environment": "on a sofa",
            "style": "photo",
        }
        blobs.write(TEMPLATES_KEY, json.dumps([old]))
        store = TemplateStore(blobs, seed_presets=False)
        (t,) = store.get_all()
        assert t.quality == Quality.GREEN
        stored = _stored(blobs)[0]
        assert stored["quality"] == "Green"
        assert stored["usageCount"] == 0
        assert stored["signature"] == t.signature

    def test_corrupt_blob_treated_as_empty(self, blobs):
        blobs.write(TEMPLATES_KEY, "not json")
        assert TemplateStore(blobs, seed_presets=False).get_all() == []

    def test_failed_read_seeds_presets(self, blobs):
        store = TemplateStore(blobs)
        with patch.object(blobs, "read", side_effect=StorageError("disk unavailable")):
            seeded = store.get_all()
        assert len(seeded) == 3
        assert all(t.pinned for t in seeded)
        assert len(_stored(blobs)) == 3

    def test_null_usage_fields_survive_next_write(self, store, blobs, cat_draft, fox_draft):
        good = store.create(cat_draft).to_json_dict()
        old = {
            "id": "o",
            "name": "Old Fox",
            "subject": "a fox",
            "usageCount": None,
            "renderSuccessCount": None,
        }
        blobs.write(TEMPLATES_KEY, json.dumps([good, old]))
        store.invalidate()

        created = store.create(fox_draft)

        stored = {r["id"]: r for r in _stored(blobs)}
        assert list(stored) == [good["id"], "o", created.id]
        assert stored["o"]["usageCount"] == 0
        assert stored["o"]["renderSuccessCount"] == 0

    def test_unreadable_records_kept_on_write(self, store, blobs, cat_draft):
        bad = {"id": "bad", "usageCount": -5}
        blobs.write(TEMPLATES_KEY, json.dumps([bad]))

        assert store.get_all() == []
        created = store.create(cat_draft)

        assert _stored(blobs) == [created.to_json_dict(), bad]
        assert [t.id for t in store.get_all()] == [created.id]

    def test_from_settings_uses_file_store(self, tmp_path):
        settings = Settings(doma_data_dir=tmp_path, doma_seed_presets=False)
        store = TemplateStore.from_settings(settings)
        assert store.get_all() == []


class TestUpsert:
    """Upsert-by-signature dedup and merge."""

    def test_create_then_update(self, store, cat_draft):
        first = store.upsert_by_signature(cat_draft)
        second = store.upsert_by_signature(cat_draft)
        assert first.status == "created"
        assert second.status == "updated"
        assert second.template.id == first.template.id
        assert len(store.get_all()) == 1

    def test_whitespace_and_case_variants_dedupe(self, store, cat_draft):
        store.upsert_by_signature(cat_draft)
        noisy = cat_draft.model_copy(update={"subject": "  A   CAT ", "tags": ["Alley"]})
        result = store.upsert_by_signature(noisy)
        assert result.status == "updated"
        assert result.template.tags == ["alley", "cyberpunk", "neon"]
        assert len(store.get_all()) == 1

    def test_preserves_usage_counters(self, store, cat_draft):
        t = store.upsert_by_signature(cat_draft).template
        store.apply_usage(t.signature)
        merged = store.upsert_by_signature(cat_draft).template
        assert merged.usage_count == 1

    def test_accepts_mapping(self, store):
        result = store.upsert_by_signature({"name": "Fox", "subject": "a fox", "variantOf": "p"})
        assert result.template.variant_of == "p"

    def test_create_allows_duplicates_by_default(self, store, cat_draft):
        a = store.create(cat_draft)
        b = store.create(cat_draft)
        assert a.id != b.id
        assert a.signature == b.signature
        assert len(store.get_all()) == 2

    def test_create_without_duplicates_merges(self, store, cat_draft):
        a = store.create(cat_draft)
        b = store.create(cat_draft, allow_duplicates=False)
        assert a.id == b.id
        assert len(store.get_all()) == 1


class TestLookupsAndUpdates:
    """get_by_id, find_by_signature, update_by_id, delete_by_id."""

    def test_lookups(self, store, cat_draft):
        t = store.create(cat_draft)
        assert store.get_by_id(t.id) == t
        assert store.find_by_signature(t.signature) == t
        assert store.get_by_id("missing") is None
        assert store.find_by_signature("missing") is None

    def test_update_resigns(self, store, cat_draft):
        t = store.create(cat_draft)
        updated = store.update_by_id(t.id, {"style": "Watercolor", "tags": ["soft"]})
        assert updated.id == t.id
        assert updated.style == "watercolor"
        assert updated.tags == ["soft"]
        assert updated.signature != t.signature
        assert updated.updated_at > t.updated_at
        assert store.find_by_signature(t.signature) is None
        assert store.find_by_signature(updated.signature).id == t.id

    def test_update_regrades(self, store, cat_draft):
        t = store.create(cat_draft)
        patch_ = TemplatePatch(lighting="soft studio lighting, high contrast")
        updated = store.update_by_id(t.id, patch_)
        assert updated.quality == Quality.RED

    def test_update_unknown_id(self, store):
        assert store.update_by_id("missing", {"pinned": True}) is None

    def test_delete(self, store, cat_draft):
        t = store.create(cat_draft)
        assert store.delete_by_id(t.id) is True
        assert store.delete_by_id(t.id) is False
        assert store.get_all() == []

    def test_apply_usage(self, store, cat_draft):
        t = store.create(cat_draft)
        used = store.apply_usage(t.signature)
        assert used.usage_count == 1
        assert used.last_used is not None
        assert store.apply_usage("missing") is None

    def test_record_success(self, store, cat_draft):
        t = store.create(cat_draft)
        store.record_success(t.signature)
        assert store.record_success(t.signature).render_success_count == 2
        assert store.record_success("missing") is None


class TestBulk:
    """delete_many and update_many."""

    def test_delete_many_single_write(self, store, blobs, cat_draft, fox_draft, street_draft):
        ids = [store.create(d).id for d in (cat_draft, fox_draft, street_draft)]
        with patch.object(blobs, "write", wraps=blobs.write) as spy:
            removed = store.delete_many(ids[:2] + ["missing"])
        assert removed == 2
        assert spy.call_count == 1
        assert [t.id for t in store.get_all()] == [ids[2]]

    def test_delete_many_nothing_matched(self, store, blobs, cat_draft):
        store.create(cat_draft)
        with patch.object(blobs, "write", wraps=blobs.write) as spy:
            assert store.delete_many(["missing"]) == 0
        assert spy.call_count == 0

    def test_update_many(self, store, blobs, cat_draft, fox_draft):
        ids = [store.create(d).id for d in (cat_draft, fox_draft)]
        with patch.object(blobs, "write", wraps=blobs.write) as spy:
            assert store.update_many(ids, {"pinned": True, "category": "Faves"}) == 2
        assert spy.call_count == 1
        assert all(t.pinned and t.category == "faves" for t in store.get_all())


class TestIndexConsistency:
    """The live index follows every mutation."""

    def test_after_mixed_mutations(self, store, cat_draft, fox_draft, street_draft):
        cat = store.create(cat_draft)
        fox = store.create(fox_draft)
        store.index  # build before mutating
        store.upsert_by_signature(street_draft)
        store.upsert_by_signature(cat_draft.model_copy(update={"tags": ["night"]}))
        store.update_by_id(fox.id, {"style": "ink drawing", "tags": ["ink"]})
        store.apply_usage(cat.signature)
        _assert_index_consistent(store)
        store.delete_by_id(cat.id)
        store.update_many([fox.id], {"category": "Sketches"})
        _assert_index_consistent(store)

    def test_duplicate_signature_kept_after_delete(self, store, cat_draft):
        a = store.create(cat_draft)
        store.create(cat_draft)
        assert a.signature in store.index
        store.delete_by_id(a.id)
        assert a.signature in store.index
        _assert_index_consistent(store)

    def test_search_follows_mutations(self, store, cat_draft):
        t = store.create(cat_draft)
        assert [r.signature for r in store.search(SearchParams(q="cat"))] == [t.signature]
        store.update_by_id(t.id, {"subject": "a dog"})
        assert store.search({"q": "cat"}) == []
        assert len(store.search({"q": "dog"})) == 1

    def test_rebuild(self, store, cat_draft):
        store.create(cat_draft)
        idx = store.rebuild()
        assert len(idx) == 1


class TestImportExport:
    """export_all and import_all."""

    def test_export_is_camel_case_json(self, store, cat_draft):
        store.create(cat_draft)
        (record,) = json.loads(store.export_all())
        assert record["usageCount"] == 0
        assert record["renderSuccessCount"] == 0
        assert "createdAt" in record

    def test_export_selected_ids(self, store, cat_draft, fox_draft):
        cat = store.create(cat_draft)
        store.create(fox_draft)
        exported = json.loads(store.export_all([cat.id]))
        assert [r["id"] for r in exported] == [cat.id]

    def test_round_trip_into_fresh_store(self, store, cat_draft):
        t = store.create(cat_draft)
        store.apply_usage(t.signature)
        payload = store.export_all()

        target = TemplateStore(MemoryBlobStore(), seed_presets=False)
        result = target.import_all(payload)
        assert result.success is True
        assert result.imported_count == 1
        (imported,) = target.get_all()
        assert imported.id == t.id
        assert imported.signature == t.signature
        assert imported.usage_count == 1

    def test_reimport_skips_existing(self, store, cat_draft):
        store.create(cat_draft)
        result = store.import_all(store.export_all())
        assert result.success is True
        assert result.imported_count == 0
        assert "1 templates were skipped" in result.message

    def test_duplicates_within_payload_imported_once(self, store):
        record = {"name": "Fox", "subject": "a fox", "style": "ink"}
        payload = json.dumps([record, {**record, "subject": "A  FOX"}])
        result = store.import_all(payload)
        assert result.imported_count == 1
        assert result.message == (
            "1 templates imported successfully. "
            "1 templates were skipped due to missing fields or being duplicates."
        )

    def test_records_without_subject_skipped(self, store):
        result = store.import_all(json.dumps([{"name": "Empty"}, 5]))
        assert result.success is True
        assert result.imported_count == 0

    def test_recomputes_signature_and_accepts_epoch_ms(self, store):
        record = {
            "name": "Fox",
            "subject": "A Fox",
            "signature": "bogus",
            "createdAt": 1700000000000,
        }
        store.import_all(json.dumps([record]))
        (t,) = store.get_all()
        assert t.signature == compute_signature({"name": "Fox", "subject": "a fox"})
        assert t.subject == "a fox"
        assert t.created_at.year == 2023

    @pytest.mark.parametrize(
        "extra",
        [
            {"tags": None},
            {"favorite": None},
            {"usageCount": None},
            {"id": None},
            {"quality": "green"},
            {"signature": None},
        ],
    )
    def test_null_and_recomputed_fields_tolerated(self, store, extra):
        record = {"name": "Fox", "subject": "a fox", "style": "ink", **extra}
        result = store.import_all(json.dumps([record]))
        assert result.imported_count == 1
        (t,) = store.get_all()
        assert t.tags == []
        assert t.favorite is False
        assert t.usage_count == 0
        assert t.id

    def test_empty_id_gets_new_uuid(self, store):
        record = {"id": "", "name": "Fox", "subject": "a fox"}
        store.import_all(json.dumps([record]))
        (t,) = store.get_all()
        assert len(t.id) == 36

    def test_zero_last_used_imports_as_never_used(self, store):
        record = {"name": "Fox", "subject": "a fox", "lastUsed": 0}
        store.import_all(json.dumps([record]))
        (t,) = store.get_all()
        assert t.last_used is None

    def test_invalid_json(self, store):
        result = store.import_all("{not json")
        assert result.success is False
        assert result.message.startswith("Import failed:")

    def test_not_an_array(self, store):
        result = store.import_all('{"name": "x"}')
        assert result.success is False
        assert "not a valid template array" in result.message


class TestDerived:
    """Best-of ranking, variants and prompt-data saves."""

    def test_best_of_order(self, store, cat_draft, fox_draft, street_draft):
        cat = store.create(cat_draft)
        fox = store.create(fox_draft)
        store.create(street_draft)
        store.update_by_id(cat.id, {"usageCount": 5})
        store.update_by_id(fox.id, {"usageCount": 2, "renderSuccessCount": 2})
        ranked = store.get_best_of()
        assert [r.template.id for r in ranked] == [fox.id, cat.id]
        assert ranked[0].score == pytest.approx(0.6 + 0.3 * 0.4 + 0.1)
        assert ranked[1].score == pytest.approx(0.3 + 0.1)

    def test_best_of_limit_and_min_uses(self, store, cat_draft, fox_draft):
        cat = store.create(cat_draft)
        fox = store.create(fox_draft)
        store.update_by_id(cat.id, {"usageCount": 1})
        store.update_by_id(fox.id, {"usageCount": 3})
        assert len(store.get_best_of(limit=1)) == 1
        assert [r.template.id for r in store.get_best_of(min_uses=2)] == [fox.id]

    def test_best_of_empty(self, store, cat_draft):
        store.create(cat_draft)
        assert store.get_best_of() == []

    def test_create_variant(self, store, cat_draft):
        parent = store.create(cat_draft)
        store.update_by_id(parent.id, {"favorite": True, "usageCount": 3})
        result = store.create_variant(
            parent.signature, {"style": "Watercolor", "subject": "a dog", "camera": None}
        )
        v = result.template
        assert result.status == "created"
        assert v.name == "Neon Alley Cat • Var"
        assert v.style == "watercolor"
        assert v.subject == "a cat"
        assert v.camera == "wide shot"
        assert v.variant_of == parent.signature
        assert v.favorite is False
        assert v.usage_count == 0
        assert v.tags == parent.tags

    def test_create_variant_unknown_parent(self, store):
        assert store.create_variant("missing", {"style": "x"}) is None

    def test_save_from_prompt_data(self, store):
        prompt = PromptData(subject="A red fox", style="Watercolor", action="running")
        result = store.save_from_prompt_data(prompt, tags=["fox"])
        assert result.status == "created"
        assert result.template.name == "A red fox (Watercolor)"
        assert result.template.category == "uncategorized"
        again = store.save_from_prompt_data(prompt)
        assert again.status == "updated"


class TestPersistenceAndNotifications:
    """Durability reporting and change listeners."""

    def test_listener_receives_changes(self, store, cat_draft):
        events: list[CollectionChange] = []
        unsubscribe = store.subscribe(events.append)
        t = store.create(cat_draft)
        store.delete_by_id(t.id)
        assert [(e.reason, e.ids) for e in events] == [("created", [t.id]), ("deleted", [t.id])]
        unsubscribe()
        store.create(cat_draft)
        assert len(events) == 2

    def test_failing_listener_does_not_abort(self, store, cat_draft):
        store.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        t = store.create(cat_draft)
        assert store.get_by_id(t.id) is not None

    def test_write_failure_recorded(self, store, blobs, cat_draft, fox_draft):
        listener = MagicMock()
        store.subscribe(listener)
        with patch.object(blobs, "write", side_effect=StorageError("disk full")):
            t = store.create(cat_draft)
        assert t.name == "Neon Alley Cat"
        assert "disk full" in store.last_persist_error
        listener.assert_not_called()
        assert store.get_all() == []
        store.create(fox_draft)
        assert store.last_persist_error is None
        _assert_index_consistent(store)

    def test_file_backed_store_persists_across_instances(self, tmp_path, cat_draft):
        first = TemplateStore(FileBlobStore(tmp_path), seed_presets=False)
        t = first.create(cat_draft)
        second = TemplateStore(FileBlobStore(tmp_path), seed_presets=False)
        assert second.get_by_id(t.id) == t
        assert (tmp_path / f"{TEMPLATES_KEY}.json").exists()


class TestBestOfScenario:
    """Weighted ranking over (usage, successes, quality) triples."""

    def test_success_and_quality_weighting(self, store, cat_draft, fox_draft, street_draft):
        green = store.create(cat_draft)
        clash = {"lighting": "soft studio lighting, high contrast"}
        red = store.create(fox_draft.model_copy(update=clash))
        amber = store.create(street_draft.model_copy(update={"style": "very very detailed"}))
        assert (green.quality, red.quality, amber.quality) == (
            Quality.GREEN,
            Quality.RED,
            Quality.AMBER,
        )
        store.update_by_id(green.id, {"usageCount": 10, "renderSuccessCount": 8})
        store.update_by_id(red.id, {"usageCount": 10, "renderSuccessCount": 2})
        store.update_by_id(amber.id, {"usageCount": 1, "renderSuccessCount": 1})
        ranked = store.get_best_of()
        assert [r.template.id for r in ranked] == [green.id, red.id, amber.id]
        assert ranked[0].score == pytest.approx(1.0)
        assert ranked[1].score == pytest.approx(0.6 * 0.25 + 0.3 + 0.1 * 0.2)
        assert ranked[2].score == pytest.approx(0.6 * 0.125 + 0.3 * 0.1 + 0.1 * 0.6)
