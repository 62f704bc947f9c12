"""Tests for ManualEditStore (sync/edits.py)."""

from __future__ import annotations

import pytest
from conftest import make_item

from workitem_sync.errors import StateImportError
from workitem_sync.sync.edits import ManualEditStore
from workitem_sync.sync.identity import hash_object
from workitem_sync.sync.models import Priority


class TestRecordAndQuery:
    """record_edit / get_edits / clear_edits / has_manual_edit."""

    def test_record_stores_digest_of_manual_value(self):
        store = ManualEditStore()
        edit = store.record_edit("A", "title", "Generated", "Human")
        assert edit.hash == hash_object("Human")
        assert edit.original_value == "Generated"
        assert store.get_edits("A") == [edit]

    def test_record_replaces_per_field(self):
        store = ManualEditStore()
        store.record_edit("A", "title", "g", "h1")
        store.record_edit("A", "title", "g", "h2")
        store.record_edit("A", "description", None, "d")
        edits = {e.field: e for e in store.get_edits("A")}
        assert edits["title"].manual_value == "h2"
        assert len(store) == 2

    def test_has_manual_edit_requires_matching_value(self):
        store = ManualEditStore()
        store.record_edit("A", "title", "g", "Human")
        assert store.has_manual_edit("A", "title", "Human") is True
        assert store.has_manual_edit("A", "title", "Other") is False
        assert store.has_manual_edit("A", "description", "Human") is False
        assert store.has_manual_edit("B", "title", "Human") is False

    def test_clear_single_field_and_item(self):
        store = ManualEditStore()
        store.record_edit("A", "title", "g", "h")
        store.record_edit("A", "description", "g", "h")
        store.clear_edits("A", "title")
        assert [e.field for e in store.get_edits("A")] == ["description"]
        store.clear_edits("A")
        assert store.get_edits("A") == []

    def test_clear_unknown_is_noop(self):
        store = ManualEditStore()
        store.clear_edits("missing")
        store.clear_edits("missing", "title")
        assert len(store) == 0

    def test_reset(self):
        store = ManualEditStore()
        store.record_edit("A", "title", "g", "h")
        store.reset()
        assert len(store) == 0


class TestPreserve:
    """Manual edits win while still present, and are released afterwards."""

    def test_protection_then_release(self):
        store = ManualEditStore()
        store.record_edit("X", "title", "A", "B")
        desired = make_item("X", title="C")

        kept = store.preserve(make_item("X", title="B"), desired, "X")
        assert kept.title == "B"
        assert len(store.get_edits("X")) == 1

        released = store.preserve(make_item("X", title="D"), desired, "X")
        assert released.title == "C"
        assert store.get_edits("X") == []

    def test_only_edited_fields_are_pinned(self):
        store = ManualEditStore()
        store.record_edit("X", "priority", "medium", Priority.HIGH)
        current = make_item("X", title="old", priority=Priority.HIGH)
        desired = make_item("X", title="new", priority=Priority.LOW)

        result = store.preserve(current, desired, "X")
        assert result.title == "new"
        assert result.priority is Priority.HIGH

    def test_no_edits_returns_desired(self):
        desired = make_item("X", title="C")
        result = ManualEditStore().preserve(make_item("X"), desired, "X")
        assert result is desired

    def test_unknown_field_is_treated_as_stale(self):
        store = ManualEditStore()
        store.record_edit("X", "not_a_field", 1, 2)
        desired = make_item("X")
        assert store.preserve(make_item("X"), desired, "X") == desired
        assert store.get_edits("X") == []


class TestDetectEdits:
    """Tests for detect_edits()."""

    def test_records_each_differing_field(self):
        store = ManualEditStore()
        generated = make_item("X", title="gen", ai_hint=None)
        observed = make_item("X", title="human", ai_hint="use a script")

        edits = store.detect_edits(generated, observed)

        assert sorted(e.field for e in edits) == ["ai_hint", "title"]
        assert store.has_manual_edit("X", "title", "human")

    def test_identical_items_record_nothing(self):
        store = ManualEditStore()
        assert store.detect_edits(make_item("X"), make_item("X")) == []

    def test_already_recorded_value_is_not_re_recorded(self):
        store = ManualEditStore()
        generated = make_item("X", title="gen")
        observed = make_item("X", title="human")
        first = store.detect_edits(generated, observed)
        second = store.detect_edits(generated, observed)
        assert len(first) == 1
        assert second == []
        assert store.get_edits("X") == first


class TestSerialization:
    """to_dict() / from_dict()."""

    def test_round_trip(self):
        store = ManualEditStore()
        store.record_edit("A", "title", "g", "h")
        store.record_edit("B", "dependencies", [], ["A"])

        restored = ManualEditStore.from_dict(store.to_dict())

        assert restored.get_edits("A") == store.get_edits("A")
        assert restored.has_manual_edit("B", "dependencies", ["A"])

    def test_bad_payload_raises(self):
        with pytest.raises(StateImportError):
            ManualEditStore.from_dict({"A": [{"field": "title"}]})
