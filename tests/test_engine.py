"""Tests for ReconciliationService (sync/engine.py)."""

from __future__ import annotations

from conftest import make_item

from workitem_sync.sync.edits import ManualEditStore
from workitem_sync.sync.engine import ReconciliationService
from workitem_sync.sync.models import Phase, Priority, ReconcileOptions


def _collection():
    return [
        make_item("a", title="Alpha", discipline_tags=["ops", "dev"]),
        make_item("b", phase=Phase.DETAILED, dependencies=["a"]),
        make_item("c", priority=Priority.CRITICAL, ai_assistable=True),
    ]


class TestMerge:
    """merge(base, incoming) == apply_diff(base, diff(base, incoming))."""

    def test_merge_of_identical_collections_is_identity(self):
        service = ReconciliationService()
        items = _collection()
        assert service.merge(items, items) == items

    def test_merge_with_reordered_lists_is_identity(self):
        service = ReconciliationService()
        base = _collection()
        incoming = [
            base[0].model_copy(update={"discipline_tags": ["dev", "ops"]}),
            base[1],
            base[2],
        ]
        result = service.merge(base, incoming)
        assert result == base

    def test_merge_matches_diff_then_apply(self):
        service = ReconciliationService()
        base = [make_item("A", title="Old"), make_item("B")]
        incoming = [make_item("A", title="New"), make_item("C")]

        merged = service.merge(base, incoming)
        diff = service.diff(base, incoming)
        assert merged == service.apply_diff(base, diff)
        assert sorted(i.id for i in merged) == ["A", "C"]

    def test_merge_accepts_generators(self):
        service = ReconciliationService()
        items = _collection()
        assert service.merge(iter(items), iter(items)) == items


class TestManualEditIntegration:
    """Preservation is applied only when requested."""

    def test_preserve_flag_pins_human_value(self):
        service = ReconciliationService()
        service.record_manual_edit("A", "title", "Generated", "Human")
        current = [make_item("A", title="Human")]
        desired = [make_item("A", title="Regenerated")]

        preserved = service.diff(
            current, desired, ReconcileOptions(preserve_manual_edits=True)
        )
        assert preserved.modified[0].after.title == "Human"

        plain = service.diff(current, desired)
        assert plain.modified[0].after.title == "Regenerated"

    def test_preserved_after_equivalent_to_before(self):
        """A fully pinned item ends up equivalent to the current one."""
        service = ReconciliationService()
        service.record_manual_edit("A", "title", "Generated", "Human")
        current = [make_item("A", title="Human")]
        desired = [make_item("A", title="Regenerated")]

        diff = service.diff(
            current, desired, ReconcileOptions(preserve_manual_edits=True)
        )
        mod = diff.modified[0]
        assert service.are_equivalent(mod.before, mod.after)

    def test_stale_edit_is_released(self):
        service = ReconciliationService()
        service.record_manual_edit("A", "title", "Generated", "Human")
        current = [make_item("A", title="Someone else")]
        desired = [make_item("A", title="Regenerated")]

        merged = service.merge(
            current, desired, ReconcileOptions(preserve_manual_edits=True)
        )
        assert merged[0].title == "Regenerated"
        assert service.get_manual_edits("A") == []

    def test_edit_bookkeeping_passthroughs(self):
        service = ReconciliationService()
        service.record_manual_edit("A", "title", "g", "h")
        assert service.has_manual_edit("A", "title", "h")
        service.clear_manual_edits("A", "title")
        assert not service.has_manual_edit("A", "title", "h")

    def test_reset_clears_edits(self):
        store = ManualEditStore()
        service = ReconciliationService(store)
        service.record_manual_edit("A", "title", "g", "h")
        service.reset()
        assert len(store) == 0

    def test_services_do_not_share_state(self):
        first = ReconciliationService()
        second = ReconciliationService()
        first.record_manual_edit("A", "title", "g", "h")
        assert second.get_manual_edits("A") == []


class TestEquivalencePassthrough:
    def test_content_hash_matches_for_equivalent_items(self):
        a = make_item("x", template_id="one")
        b = make_item("x", template_id="two")
        assert ReconciliationService.create_content_hash(
            a
        ) == ReconciliationService.create_content_hash(b)
