"""Reconciliation orchestrator.

``ReconciliationService`` composes the differ with a ``ManualEditStore``.
It is constructed once by the caller and passed where needed; tests call
``reset()`` instead of relying on a module-level instance.

Nothing here touches the tracker.  Callers inspect the returned
``DiffResult`` and push changes through ``DiffApplier``.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from workitem_sync.sync import differ
from workitem_sync.sync.edits import ManualEditStore
from workitem_sync.sync.models import (
    DiffResult,
    ManualEdit,
    ReconcileOptions,
    WorkItem,
)

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Diff, apply and merge work-item collections.

    Args:
        edits: Store of recorded manual edits.  A fresh one is created
            when omitted.
    """

    def __init__(self, edits: ManualEditStore | None = None) -> None:
        self.edits = edits if edits is not None else ManualEditStore()

    def diff(
        self,
        current: Iterable[WorkItem],
        desired: Iterable[WorkItem],
        options: ReconcileOptions | None = None,
    ) -> DiffResult:
        return differ.diff_items(current, desired, options, self.edits)

    def apply_diff(
        self, current: Iterable[WorkItem], diff: DiffResult
    ) -> list[WorkItem]:
        return differ.apply_diff(current, diff)

    def merge(
        self,
        base: Iterable[WorkItem],
        incoming: Iterable[WorkItem],
        options: ReconcileOptions | None = None,
    ) -> list[WorkItem]:
        """Return the next state for *base* given the *incoming* desired set.

        Equivalent to ``apply_diff(base, diff(base, incoming, options))``.
        """
        base = list(base)
        result = self.apply_diff(base, self.diff(base, incoming, options))
        logger.debug("Merged %d base items into %d", len(base), len(result))
        return result

    # -- manual edits ---------------------------------------------------

    def record_manual_edit(
        self,
        item_id: str,
        field: str,
        original_value: Any,
        manual_value: Any,
    ) -> ManualEdit:
        return self.edits.record_edit(
            item_id, field, original_value, manual_value
        )

    def get_manual_edits(self, item_id: str) -> list[ManualEdit]:
        return self.edits.get_edits(item_id)

    def clear_manual_edits(
        self, item_id: str, field: str | None = None
    ) -> None:
        self.edits.clear_edits(item_id, field)

    def has_manual_edit(
        self, item_id: str, field: str, current_value: Any
    ) -> bool:
        return self.edits.has_manual_edit(item_id, field, current_value)

    # -- equivalence ----------------------------------------------------

    @staticmethod
    def create_content_hash(item: WorkItem) -> str:
        return differ.create_content_hash(item)

    @staticmethod
    def are_equivalent(a: WorkItem, b: WorkItem) -> bool:
        return differ.are_equivalent(a, b)

    def reset(self) -> None:
        """Forget all recorded manual edits."""
        self.edits.reset()
