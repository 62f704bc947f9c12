"""Manual-edit bookkeeping.

A ``ManualEdit`` records that a human changed one field of one work item on
the tracker.  While the tracker still shows that human value (same digest),
``preserve`` keeps it in place of the generator's proposal.  Once the value
moves on, the edit is stale: it is cleared and the generator wins again.

The store is keyed by ``(item_id, field)``.  Concurrent access to disjoint
keys is fine; access to the same key must be serialized by the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from workitem_sync.errors import StateImportError
from workitem_sync.sync.identity import hash_object
from workitem_sync.sync.models import ManualEdit, WorkItem

logger = logging.getLogger(__name__)

# Fields a human may override on the tracker.
EDITABLE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "phase",
    "discipline_tags",
    "ai_assistable",
    "ai_hint",
    "dependencies",
    "priority",
)


class ManualEditStore:
    """In-memory store of manual edits, one per item and field."""

    def __init__(self) -> None:
        self._edits: dict[str, dict[str, ManualEdit]] = {}

    def record_edit(
        self,
        item_id: str,
        field: str,
        original_value: Any,
        manual_value: Any,
    ) -> ManualEdit:
        """Store (or replace) the edit of *field* on *item_id*."""
        edit = ManualEdit(
            item_id=item_id,
            field=field,
            original_value=original_value,
            manual_value=manual_value,
            timestamp=datetime.now(timezone.utc).isoformat(),
            hash=hash_object(manual_value),
        )
        self._edits.setdefault(item_id, {})[field] = edit
        logger.debug("Recorded manual edit of %s.%s", item_id, field)
        return edit

    def get_edits(self, item_id: str) -> list[ManualEdit]:
        return list(self._edits.get(item_id, {}).values())

    def clear_edits(self, item_id: str, field: str | None = None) -> None:
        """Drop every edit of *item_id*, or only the one on *field*."""
        if field is None:
            self._edits.pop(item_id, None)
            return
        fields = self._edits.get(item_id)
        if fields is None:
            return
        fields.pop(field, None)
        if not fields:
            del self._edits[item_id]

    def reset(self) -> None:
        self._edits.clear()

    def __len__(self) -> int:
        return sum(len(fields) for fields in self._edits.values())

    def has_manual_edit(
        self, item_id: str, field: str, current_value: Any
    ) -> bool:
        """``True`` if an edit exists and *current_value* still matches it."""
        edit = self._edits.get(item_id, {}).get(field)
        if edit is None:
            return False
        return hash_object(current_value) == edit.hash

    def preserve(
        self, current: WorkItem, desired: WorkItem, item_id: str
    ) -> WorkItem:
        """Return *desired* with still-valid manual edits re-applied.

        Each recorded edit whose value is still present on *current* wins
        over the generator; each stale edit is cleared and the desired
        value passes through.  Unknown fields are treated as stale.
        """
        overrides: dict[str, Any] = {}
        for edit in self.get_edits(item_id):
            current_value = getattr(current, edit.field, None)
            if edit.field in EDITABLE_FIELDS and self.has_manual_edit(
                item_id, edit.field, current_value
            ):
                overrides[edit.field] = current_value
                logger.debug(
                    "Preserving manual edit of %s.%s", item_id, edit.field
                )
            else:
                self.clear_edits(item_id, edit.field)
                logger.debug(
                    "Manual edit of %s.%s superseded; generator value wins",
                    item_id,
                    edit.field,
                )

        if not overrides:
            return desired
        return desired.model_copy(update=overrides)

    def detect_edits(
        self, generated: WorkItem, observed: WorkItem
    ) -> list[ManualEdit]:
        """Record an edit for each field where *observed* departs from *generated*.

        Args:
            generated: The item as last pushed by this tool.
            observed: The same item as fetched back from the tracker.

        Returns:
            The edits recorded by this call.
        """
        recorded = []
        for field in EDITABLE_FIELDS:
            generated_value = getattr(generated, field)
            observed_value = getattr(observed, field)
            if hash_object(generated_value) == hash_object(observed_value):
                continue
            existing = self._edits.get(generated.id, {}).get(field)
            if existing is not None and existing.hash == hash_object(
                observed_value
            ):
                continue
            recorded.append(
                self.record_edit(
                    generated.id, field, generated_value, observed_value
                )
            )
        return recorded

    # -- serialization --------------------------------------------------

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            item_id: [
                edit.model_dump(mode="json") for edit in fields.values()
            ]
            for item_id, fields in self._edits.items()
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManualEditStore:
        """Rebuild a store from the output of ``to_dict``.

        Raises:
            StateImportError: The data is not a mapping of edit lists.
        """
        store = cls()
        try:
            for item_id, raw_edits in data.items():
                for raw in raw_edits:
                    edit = ManualEdit.model_validate(raw)
                    store._edits.setdefault(item_id, {})[edit.field] = edit
        except (ValidationError, AttributeError, TypeError) as exc:
            raise StateImportError(
                f"Failed to import manual edits: {exc}"
            ) from exc
        return store
