"""Identity-keyed set difference between two work-item collections.

``diff_items`` partitions ``current`` and ``desired`` into added, modified,
removed and unchanged items; ``apply_diff`` turns a partition back into the
next state.  Both are pure functions: the only state they touch is the
optional ``ManualEditStore`` passed in for preservation.

Comparison rules:

* Only whitelisted fields are compared (``COMPARED_FIELDS``), so
  provenance such as ``template_id`` never produces a change.
* List fields compare order-independently.
* ``custom_comparators`` override equality per field.
* Duplicate ids within one input collapse silently, last one wins.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, Any, Iterable

from workitem_sync.sync.identity import hash_object
from workitem_sync.sync.models import (
    DiffResult,
    ModifiedItem,
    ReconcileOptions,
    WorkItem,
)

if TYPE_CHECKING:
    from workitem_sync.sync.edits import ManualEditStore

logger = logging.getLogger(__name__)

COMPARED_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "phase",
    "discipline_tags",
    "ai_assistable",
    "ai_hint",
    "dependencies",
    "priority",
)

_DEFAULT_OPTIONS = ReconcileOptions()


def index_by_id(items: Iterable[WorkItem], label: str) -> dict[str, WorkItem]:
    """Map items by id; a repeated id keeps its last occurrence."""
    items = list(items)
    indexed = {item.id: item for item in items}
    if len(indexed) != len(items):
        dupes = [
            item_id
            for item_id, count in Counter(i.id for i in items).items()
            if count > 1
        ]
        logger.debug(
            "Duplicate ids in %s collection, keeping last: %s",
            label,
            ", ".join(sorted(dupes)),
        )
    return indexed


def _lists_equal(a: list[Any], b: list[Any]) -> bool:
    if len(a) != len(b):
        return False
    return sorted(a, key=repr) == sorted(b, key=repr)


def get_item_changes(
    current: WorkItem,
    desired: WorkItem,
    options: ReconcileOptions | None = None,
) -> list[str]:
    """Return the names of compared fields whose values differ."""
    options = options or _DEFAULT_OPTIONS
    fields = (
        options.allow_field_updates
        if options.allow_field_updates is not None
        else COMPARED_FIELDS
    )
    ignored = set(options.ignore_fields)
    changes: list[str] = []

    for field in fields:
        if field in ignored or field == "id":
            continue
        current_value = getattr(current, field)
        desired_value = getattr(desired, field)

        comparator = options.custom_comparators.get(field)
        if comparator is not None:
            changed = not comparator(current_value, desired_value)
        elif isinstance(current_value, list) and isinstance(
            desired_value, list
        ):
            changed = not _lists_equal(current_value, desired_value)
        else:
            changed = current_value != desired_value

        if changed:
            changes.append(field)

    return changes


def diff_items(
    current: Iterable[WorkItem],
    desired: Iterable[WorkItem],
    options: ReconcileOptions | None = None,
    edits: ManualEditStore | None = None,
) -> DiffResult:
    """Partition *current* and *desired* by identity.

    Args:
        current: Items as last observed on the tracker.
        desired: Items produced by the generator.
        options: Comparison and preservation options.
        edits: Manual edit store consulted when
            ``options.preserve_manual_edits`` is set.

    Returns:
        A ``DiffResult`` whose ``unchanged`` entries are the *current*
        items and whose ``modified.after`` entries are the desired items
        with any still-valid manual edits re-applied.
    """
    options = options or _DEFAULT_OPTIONS
    current_map = index_by_id(current, "current")
    desired_map = index_by_id(desired, "desired")

    logger.info(
        "Computing work item diff: %d current, %d desired",
        len(current_map),
        len(desired_map),
    )

    added: list[WorkItem] = []
    modified: list[ModifiedItem] = []
    unchanged: list[WorkItem] = []

    for item_id, desired_item in desired_map.items():
        current_item = current_map.get(item_id)
        if current_item is None:
            added.append(desired_item)
            continue

        changes = get_item_changes(current_item, desired_item, options)
        if not changes:
            unchanged.append(current_item)
            continue

        after = desired_item
        if options.preserve_manual_edits and edits is not None:
            after = edits.preserve(current_item, desired_item, item_id)
        modified.append(
            ModifiedItem(before=current_item, after=after, changes=changes)
        )

    removed = [
        item
        for item_id, item in current_map.items()
        if item_id not in desired_map
    ]

    result = DiffResult(
        added=added, modified=modified, removed=removed, unchanged=unchanged
    )
    logger.info("Work item diff computed: %s", result.summary())
    return result


def apply_diff(current: Iterable[WorkItem], diff: DiffResult) -> list[WorkItem]:
    """Return the next state: unchanged, then added, then modified.after.

    Removed items are dropped; deleting them on the tracker is the
    caller's job.  *current* is accepted for symmetry with ``diff_items``
    and is not consulted.
    """
    result = [*diff.unchanged, *diff.added]
    result.extend(mod.after for mod in diff.modified)
    logger.info("Applied diff: %d items in final result", len(result))
    return result


def create_content_hash(item: WorkItem) -> str:
    """Digest of the compared fields, with list fields sorted."""
    content: dict[str, Any] = {}
    for field in COMPARED_FIELDS:
        value = getattr(item, field)
        if isinstance(value, list):
            value = sorted(value, key=repr)
        content[field] = value
    return hash_object(content)


def are_equivalent(a: WorkItem, b: WorkItem) -> bool:
    """``True`` if *a* and *b* agree on every compared field."""
    return create_content_hash(a) == create_content_hash(b)
