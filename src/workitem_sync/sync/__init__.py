"""Idempotent work-item reconciliation engine.

Public API for keeping a generated set of work items in step with the
issues on a tracker without clobbering human edits.

Architecture
------------
The desired items (from an external generator) are diffed against the
current items (fetched from the tracker and mapped back to ``WorkItem``).
The resulting ``DiffResult`` is pushed by ``DiffApplier``; nothing in the
diff/merge path itself touches the tracker.

Modules:

- ``models``    -- ``WorkItem``, ``ManualEdit``, ``DiffResult``,
  ``SyncReport`` and friends: core data contracts.
- ``identity``  -- content hashing, idempotent file writes,
  ``StateTracker`` and managed sections.
- ``differ``    -- ``diff_items`` / ``apply_diff``: identity-keyed diff.
- ``edits``     -- ``ManualEditStore``: record and re-apply human edits.
- ``engine``    -- ``ReconciliationService``: diff + edits composition.
- ``mapper``    -- ``WorkItem`` <-> issue payload mapping.
- ``applier``   -- ``DiffApplier``: push a diff through ``IssueService``.
- ``state``     -- ``SyncStateStore``: persist tracker and edits per profile.

Usage example
-------------
::

    from workitem_sync.config_loader import load_settings
    from workitem_sync.core import IssueService, RemoteExecutor, TrackerClient
    from workitem_sync.sync import (
        DiffApplier,
        ReconcileOptions,
        ReconciliationService,
        SyncStateStore,
    )

    unified, config = load_settings()
    client = TrackerClient(config)
    issues = IssueService(client, RemoteExecutor(config.retry_config()))

    store = SyncStateStore(unified.reconcile.state_dir)
    snapshot = store.load("default")
    service = ReconciliationService(snapshot.edits)

    tracked = await issues.fetch_work_items()
    current = [t.item for t in tracked.values()]
    diff = service.diff(
        current, desired, ReconcileOptions(preserve_manual_edits=True)
    )

    applier = DiffApplier(issues, tracked, snapshot.tracker)
    report = await applier.apply(diff, dry_run=False)
    store.save("default", applier.tracker, service.edits)
"""

from .applier import DiffApplier
from .differ import apply_diff, are_equivalent, create_content_hash, diff_items
from .edits import ManualEditStore
from .engine import ReconciliationService
from .identity import StateTracker, hash_content, hash_object, write_idempotent
from .models import (
    DiffResult,
    ManualEdit,
    ModifiedItem,
    Phase,
    Priority,
    ReconcileOptions,
    SyncAction,
    SyncReport,
    SyncResult,
    TrackedIssue,
    WorkItem,
)
from .state import SyncSnapshot, SyncStateStore

__all__ = [
    "DiffApplier",
    "DiffResult",
    "ManualEdit",
    "ManualEditStore",
    "ModifiedItem",
    "Phase",
    "Priority",
    "ReconcileOptions",
    "ReconciliationService",
    "StateTracker",
    "SyncAction",
    "SyncReport",
    "SyncResult",
    "SyncSnapshot",
    "SyncStateStore",
    "TrackedIssue",
    "WorkItem",
    "apply_diff",
    "are_equivalent",
    "create_content_hash",
    "diff_items",
    "hash_content",
    "hash_object",
    "write_idempotent",
]
