"""Pydantic models for the reconciliation engine.

Defines the core data contracts used across all sync modules:

- ``WorkItem``: A generated unit of work mirrored as a tracker issue.
- ``ManualEdit``: A human override of one field on one item.
- ``ModifiedItem`` / ``DiffResult``: Output of the state differ.
- ``ReconcileOptions``: Knobs for a single diff/merge call.
- ``OperationState``: Idempotency record for one unit of work.
- ``RateLimitInfo``: Remote call budget snapshot.
- ``SyncAction``, ``SyncResult``, ``SyncReport``: Outcome of pushing a
  diff to the remote tracker.
- ``TrackedIssue``: A managed tracker issue mapped back to a work item.

Records are frozen (immutable) for safety.  ``DiffResult`` and
``BatchOutcome`` are accumulated in place and therefore stay mutable.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field


class Phase(str, Enum):
    """Project phase a work item belongs to."""

    CONCEPT = "concept"
    PRELIM = "prelim"
    DETAILED = "detailed"
    CRITICAL = "critical"
    FINAL = "final"


class Priority(str, Enum):
    """Ordered task priority, ``CRITICAL`` being the most urgent."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """0 for critical up to 3 for low."""
        return list(Priority).index(self)


class WorkItem(BaseModel):
    """A generated work item.

    Attributes:
        id: Stable identifier, assigned once by the generator.
        title: Issue title.
        description: Issue body (without tracker metadata).
        phase: Project phase tag.
        discipline_tags: One or more category tags.
        ai_assistable: Whether automated assistance is permitted.
        ai_hint: Optional hint for automated assistance.
        dependencies: Ordered ids of items this one depends on.
        priority: Task priority.
        estimated_hours: Optional effort estimate.
        template_id: Provenance of the item; never compared.
    """

    id: str
    title: str
    description: str | None = None
    phase: Phase
    discipline_tags: list[str] = Field(min_length=1)
    ai_assistable: bool = False
    ai_hint: str | None = None
    dependencies: list[str] = []
    priority: Priority = Priority.MEDIUM
    estimated_hours: float | None = None
    template_id: str | None = None

    model_config = {"frozen": True}


class ManualEdit(BaseModel):
    """A human-authored override of one field on one work item.

    Attributes:
        item_id: Id of the edited work item.
        field: Name of the edited ``WorkItem`` field.
        original_value: Last generated value before the human edit.
        manual_value: Value the human wrote.
        timestamp: ISO 8601 UTC time the edit was recorded.
        hash: Content digest of ``manual_value``.
    """

    item_id: str
    field: str
    original_value: Any = None
    manual_value: Any = None
    timestamp: str
    hash: str

    model_config = {"frozen": True}


class ModifiedItem(BaseModel):
    """An item present on both sides whose compared fields differ."""

    before: WorkItem
    after: WorkItem
    changes: list[str]

    model_config = {"frozen": True}


class DiffResult(BaseModel):
    """Partition of ``current`` and ``desired`` items by identity.

    The four lists are disjoint by id and together cover every id seen in
    either input collection.
    """

    added: list[WorkItem] = []
    modified: list[ModifiedItem] = []
    removed: list[WorkItem] = []
    unchanged: list[WorkItem] = []

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.removed)

    def summary(self) -> dict[str, int]:
        """Return partition sizes keyed by partition name."""
        return {
            "added": len(self.added),
            "modified": len(self.modified),
            "removed": len(self.removed),
            "unchanged": len(self.unchanged),
        }


Comparator = Callable[[Any, Any], bool]


class ReconcileOptions(BaseModel):
    """Options for a single diff or merge call.

    Attributes:
        preserve_manual_edits: Re-apply recorded human edits to the
            ``after`` side of modified items.
        allow_field_updates: If set, replaces the default list of
            compared fields.
        ignore_fields: Fields never compared.
        custom_comparators: Per-field equality functions returning
            ``True`` when the two values are considered equal.
    """

    preserve_manual_edits: bool = False
    allow_field_updates: list[str] | None = None
    ignore_fields: list[str] = []
    custom_comparators: dict[str, Comparator] = {}

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


class OperationState(BaseModel):
    """Idempotency record for one guarded unit of work."""

    id: str
    hash: str
    timestamp: str
    metadata: dict[str, Any] = {}

    model_config = {"frozen": True}


class RateLimitInfo(BaseModel):
    """Remote call budget as reported by the tracker."""

    limit: int
    remaining: int
    reset: datetime
    used: int

    model_config = {"frozen": True}


class BatchOutcome(BaseModel):
    """Result of ``execute_batch_idempotent``.

    Attributes:
        completed: Ids executed and recorded during this run.
        skipped: Ids whose content was unchanged since the last record.
        errors: Failed ids mapped to their error message.
    """

    completed: list[str] = []
    skipped: list[str] = []
    errors: dict[str, str] = {}


class SyncAction(str, Enum):
    """Remote operation chosen for one work item."""

    CREATE = "create"
    UPDATE = "update"
    CLOSE = "close"
    SKIP = "skip"


class SyncResult(BaseModel):
    """Outcome of pushing one work item to the tracker.

    Attributes:
        item_id: Work item id.
        action: Action that was performed (or planned, on dry runs).
        success: Whether the remote call succeeded.
        issue_number: Tracker issue number, when known.
        error: Error message if the action failed.
        error_kind: ``ErrorKind`` value of the failure, if any.
    """

    item_id: str
    action: SyncAction
    success: bool
    issue_number: int | None = None
    error: str | None = None
    error_kind: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one diff application run."""

    dry_run: bool = False
    results: list[SyncResult] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def by_action(self, action: SyncAction) -> list[SyncResult]:
        return [r for r in self.results if r.action == action]

    @property
    def created(self) -> list[SyncResult]:
        return self.by_action(SyncAction.CREATE)

    @property
    def updated(self) -> list[SyncResult]:
        return self.by_action(SyncAction.UPDATE)

    @property
    def closed(self) -> list[SyncResult]:
        return self.by_action(SyncAction.CLOSE)

    @property
    def skipped(self) -> list[SyncResult]:
        return self.by_action(SyncAction.SKIP)

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    @property
    def retryable_errors(self) -> list[SyncResult]:
        """Failures worth queueing for a later run."""
        return [
            r for r in self.errors if r.error_kind == "retry_exhausted"
        ]


class TrackedIssue(BaseModel):
    """A tracker issue that carries a work-item identity marker.

    Attributes:
        number: Tracker issue number.
        state: ``open`` or ``closed``.
        item: The issue mapped back into a ``WorkItem``.
    """

    number: int
    state: str = "open"
    item: WorkItem

    model_config = {"frozen": True}
