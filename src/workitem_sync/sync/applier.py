"""Push a ``DiffResult`` to the tracker.

``DiffApplier`` turns each partition of a diff into issue operations:

1. **added** -- create issues, in batches with a short pause between them.
2. **modified** -- update the issue, unless the two sides are equivalent
   under the compared fields or the ``StateTracker`` has already recorded
   the exact payload.
3. **removed** -- close the issue when ``close_removed`` is set.

Error handling is per item: a ``RetryExhaustedError`` or
``TerminalRemoteError`` marks that item failed in the report and the run
continues.  Failed items are not recorded in the tracker, so the next run
retries them.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from workitem_sync.core.async_utils import batched, gather_limited
from workitem_sync.errors import RemoteError, get_error_kind
from workitem_sync.sync.differ import COMPARED_FIELDS, are_equivalent
from workitem_sync.sync.identity import StateTracker
from workitem_sync.sync.mapper import item_to_issue_payload
from workitem_sync.sync.models import (
    DiffResult,
    ModifiedItem,
    SyncAction,
    SyncReport,
    SyncResult,
    TrackedIssue,
    WorkItem,
)

if TYPE_CHECKING:
    from workitem_sync.core.issues import IssueService

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_PAUSE_SECONDS = 0.2


def operation_id(item_id: str) -> str:
    """Idempotency key of the issue mirroring *item_id*."""
    return f"issue:{item_id}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DiffApplier:
    """Apply diffs to the tracker through an ``IssueService``.

    Args:
        issues: Service used for every remote call.
        tracked: Managed issues keyed by work item id, as returned by
            ``IssueService.fetch_work_items``.
        tracker: Idempotency records; a fresh one when omitted.
        close_removed: Close issues whose item left the desired set.
        batch_size: Creates issued concurrently per batch.
        batch_pause_seconds: Pause between create batches.
        sleep: Coroutine used for the pause.
    """

    def __init__(
        self,
        issues: IssueService,
        tracked: dict[str, TrackedIssue] | None = None,
        tracker: StateTracker | None = None,
        close_removed: bool = True,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_pause_seconds: float = DEFAULT_BATCH_PAUSE_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.issues = issues
        self.tracked = dict(tracked or {})
        self.tracker = tracker if tracker is not None else StateTracker()
        self.close_removed = close_removed
        self.batch_size = batch_size
        self.batch_pause_seconds = batch_pause_seconds
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def apply(self, diff: DiffResult, dry_run: bool = False) -> SyncReport:
        """Apply *diff* and report what was (or would be) done.

        Args:
            diff: Output of ``diff_items`` / ``ReconciliationService.diff``.
            dry_run: If ``True``, plan actions without calling the tracker.
        """
        started_at = _now()
        results: list[SyncResult] = []

        if dry_run:
            results.extend(self._plan(diff))
        else:
            results.extend(await self._create_all(diff.added))
            for mod in diff.modified:
                results.append(await self._update(mod))
            for item in diff.removed:
                results.append(await self._close(item))

        report = SyncReport(
            dry_run=dry_run,
            results=results,
            started_at=started_at,
            completed_at=_now(),
        )
        logger.info(
            "Sync %s: %d created, %d updated, %d closed, %d skipped, "
            "%d failed",
            "planned" if dry_run else "applied",
            len(report.created),
            len(report.updated),
            len(report.closed),
            len(report.skipped),
            len(report.errors),
        )
        return report

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _needs_update(self, mod: ModifiedItem) -> bool:
        # The content hash only covers COMPARED_FIELDS; changes reported on
        # other fields (allow_field_updates) must still be pushed.
        in_hash = set(mod.changes) <= set(COMPARED_FIELDS)
        if in_hash and are_equivalent(mod.before, mod.after):
            return False
        payload = item_to_issue_payload(mod.after)
        return self.tracker.has_changed(operation_id(mod.after.id), payload)

    def _plan(self, diff: DiffResult) -> list[SyncResult]:
        planned = [
            SyncResult(item_id=item.id, action=SyncAction.CREATE, success=True)
            for item in diff.added
        ]
        for mod in diff.modified:
            tracked = self.tracked.get(mod.after.id)
            planned.append(
                SyncResult(
                    item_id=mod.after.id,
                    action=(
                        SyncAction.UPDATE
                        if self._needs_update(mod)
                        else SyncAction.SKIP
                    ),
                    success=True,
                    issue_number=tracked.number if tracked else None,
                )
            )
        for item in diff.removed:
            tracked = self.tracked.get(item.id)
            planned.append(
                SyncResult(
                    item_id=item.id,
                    action=(
                        SyncAction.CLOSE
                        if self.close_removed
                        else SyncAction.SKIP
                    ),
                    success=True,
                    issue_number=tracked.number if tracked else None,
                )
            )
        return planned

    # ------------------------------------------------------------------
    # Per-item actions
    # ------------------------------------------------------------------

    def _failure(
        self,
        item_id: str,
        action: SyncAction,
        exc: Exception,
        issue_number: int | None = None,
    ) -> SyncResult:
        logger.error("Failed to %s %s: %s", action.value, item_id, exc)
        return SyncResult(
            item_id=item_id,
            action=action,
            success=False,
            issue_number=issue_number,
            error=str(exc),
            error_kind=get_error_kind(exc),
        )

    async def _create_all(self, items: list[WorkItem]) -> list[SyncResult]:
        results: list[SyncResult] = []
        batches = batched(items, self.batch_size) if items else []
        for index, batch in enumerate(batches):
            results.extend(
                await gather_limited([self._create(item) for item in batch])
            )
            if index < len(batches) - 1:
                await self._sleep(self.batch_pause_seconds)
        return results

    async def _create(self, item: WorkItem) -> SyncResult:
        payload = item_to_issue_payload(item)
        try:
            issue = await self.issues.create_issue(payload)
        except RemoteError as exc:
            return self._failure(item.id, SyncAction.CREATE, exc)

        number = issue["number"]
        self.tracked[item.id] = TrackedIssue(
            number=number, state=issue.get("state", "open"), item=item
        )
        self.tracker.record_operation(
            operation_id(item.id), payload, {"issue_number": number}
        )
        return SyncResult(
            item_id=item.id,
            action=SyncAction.CREATE,
            success=True,
            issue_number=number,
        )

    async def _update(self, mod: ModifiedItem) -> SyncResult:
        item = mod.after
        tracked = self.tracked.get(item.id)
        number = tracked.number if tracked else None

        if not self._needs_update(mod):
            logger.debug("Skipping update of %s: already in sync", item.id)
            return SyncResult(
                item_id=item.id,
                action=SyncAction.SKIP,
                success=True,
                issue_number=number,
            )
        if tracked is None:
            return SyncResult(
                item_id=item.id,
                action=SyncAction.UPDATE,
                success=False,
                error=f"No tracker issue known for {item.id}",
                error_kind="state",
            )

        payload = item_to_issue_payload(item)
        request: dict[str, Any] = dict(payload)
        if tracked.state == "closed":
            request["state"] = "open"
        try:
            issue = await self.issues.update_issue(tracked.number, request)
        except RemoteError as exc:
            return self._failure(
                item.id, SyncAction.UPDATE, exc, tracked.number
            )

        self.tracked[item.id] = TrackedIssue(
            number=tracked.number,
            state=issue.get("state", "open") if issue else "open",
            item=item,
        )
        self.tracker.record_operation(
            operation_id(item.id), payload, {"issue_number": tracked.number}
        )
        return SyncResult(
            item_id=item.id,
            action=SyncAction.UPDATE,
            success=True,
            issue_number=tracked.number,
        )

    async def _close(self, item: WorkItem) -> SyncResult:
        tracked = self.tracked.get(item.id)
        number = tracked.number if tracked else None

        if not self.close_removed or tracked is None:
            return SyncResult(
                item_id=item.id,
                action=SyncAction.SKIP,
                success=True,
                issue_number=number,
            )
        if tracked.state == "closed":
            logger.debug("Issue #%s already closed", tracked.number)
            self.tracker.clear_state(operation_id(item.id))
            return SyncResult(
                item_id=item.id,
                action=SyncAction.SKIP,
                success=True,
                issue_number=number,
            )

        try:
            await self.issues.close_issue(tracked.number)
        except RemoteError as exc:
            return self._failure(item.id, SyncAction.CLOSE, exc, number)

        self.tracked[item.id] = tracked.model_copy(update={"state": "closed"})
        self.tracker.clear_state(operation_id(item.id))
        return SyncResult(
            item_id=item.id,
            action=SyncAction.CLOSE,
            success=True,
            issue_number=number,
        )
