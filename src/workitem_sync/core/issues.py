"""Async issue operations on top of ``TrackerClient``.

Every call goes through the same path::

    executor.execute(lambda: limiter.run(client.method, *args))

so blocking ``requests`` calls run in worker threads, at most
``max_parallel`` at a time, and every one is retried under the configured
policy.  ``RetryExhaustedError`` and ``TerminalRemoteError`` propagate to
the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from workitem_sync.core.async_utils import (
    RequestLimiter,
    batched,
    gather_limited,
)
from workitem_sync.core.client import TrackerClient
from workitem_sync.core.rate_limit import RateLimitGuard
from workitem_sync.core.retry import RemoteExecutor, SleepFn
from workitem_sync.errors import TerminalRemoteError
from workitem_sync.sync.mapper import issue_to_item
from workitem_sync.sync.models import RateLimitInfo, TrackedIssue

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_PAUSE_SECONDS = 0.2


class IssueService:
    """Retrying, concurrency-bounded issue operations.

    Args:
        client: Blocking tracker client.
        executor: Retry engine wrapping every call.
        limiter: Bound on concurrent blocking calls.  Defaults to one
            slot per service.
        batch_size: Issues created concurrently per batch.
        batch_pause_seconds: Pause between batches.
        sleep: Coroutine used for batch pauses and rate-limit waits.
    """

    def __init__(
        self,
        client: TrackerClient,
        executor: RemoteExecutor | None = None,
        limiter: RequestLimiter | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_pause_seconds: float = DEFAULT_BATCH_PAUSE_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.client = client
        self.executor = executor or RemoteExecutor(
            graphql_transport=client, sleep=sleep
        )
        self.limiter = limiter or RequestLimiter(1)
        self.batch_size = batch_size
        self.batch_pause_seconds = batch_pause_seconds
        self._sleep = sleep
        self.rate_limits = RateLimitGuard(self.get_rate_limit, sleep=sleep)

    async def _call(
        self, operation_type: str, func: Callable[..., Any], *args: Any
    ) -> Any:
        return await self.executor.execute(
            lambda: self.limiter.run(func, *args), operation_type
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_issues(
        self,
        state: str = "all",
        labels: list[str] | None = None,
        per_page: int = 100,
    ) -> list[dict[str, Any]]:
        """Fetch every page of issues matching *state* and *labels*.

        Pull requests are dropped.  Paging stops on the first page shorter
        than *per_page*, counted before filtering.
        """
        issues: list[dict[str, Any]] = []
        page = 0
        while True:
            page += 1
            batch = await self._call(
                "REST", self.client.list_issues, state, labels, per_page, page
            )
            issues.extend(i for i in batch if "pull_request" not in i)
            if len(batch) < per_page:
                break
        logger.debug("Fetched %d issues over %d pages", len(issues), page)
        return issues

    async def get_issue(self, number: int) -> dict[str, Any] | None:
        """Return issue *number*, or ``None`` if the tracker reports 404."""
        try:
            return await self._call("REST", self.client.get_issue, number)
        except TerminalRemoteError as exc:
            if exc.status_code == 404:
                return None
            raise

    async def fetch_work_items(
        self, state: str = "all"
    ) -> dict[str, TrackedIssue]:
        """Return managed issues keyed by work item id.

        Issues without an identity marker are skipped.  When two issues
        carry the same id the later one in listing order wins.
        """
        tracked: dict[str, TrackedIssue] = {}
        for issue in await self.list_issues(state=state):
            item = issue_to_item(issue)
            if item is None:
                continue
            tracked[item.id] = TrackedIssue(
                number=issue["number"],
                state=issue.get("state", "open"),
                item=item,
            )
        logger.info("Found %d managed work items on tracker", len(tracked))
        return tracked

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_issue(self, payload: dict[str, Any]) -> dict[str, Any]:
        issue = await self._call("REST", self.client.create_issue, payload)
        logger.info(
            "Created issue #%s: %s", issue.get("number"), payload.get("title")
        )
        return issue

    async def update_issue(
        self, number: int, payload: dict[str, Any]
    ) -> dict[str, Any]:
        issue = await self._call(
            "REST", self.client.update_issue, number, payload
        )
        logger.info("Updated issue #%s", number)
        return issue

    async def close_issue(self, number: int) -> dict[str, Any]:
        return await self.update_issue(number, {"state": "closed"})

    async def reopen_issue(self, number: int) -> dict[str, Any]:
        return await self.update_issue(number, {"state": "open"})

    async def create_issues(
        self, payloads: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Create issues in batches, pausing between batches.

        Results are returned in input order.  A failure aborts the
        remaining batches; issues created so far stay created.
        """
        results: list[dict[str, Any]] = []
        batches = batched(payloads, self.batch_size)
        for index, batch in enumerate(batches):
            results.extend(
                await gather_limited([self.create_issue(p) for p in batch])
            )
            if index < len(batches) - 1:
                await self._sleep(self.batch_pause_seconds)
        return results

    # ------------------------------------------------------------------
    # Rate limits
    # ------------------------------------------------------------------

    async def get_rate_limit(self) -> RateLimitInfo:
        return await self._call("REST", self.client.get_rate_limit)

    async def check_rate_limit(self, required_calls: int = 1) -> bool:
        return await self.rate_limits.check_rate_limit(required_calls)

    async def wait_for_rate_limit(self) -> float:
        return await self.rate_limits.wait_for_rate_limit()
