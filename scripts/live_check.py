#!/usr/bin/env python3
"""Live read-only checks of workitem-sync against a real tracker.

Runs the remote side of a sync without changing anything: rate-limit
lookup, issue listing, work-item mapping and a dry-run diff of the tracker
state against itself (which must come out empty).

Usage:
  python scripts/live_check.py                     # Use config/env settings
  python scripts/live_check.py --owner o --repo r  # Override repository
  python scripts/live_check.py --verbose           # Print per-check notes
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass, field

from workitem_sync import __version__ as PACKAGE_VERSION
from workitem_sync.config_loader import load_settings
from workitem_sync.core import (
    IssueService,
    RemoteExecutor,
    RequestLimiter,
    TrackerClient,
)
from workitem_sync.errors import WorkItemSyncError, format_error
from workitem_sync.logger import setup_logging
from workitem_sync.sync import DiffApplier, ReconciliationService

logger = logging.getLogger("live_check")


@dataclass
class CheckResult:
    """Result of a single live check"""

    name: str
    passed: bool
    notes: str = ""


@dataclass
class CheckReport:
    results: list[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.passed)


async def run_checks(issues: IssueService, verbose: bool) -> CheckReport:
    report = CheckReport()

    def record(name: str, passed: bool, notes: str = "") -> None:
        report.results.append(CheckResult(name, passed, notes))
        print(f"  [{'PASS' if passed else 'FAIL'}] {name}")
        if verbose and notes:
            print(f"         {notes}")

    info = await issues.get_rate_limit()
    record(
        "rate_limit",
        info.limit > 0,
        f"{info.remaining}/{info.limit} remaining, resets {info.reset}",
    )

    tracked = await issues.fetch_work_items()
    record("fetch_work_items", True, f"{len(tracked)} managed issues")

    service = ReconciliationService()
    current = [t.item for t in tracked.values()]
    diff = service.diff(current, current)
    record("self_diff_is_empty", not diff.has_changes, str(diff.summary()))

    dry_run = await DiffApplier(issues, tracked).apply(diff, dry_run=True)
    record("dry_run_has_no_actions", not dry_run.results)

    return report


async def async_main(args) -> int:
    setup_logging(mode="cli", debug=args.verbose)
    try:
        _, config = load_settings(
            {"api_url": args.url, "owner": args.owner, "repo": args.repo}
        )
    except WorkItemSyncError as exc:
        print(f"Configuration error: {format_error(exc)}")
        return 2

    client = TrackerClient(config)
    issues = IssueService(
        client,
        RemoteExecutor(config.retry_config(), graphql_transport=client),
        RequestLimiter(config.max_parallel_requests),
        batch_size=config.batch_size,
    )

    print(f"workitem-sync {PACKAGE_VERSION} -> {config.owner}/{config.repo}")
    try:
        report = await run_checks(issues, args.verbose)
    except WorkItemSyncError as exc:
        logger.error("Live check aborted: %s", format_error(exc))
        return 1

    print(f"\nPassed: {report.passed} | Failed: {report.failed}")
    return 0 if report.failed == 0 else 1


def main():
    parser = argparse.ArgumentParser(
        description="Live read-only checks against a real tracker"
    )
    parser.add_argument("--url", help="Override tracker API URL")
    parser.add_argument("--owner", help="Override repository owner")
    parser.add_argument("--repo", help="Override repository name")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(async_main(args)))


if __name__ == "__main__":
    main()
