"""Shared pytest fixtures for workitem-sync tests."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from workitem_sync.config import Config
from workitem_sync.config_schema import RetryConfig
from workitem_sync.core.retry import RemoteExecutor
from workitem_sync.sync.models import Phase, RateLimitInfo, WorkItem


def make_item(item_id: str, **overrides: Any) -> WorkItem:
    """Build a valid ``WorkItem`` with sensible defaults."""
    fields: dict[str, Any] = {
        "id": item_id,
        "title": f"Item {item_id}",
        "phase": Phase.CONCEPT,
        "discipline_tags": ["architecture"],
    }
    fields.update(overrides)
    return WorkItem(**fields)


def http_error(
    status: int,
    headers: dict[str, str] | None = None,
    text: str = "",
) -> requests.HTTPError:
    """Build a ``requests.HTTPError`` carrying a response with *status*."""
    response = requests.Response()
    response.status_code = status
    response.headers.update(headers or {})
    response._content = text.encode("utf-8")
    return requests.HTTPError(f"{status} Error", response=response)


class RecordingSleep:
    """Async stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeTrackerClient:
    """In-memory stand-in for ``TrackerClient``.

    Issues live in ``self.issues`` keyed by number.  ``fail`` maps a method
    name to a list of exceptions raised (in order) before the call succeeds.
    """

    def __init__(self) -> None:
        self.issues: dict[int, dict[str, Any]] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.fail: dict[str, list[BaseException]] = {}
        self.rate = {
            "limit": 5000,
            "remaining": 4999,
            "reset": 1_700_000_000,
            "used": 1,
        }
        self._next_number = 1
        self._lock = threading.Lock()

    def _maybe_fail(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        pending = self.fail.get(name)
        if pending:
            raise pending.pop(0)

    def add_issue(self, **fields: Any) -> dict[str, Any]:
        with self._lock:
            number = self._next_number
            self._next_number += 1
        issue = {"number": number, "state": "open", "labels": [], **fields}
        self.issues[number] = issue
        return issue

    def list_issues(self, state="all", labels=None, per_page=100, page=1):
        self._maybe_fail("list_issues", state, labels, per_page, page)
        matching = [
            i
            for i in self.issues.values()
            if state == "all" or i["state"] == state
        ]
        start = (page - 1) * per_page
        return [dict(i) for i in matching[start : start + per_page]]

    def get_issue(self, number):
        self._maybe_fail("get_issue", number)
        if number not in self.issues:
            raise http_error(404)
        return dict(self.issues[number])

    def create_issue(self, payload):
        self._maybe_fail("create_issue", payload)
        labels = [{"name": name} for name in payload.get("labels", [])]
        issue = self.add_issue(
            title=payload["title"], body=payload.get("body"), labels=labels
        )
        return dict(issue)

    def update_issue(self, number, payload):
        self._maybe_fail("update_issue", number, payload)
        if number not in self.issues:
            raise http_error(404)
        issue = self.issues[number]
        for key, value in payload.items():
            if key == "labels":
                issue["labels"] = [{"name": name} for name in value]
            else:
                issue[key] = value
        return dict(issue)

    def get_rate_limit(self):
        self._maybe_fail("get_rate_limit")
        return RateLimitInfo(
            limit=self.rate["limit"],
            remaining=self.rate["remaining"],
            reset=datetime.fromtimestamp(self.rate["reset"], tz=timezone.utc),
            used=self.rate["used"],
        )


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        token="ghp_test",
        owner="acme",
        repo="widgets",
        api_url="https://api.example.com",
    )


@pytest.fixture
def mock_tracker_client(mock_config):
    """Create a mock TrackerClient instance for testing."""
    from workitem_sync.core.client import TrackerClient

    client = MagicMock(spec=TrackerClient)
    client.config = mock_config
    return client


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def fake_client():
    return FakeTrackerClient()


@pytest.fixture
def executor(recording_sleep):
    """RemoteExecutor with default budget and no real waiting."""
    return RemoteExecutor(RetryConfig(), sleep=recording_sleep)
