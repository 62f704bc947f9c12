import threading
from datetime import datetime, timezone
from typing import Any

import requests

from ..config import Config
from ..sync.models import RateLimitInfo


class TrackerClient:
    """Blocking client for a GitHub-style issue tracker REST/GraphQL API.

    Every method performs exactly one HTTP round trip and raises
    ``requests.HTTPError`` (carrying the response) on a non-2xx status, so
    ``RemoteExecutor`` can classify the failure.  Retrying is the caller's
    job.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = config.api_url.rstrip("/")

    @property
    def session(self) -> requests.Session:
        """Session for the current thread."""
        return self._get_session()

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.config.owner}/{self.config.repo}"

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.config.token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": self.config.user_agent,
            }
        )
        return session

    def rest(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Make a REST request and return the decoded JSON body.

        Returns ``None`` for empty (204) responses.
        """
        response = self._get_session().request(
            method,
            f"{self.base_url}{path}",
            json=json,
            params=params,
            timeout=(10, self.config.timeout_seconds),
        )
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def graphql(
        self, query: str, variables: dict[str, Any] | None = None
    ) -> Any:
        """
        Run a GraphQL query and return its ``data`` member.

        GraphQL-level errors on a 200 response are raised as
        ``requests.HTTPError`` with the response attached.
        """
        response = self._get_session().post(
            f"{self.base_url}/graphql",
            json={"query": query, "variables": variables or {}},
            timeout=(10, self.config.timeout_seconds),
        )
        response.raise_for_status()
        body = response.json()
        errors = body.get("errors")
        if errors:
            messages = "; ".join(
                str(e.get("message", e)) for e in errors
            )
            raise requests.HTTPError(
                f"GraphQL errors: {messages}", response=response
            )
        return body.get("data")

    def get_rate_limit(self) -> RateLimitInfo:
        """
        Get the core REST rate-limit budget.
        """
        rate = self.rest("GET", "/rate_limit")["rate"]
        return RateLimitInfo(
            limit=rate["limit"],
            remaining=rate["remaining"],
            reset=datetime.fromtimestamp(rate["reset"], tz=timezone.utc),
            used=rate["used"],
        )

    def list_issues(
        self,
        state: str = "all",
        labels: list[str] | None = None,
        per_page: int = 100,
        page: int = 1,
    ) -> list[dict[str, Any]]:
        """
        List one raw page of issues.

        The tracker returns pull requests on this endpoint too; they are left
        in so callers can tell a short page from a filtered one.
        """
        params: dict[str, Any] = {
            "state": state,
            "per_page": per_page,
            "page": page,
        }
        if labels:
            params["labels"] = ",".join(labels)
        result = self.rest("GET", f"{self.repo_path}/issues", params=params)
        return list(result or [])

    def get_issue(self, number: int) -> dict[str, Any]:
        return self.rest("GET", f"{self.repo_path}/issues/{number}")

    def create_issue(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Create an issue.

        Args:
            payload: Body with ``title`` (required), ``body``, ``labels``,
                ``milestone``, ``assignees``.

        Raises:
            ValueError: If the title is empty.
            requests.HTTPError: On a non-2xx response.
        """
        if not str(payload.get("title", "")).strip():
            raise ValueError("Issue title is required and cannot be empty")
        return self.rest("POST", f"{self.repo_path}/issues", json=payload)

    def update_issue(
        self, number: int, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Patch an existing issue with the fields in *payload*.
        """
        return self.rest(
            "PATCH", f"{self.repo_path}/issues/{number}", json=payload
        )
