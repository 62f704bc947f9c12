"""Retry engine for remote tracker calls.

``RemoteExecutor`` wraps any awaitable-producing callable with bounded
retries, exponential backoff, additive jitter and soft rate-limit handling.

Classification of a failure:

* **Terminal** -- an HTTP-like status in the 4xx range.  Raised at once as
  ``TerminalRemoteError``; never retried.
* **Soft rate limit** -- 429, or 403 whose response reports an exhausted
  budget or a secondary rate limit.  Retried like a transient failure,
  honouring any ``Retry-After`` hint.
* **Transient** -- everything else (5xx, connection errors, timeouts).
  Retried until the budget is spent, then ``RetryExhaustedError``.

Backoff: the first retry waits ``retry_delay_ms``; after every wait the
delay becomes ``min(delay * 2 + jitter, max_retry_delay_ms)`` with jitter
drawn uniformly from ``[0, jitter_ratio * delay)``.

There is no internal cancellation.  Callers that need a deadline wrap the
call in ``asyncio.wait_for`` and discard the result.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from workitem_sync.config_schema import RetryConfig
from workitem_sync.errors import RetryExhaustedError, TerminalRemoteError

T = TypeVar("T")
logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class GraphQLTransport(Protocol):
    """Anything able to run a GraphQL query synchronously."""

    def graphql(
        self, query: str, variables: dict[str, Any] | None = None
    ) -> Any: ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Error inspection
# ---------------------------------------------------------------------------


def get_status_code(error: BaseException) -> int | None:
    """Extract an HTTP-like status from *error*, if it carries one.

    Looks at ``status`` / ``status_code`` on the error itself, then at
    ``error.response.status_code`` (as set by ``requests.HTTPError``).
    """
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _response_headers(error: BaseException) -> Mapping:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    return headers if isinstance(headers, Mapping) else {}


def is_soft_rate_limit(error: BaseException, status: int | None) -> bool:
    """Return ``True`` for rate-limit responses worth retrying."""
    if status == 429:
        return True
    if status != 403:
        return False
    headers = _response_headers(error)
    remaining = headers.get("x-ratelimit-remaining") or headers.get(
        "X-RateLimit-Remaining"
    )
    if remaining is not None and str(remaining).strip() == "0":
        return True
    response = getattr(error, "response", None)
    body = getattr(response, "text", "")
    text = f"{error} {body if isinstance(body, str) else ''}".lower()
    return "secondary rate limit" in text


def get_retry_after(error: BaseException) -> float | None:
    """Return a server-provided retry hint in seconds, if any."""
    value = getattr(error, "retry_after", None)
    if value is None:
        value = _response_headers(error).get("Retry-After")
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def is_terminal(error: BaseException) -> bool:
    """``True`` for 4xx failures that are not soft rate limits."""
    status = get_status_code(error)
    if status is None or not 400 <= status < 500:
        return False
    return not is_soft_rate_limit(error, status)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class RemoteExecutor:
    """Run remote operations under a retry/backoff policy.

    Args:
        policy: Retry settings (defaults: 3 retries, 1 s base, 30 s cap).
        graphql_transport: Object exposing ``graphql(query, variables)``,
            used by ``execute_graphql``.
        sleep: Coroutine used to wait between attempts (injectable for
            tests).
        rng: Random source for jitter.
    """

    def __init__(
        self,
        policy: RetryConfig | None = None,
        graphql_transport: GraphQLTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy or RetryConfig()
        self._graphql_transport = graphql_transport
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_type: str = "REST",
    ) -> T:
        """Run *operation* until it succeeds or the budget is spent.

        Args:
            operation: Zero-argument callable returning a fresh awaitable on
                every call.
            operation_type: Label used in logs and errors.

        Returns:
            The operation's result.

        Raises:
            TerminalRemoteError: A 4xx failure (first occurrence).
            RetryExhaustedError: Every attempt failed transiently.
        """
        total_attempts = self.policy.retry_attempts + 1
        delay = float(self.policy.retry_delay_ms)
        last_error: BaseException | None = None

        for attempt in range(total_attempts):
            if attempt > 0:
                wait_ms = self._apply_retry_after(delay, last_error)
                logger.debug(
                    "Retrying %s operation, attempt %d (waiting %.0f ms)",
                    operation_type,
                    attempt + 1,
                    wait_ms,
                )
                await self._sleep(wait_ms / 1000.0)
                delay = self.next_delay(delay)

            try:
                return await operation()
            except Exception as exc:
                last_error = exc
                status = get_status_code(exc)

                if is_terminal(exc):
                    raise TerminalRemoteError(
                        operation_type, status, exc
                    ) from exc

                if attempt == total_attempts - 1:
                    logger.error(
                        "%s operation failed after %d attempts: %s",
                        operation_type,
                        total_attempts,
                        exc,
                    )
                    raise RetryExhaustedError(
                        operation_type, total_attempts, exc
                    ) from exc

                logger.warning(
                    "%s operation failed (attempt %d/%d, status=%s): %s; "
                    "retrying in %.0f ms",
                    operation_type,
                    attempt + 1,
                    total_attempts,
                    status,
                    exc,
                    delay,
                )

    async def execute_graphql(
        self, query: str, variables: dict[str, Any] | None = None
    ) -> Any:
        """Run a GraphQL query through the same retry engine."""
        if self._graphql_transport is None:
            raise RuntimeError(
                "RemoteExecutor has no GraphQL transport configured"
            )
        transport = self._graphql_transport
        return await self.execute(
            lambda: asyncio.to_thread(transport.graphql, query, variables),
            "GraphQL",
        )

    # ------------------------------------------------------------------
    # Delay computation
    # ------------------------------------------------------------------

    def jitter(self, delay_ms: float) -> float:
        """Uniform jitter in ``[0, jitter_ratio * delay_ms)``."""
        return self._rng.random() * delay_ms * self.policy.jitter_ratio

    def next_delay(self, delay_ms: float) -> float:
        """Delay for the retry after one that waited *delay_ms*."""
        return min(
            delay_ms * 2 + self.jitter(delay_ms),
            float(self.policy.max_retry_delay_ms),
        )

    def _apply_retry_after(
        self, delay_ms: float, error: BaseException | None
    ) -> float:
        if error is None:
            return delay_ms
        hint = get_retry_after(error)
        if hint is None:
            return delay_ms
        return min(
            max(delay_ms, hint * 1000.0),
            float(self.policy.max_retry_delay_ms),
        )
