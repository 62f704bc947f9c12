"""Tracker transport: blocking client, retry engine and async issue service."""

from .async_utils import RequestLimiter, run_sync
from .client import TrackerClient
from .issues import IssueService
from .rate_limit import RateLimitGuard
from .retry import RemoteExecutor

__all__ = [
    "IssueService",
    "RateLimitGuard",
    "RemoteExecutor",
    "RequestLimiter",
    "TrackerClient",
    "run_sync",
]
