"""Unified configuration schema for workitem_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the tracker connection, remote retry behaviour, reconciliation
defaults and logging.  Includes an adapter to the flat ``Config`` dataclass
used by the bootstrap path.

Usage:
    from workitem_sync.config_schema import (
        UnifiedConfig, build_config, to_legacy_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    legacy = to_legacy_config(unified, cli_overrides={"token": "..."})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class TrackerConfig(BaseModel):
    """Remote issue tracker connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    api_url: str = Field(
        default="https://api.github.com",
        description="Base URL of the tracker REST API",
    )
    token: str | None = Field(default=None, description="API token")
    owner: str | None = Field(
        default=None, description="Repository owner or organisation"
    )
    repo: str | None = Field(default=None, description="Repository name")
    user_agent: str = Field(
        default="workitem-sync", description="User-Agent header value"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Per-request read timeout in seconds",
    )
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum concurrent requests to the tracker (1-20)",
    )

    model_config = {"frozen": True}


class RetryConfig(BaseModel):
    """Retry and backoff policy for remote calls.

    Attributes:
        retry_attempts: Retries after the first attempt.
        retry_delay_ms: Delay before the first retry.
        max_retry_delay_ms: Upper bound for any single delay.
        jitter_ratio: Additive jitter as a fraction of the current delay.
    """

    retry_attempts: int = Field(default=3, ge=0, le=10)
    retry_delay_ms: int = Field(default=1000, ge=0)
    max_retry_delay_ms: int = Field(default=30000, ge=0)
    jitter_ratio: float = Field(default=0.1, ge=0, le=1)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_bounds(self) -> RetryConfig:
        if self.max_retry_delay_ms < self.retry_delay_ms:
            raise ValueError(
                "max_retry_delay_ms must be >= retry_delay_ms"
            )
        return self


class ReconcileConfig(BaseModel):
    """Defaults for diff/merge and diff application.

    Attributes:
        preserve_manual_edits: Protect recorded human edits on merge.
        ignore_fields: Fields never compared by the differ.
        close_removed: Close tracker issues whose item disappeared.
        batch_size: Remote writes issued concurrently per batch.
        batch_pause_seconds: Pause between batches.
        state_dir: Directory holding persisted tracker/edit state.
    """

    preserve_manual_edits: bool = True
    ignore_fields: list[str] = Field(default_factory=list)
    close_removed: bool = True
    batch_size: int = Field(default=5, ge=1, le=100)
    batch_pause_seconds: float = Field(default=0.2, ge=0)
    state_dir: str = ".workitem_sync"

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``"text"`` or ``"json"``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", pattern="^(text|json)$")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()`` is always
    valid.
    """

    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Unknown top-level sections are ignored with a warning; missing ones get
    defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    known = set(UnifiedConfig.model_fields)
    unknown = sorted(set(raw_data) - known)
    if unknown:
        logger.warning(
            "Ignoring unknown config sections: %s", ", ".join(unknown)
        )

    return UnifiedConfig(
        **{k: v for k, v in raw_data.items() if k in known}
    )


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> Config dataclass
# ---------------------------------------------------------------------------


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the flat ``Config`` dataclass,
    applying CLI overrides on top.

    CLI overrides dict keys: api_url, token, owner, repo.

    Returns:
        ``Config`` instance (NOT validated -- caller should run
        ``validate_config()`` separately if needed).
    """
    # Import here to avoid circular imports (config.py imports config_schema)
    from .config import Config

    overrides = cli_overrides or {}
    tracker = unified.tracker

    return Config(
        api_url=overrides.get("api_url") or tracker.api_url,
        token=overrides.get("token") or tracker.token or "",
        owner=overrides.get("owner") or tracker.owner or "",
        repo=overrides.get("repo") or tracker.repo or "",
        user_agent=tracker.user_agent,
        timeout_seconds=tracker.timeout_seconds,
        max_parallel_requests=tracker.max_parallel_requests,
        retry_attempts=unified.retry.retry_attempts,
        retry_delay_ms=unified.retry.retry_delay_ms,
        max_retry_delay_ms=unified.retry.max_retry_delay_ms,
        jitter_ratio=unified.retry.jitter_ratio,
        batch_size=unified.reconcile.batch_size,
    )
