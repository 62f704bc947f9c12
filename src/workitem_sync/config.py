"""Flat runtime configuration for the tracker connection and retry policy.

Reads settings from CLI args, environment variables, .env files, and YAML
config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    WORKITEM_SYNC_API_URL: Tracker REST API base URL (default: https://api.github.com)
    GITHUB_TOKEN: API token (required)
    WORKITEM_SYNC_OWNER: Repository owner (required)
    WORKITEM_SYNC_REPO: Repository name (required)
    WORKITEM_SYNC_RETRY_ATTEMPTS: Retries after the first attempt (default: 3)
    WORKITEM_SYNC_RETRY_DELAY_MS: Initial backoff delay (default: 1000)
    WORKITEM_SYNC_MAX_RETRY_DELAY_MS: Backoff ceiling (default: 30000)
    WORKITEM_SYNC_MAX_PARALLEL_REQUESTS: Concurrent requests (default: 5)
    WORKITEM_SYNC_BATCH_SIZE: Remote writes per batch (default: 5)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

from .config_schema import RetryConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class Config:
    token: str
    owner: str
    repo: str
    api_url: str = "https://api.github.com"
    user_agent: str = "workitem-sync"
    timeout_seconds: float = 30.0
    max_parallel_requests: int = 5
    retry_attempts: int = 3
    retry_delay_ms: int = 1000
    max_retry_delay_ms: int = 30000
    jitter_ratio: float = 0.1
    batch_size: int = 5

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            retry_attempts=self.retry_attempts,
            retry_delay_ms=self.retry_delay_ms,
            max_retry_delay_ms=self.max_retry_delay_ms,
            jitter_ratio=self.jitter_ratio,
        )


def validate_config(config: Config) -> None:
    """Validate configuration values.

    Raises:
        ConfigurationError: If the URL format is invalid, a required value
            is empty, or a numeric value is out of range.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ConfigurationError(
            f"Invalid API URL '{config.api_url}': must start with http:// or https://",
            {"key": "api_url"},
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ConfigurationError(
            f"Invalid API URL '{config.api_url}': URL must include a hostname",
            {"key": "api_url"},
        )

    config.api_url = config.api_url.removesuffix("/")

    for key, env_var in (
        ("token", "GITHUB_TOKEN"),
        ("owner", "WORKITEM_SYNC_OWNER"),
        ("repo", "WORKITEM_SYNC_REPO"),
    ):
        if not getattr(config, key).strip():
            raise ConfigurationError(
                f"Tracker {key} cannot be empty. Set {env_var} environment variable.",
                {"key": key},
            )

    if config.max_retry_delay_ms < config.retry_delay_ms:
        raise ConfigurationError(
            "max_retry_delay_ms must be >= retry_delay_ms",
            {"key": "max_retry_delay_ms"},
        )

    if not (0 <= config.jitter_ratio <= 1):
        raise ConfigurationError(
            f"Invalid jitter_ratio {config.jitter_ratio}: must be between 0 and 1",
            {"key": "jitter_ratio"},
        )

    if not config.api_url.startswith("https://"):
        logger.warning(
            "WARNING: API URL is not HTTPS; the token is sent in clear text."
        )


def _int_setting(
    env_var: str,
    fallback_key: str,
    fallbacks: dict,
    default: int,
    low: int,
    high: int,
) -> int:
    """Resolve an integer setting: env var > YAML fallback > default."""
    raw = os.getenv(env_var)
    if raw is not None:
        try:
            value = int(raw)
        except ValueError:
            raise ConfigurationError(
                f"Invalid {env_var} '{raw}': must be a number between {low} and {high}",
                {"key": fallback_key},
            ) from None
        if not (low <= value <= high):
            raise ConfigurationError(
                f"Invalid {env_var} '{raw}': must be a number between {low} and {high}",
                {"key": fallback_key},
            )
        return value
    if fallback_key in fallbacks:
        return int(fallbacks[fallback_key])
    return default


def load_config(
    api_url: str | None = None,
    token: str | None = None,
    owner: str | None = None,
    repo: str | None = None,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        api_url: Override API URL.
        token: Override API token.
        owner: Override repository owner.
        repo: Override repository name.
        yaml_fallbacks: Flat dict of values from the YAML config (the
            ``tracker``, ``retry`` and ``reconcile`` sections merged).

    Returns:
        Validated Config instance.

    Raises:
        ConfigurationError: If a required value is missing after checking
            all sources, or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > default/error ---

    final_url = (
        api_url
        or os.getenv("WORKITEM_SYNC_API_URL")
        or fb.get("api_url")
        or "https://api.github.com"
    )

    final_token = token or os.getenv("GITHUB_TOKEN") or fb.get("token")
    if not final_token:
        raise ConfigurationError(
            "API token not found. Set GITHUB_TOKEN environment variable, "
            "pass --token, or add 'token' to config.yml.",
            {"key": "token"},
        )

    final_owner = (
        owner or os.getenv("WORKITEM_SYNC_OWNER") or fb.get("owner")
    )
    final_repo = repo or os.getenv("WORKITEM_SYNC_REPO") or fb.get("repo")
    if not final_owner or not final_repo:
        raise ConfigurationError(
            "Repository not configured. Set WORKITEM_SYNC_OWNER and "
            "WORKITEM_SYNC_REPO, or add 'owner'/'repo' to config.yml.",
            {"key": "owner" if not final_owner else "repo"},
        )

    # --- Numeric fields: env > YAML > default ---

    config = Config(
        api_url=final_url.strip(),
        token=final_token.strip(),
        owner=final_owner.strip(),
        repo=final_repo.strip(),
        user_agent=fb.get("user_agent", "workitem-sync"),
        timeout_seconds=float(fb.get("timeout_seconds", 30.0)),
        max_parallel_requests=_int_setting(
            "WORKITEM_SYNC_MAX_PARALLEL_REQUESTS",
            "max_parallel_requests",
            fb,
            5,
            1,
            20,
        ),
        retry_attempts=_int_setting(
            "WORKITEM_SYNC_RETRY_ATTEMPTS", "retry_attempts", fb, 3, 0, 10
        ),
        retry_delay_ms=_int_setting(
            "WORKITEM_SYNC_RETRY_DELAY_MS",
            "retry_delay_ms",
            fb,
            1000,
            0,
            600000,
        ),
        max_retry_delay_ms=_int_setting(
            "WORKITEM_SYNC_MAX_RETRY_DELAY_MS",
            "max_retry_delay_ms",
            fb,
            30000,
            0,
            3600000,
        ),
        jitter_ratio=float(fb.get("jitter_ratio", 0.1)),
        batch_size=_int_setting(
            "WORKITEM_SYNC_BATCH_SIZE", "batch_size", fb, 5, 1, 100
        ),
    )

    validate_config(config)

    return config
