"""Tests for workitem_sync.config -- env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models).
"""

import logging

import pytest

from workitem_sync.config import Config, load_config, validate_config
from workitem_sync.errors import ConfigurationError

_ENV_VARS = (
    "WORKITEM_SYNC_API_URL",
    "GITHUB_TOKEN",
    "WORKITEM_SYNC_OWNER",
    "WORKITEM_SYNC_REPO",
    "WORKITEM_SYNC_RETRY_ATTEMPTS",
    "WORKITEM_SYNC_RETRY_DELAY_MS",
    "WORKITEM_SYNC_MAX_RETRY_DELAY_MS",
    "WORKITEM_SYNC_MAX_PARALLEL_REQUESTS",
    "WORKITEM_SYNC_BATCH_SIZE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config() -- URL format and required values."""

    def test_valid_config(self, mock_config):
        validate_config(mock_config)  # should not raise

    def test_trailing_slash_is_removed(self):
        config = Config(
            token="t", owner="o", repo="r", api_url="https://api.example.com/"
        )
        validate_config(config)
        assert config.api_url == "https://api.example.com"

    def test_invalid_url_scheme(self):
        config = Config(token="t", owner="o", repo="r", api_url="ftp://x")
        with pytest.raises(
            ConfigurationError, match="must start with http:// or https://"
        ):
            validate_config(config)

    def test_url_without_host(self):
        config = Config(token="t", owner="o", repo="r", api_url="https://")
        with pytest.raises(ConfigurationError, match="hostname"):
            validate_config(config)

    @pytest.mark.parametrize("field", ["token", "owner", "repo"])
    def test_empty_required_value(self, field):
        values = {"token": "t", "owner": "o", "repo": "r"}
        values[field] = "  "
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(Config(**values))
        assert exc_info.value.context == {"key": field}

    def test_delay_bounds(self):
        config = Config(
            token="t",
            owner="o",
            repo="r",
            retry_delay_ms=5000,
            max_retry_delay_ms=1000,
        )
        with pytest.raises(ConfigurationError, match="max_retry_delay_ms"):
            validate_config(config)

    def test_http_url_warns(self, caplog):
        config = Config(
            token="t", owner="o", repo="r", api_url="http://localhost:8080"
        )
        with caplog.at_level(logging.WARNING):
            validate_config(config)
        assert "not HTTPS" in caplog.text

    def test_retry_config_conversion(self):
        config = Config(
            token="t",
            owner="o",
            repo="r",
            retry_attempts=5,
            retry_delay_ms=200,
            max_retry_delay_ms=800,
            jitter_ratio=0.25,
        )
        policy = config.retry_config()
        assert policy.retry_attempts == 5
        assert policy.retry_delay_ms == 200
        assert policy.max_retry_delay_ms == 800
        assert policy.jitter_ratio == 0.25

    def test_jitter_ratio_bounds(self):
        config = Config(token="t", owner="o", repo="r", jitter_ratio=1.5)
        with pytest.raises(ConfigurationError, match="jitter_ratio"):
            validate_config(config)


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config() precedence: CLI > env > YAML > default."""

    def test_env_vars(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        monkeypatch.setenv("WORKITEM_SYNC_OWNER", "env-owner")
        monkeypatch.setenv("WORKITEM_SYNC_REPO", "env-repo")
        config = load_config()
        assert config.token == "env-token"
        assert config.owner == "env-owner"
        assert config.repo == "env-repo"
        assert config.api_url == "https://api.github.com"
        assert config.retry_attempts == 3

    def test_cli_beats_env(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        config = load_config(token="cli-token", owner="o", repo="r")
        assert config.token == "cli-token"

    def test_yaml_fallbacks_used_last(self, monkeypatch):
        monkeypatch.setenv("WORKITEM_SYNC_RETRY_ATTEMPTS", "6")
        config = load_config(
            yaml_fallbacks={
                "token": "yaml-token",
                "owner": "yo",
                "repo": "yr",
                "retry_attempts": 1,
                "batch_size": 9,
                "jitter_ratio": 0.0,
            }
        )
        assert config.token == "yaml-token"
        assert config.retry_attempts == 6
        assert config.batch_size == 9
        assert config.retry_config().jitter_ratio == 0.0

    def test_missing_token(self):
        with pytest.raises(ConfigurationError, match="API token not found"):
            load_config(owner="o", repo="r")

    def test_missing_repo(self):
        with pytest.raises(
            ConfigurationError, match="Repository not configured"
        ):
            load_config(token="t", owner="o")

    @pytest.mark.parametrize("raw", ["abc", "11", "-1"])
    def test_invalid_retry_attempts(self, monkeypatch, raw):
        monkeypatch.setenv("WORKITEM_SYNC_RETRY_ATTEMPTS", raw)
        with pytest.raises(ConfigurationError, match="between 0 and 10"):
            load_config(token="t", owner="o", repo="r")
