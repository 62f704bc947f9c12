"""
Hierarchical configuration loader for workitem_sync.

Discovers YAML config files by convention, merges them with "project wins"
semantics and expands ``${VAR}`` references from the environment.

Usage:
    from workitem_sync.config_loader import load_settings

    unified, config = load_settings()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .config import Config, load_config
from .config_schema import UnifiedConfig, build_config
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "WORKITEM_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".workitem_sync"

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


# ---------------------------------------------------------------------------
# Env var interpolation
# ---------------------------------------------------------------------------


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` with environment values.

    An unset or empty variable without a default expands to ``""``.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files(cwd: Path | None = None) -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``WORKITEM_SYNC_CONFIG`` env var (explicit single path)
        2. ``.workitem_sync/config.yml`` in CWD (project-level)
        3. ``.workitem_sync/config.yaml`` in CWD
        4. ``~/.config/workitem_sync/config.yml`` (XDG global)
    """
    base = cwd or Path.cwd()
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    candidates.append(base / PROJECT_CONFIG_DIR / "config.yml")
    candidates.append(base / PROJECT_CONFIG_DIR / "config.yaml")
    candidates.append(
        Path.home() / ".config" / "workitem_sync" / "config.yml"
    )

    return [p for p in candidates if p.exists()]


def _load_yaml(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                f"Invalid YAML in {path}: {exc}", {"path": str(path)}
            ) from exc


# ---------------------------------------------------------------------------
# Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(cwd: Path | None = None) -> dict[str, Any]:
    """Load and merge all discovered config files.

    Files are loaded from lowest precedence to highest; each file's
    top-level sections **replace** those from earlier files.  Env var
    interpolation runs after the merge.

    Returns an empty dict when no config files exist (zero-config).
    """
    paths = discover_config_files(cwd)

    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        data = _load_yaml(path)
        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_recursive(merged)


def flatten_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten the sections ``load_config()`` reads into one fallback dict.

    ``None`` values are dropped so they never shadow env vars.
    """
    flat: dict[str, Any] = {}
    for section in (unified.tracker, unified.retry, unified.reconcile):
        flat.update(section.model_dump(exclude_none=True))
    return flat


def load_settings(
    cli_overrides: dict | None = None,
    cwd: Path | None = None,
) -> tuple[UnifiedConfig, Config]:
    """Load ``.env``, the YAML hierarchy and env vars into both config forms.

    Args:
        cli_overrides: Optional ``api_url``/``token``/``owner``/``repo``.
        cwd: Directory to discover project config from (default: CWD).

    Returns:
        ``(unified, config)`` where *config* is validated.

    Raises:
        ConfigurationError: Required settings are missing or invalid.
    """
    load_dotenv()
    unified = build_config(load_hierarchical_config(cwd))
    overrides = cli_overrides or {}
    config = load_config(
        api_url=overrides.get("api_url"),
        token=overrides.get("token"),
        owner=overrides.get("owner"),
        repo=overrides.get("repo"),
        yaml_fallbacks=flatten_fallbacks(unified),
    )
    return unified, config
