"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from .models import SyncConfig

logger = logging.getLogger(__name__)

# Global cache to avoid reloading config multiple times per session
_config_cache: SyncConfig | None = None

# Env var -> (config key, parser)
_ENV_OVERRIDES: dict[str, tuple[str, type]] = {
    "INATSYNC_API_URL": ("api_url", str),
    "INATSYNC_DATA_DIR": ("data_dir", str),
    "INATSYNC_PER_PAGE": ("per_page", int),
    "INATSYNC_BATCH_SIZE": ("batch_size", int),
    "INATSYNC_MAX_WORKERS": ("max_workers", int),
}


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """
    Get path to user configuration file.

    Returns:
        Path to ~/.config/inatsync/config.json (or XDG equivalent)
    """
    return get_xdg_config_home() / "inatsync" / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """
    Get path to project configuration file.

    Args:
        cwd: Working directory to search from (defaults to current directory)

    Returns:
        Path to .inatsync.json in the working directory
    """
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".inatsync.json"


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Load a JSON file, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dict, or None if file doesn't exist or can't be parsed
    """
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            return None
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Env vars have the highest precedence and override all config files.

    Supported env vars:
        INATSYNC_API_URL - overrides api_url
        INATSYNC_DATA_DIR - overrides data_dir
        INATSYNC_PER_PAGE - overrides per_page
        INATSYNC_BATCH_SIZE - overrides batch_size
        INATSYNC_MAX_WORKERS - overrides max_workers

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()

    for env_name, (key, parse) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if not raw:
            continue
        try:
            result[key] = parse(raw)
        except ValueError:
            logger.warning("Invalid %s value '%s', ignoring", env_name, raw)

    return result


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> SyncConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (INATSYNC_*)
        2. Project config (.inatsync.json)
        3. User config (~/.config/inatsync/config.json)
        4. Model defaults

    Args:
        project_dir: Directory to load .inatsync.json from (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated SyncConfig instance

    Raises:
        ValidationError: If the merged config fails Pydantic validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged: dict[str, Any] = {}

    if user_config := load_json_file(get_user_config_path()):
        merged.update(user_config)

    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged.update(project_config)

    merged = apply_env_overrides(merged)

    config = SyncConfig(**merged)
    _config_cache = config
    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    global _config_cache
    _config_cache = None
