"""
Configuration models and loading.

This module provides the Pydantic model for inat-sync configuration
with multi-layer merging: defaults < user < project < env vars.
"""

from .loader import (
    clear_cache,
    get_project_config_path,
    get_user_config_path,
    get_xdg_config_home,
    load_config,
)
from .models import SyncConfig, default_data_dir

__all__ = [
    "SyncConfig",
    "default_data_dir",
    "clear_cache",
    "get_project_config_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "load_config",
]
