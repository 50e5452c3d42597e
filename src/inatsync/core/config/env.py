"""Environment loading helpers.

Settings such as INATSYNC_DATA_DIR can come from .env files as well as the
shell. Lookup order, first hit wins:

  os.environ (pre-existing) > project .env / .env.local > user .env

The user file lives at $XDG_CONFIG_HOME/inatsync/.env.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


def user_env_files() -> list[Path]:
    """Default user-level env files."""
    xdg_home = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    return [xdg_home / "inatsync" / ".env"]


def project_env_files(project_dir: Path) -> list[Path]:
    """Default project-level env files, later files overriding earlier ones."""
    return [project_dir / ".env", project_dir / ".env.local"]


def read_env_file(path: Path) -> dict[str, str]:
    """Read one .env file, skipping keys without a value."""
    if not path.is_file():
        return {}
    return {str(k): str(v) for k, v in dotenv_values(path).items() if k and v is not None}


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths: Iterable[Path] | None = None,
) -> set[str]:
    """Populate os.environ from user and project .env files.

    Args:
        project_dir: base directory for project env paths (defaults to cwd)
        user_env_paths: explicit user env file paths
        project_env_paths: explicit project env file paths

    Returns:
        Names of the variables that were set from files
    """
    shell_keys = set(os.environ)
    project_dir = project_dir or Path.cwd()

    layered: dict[str, str] = {}
    for path in user_env_paths if user_env_paths is not None else user_env_files():
        layered.update(read_env_file(Path(path)))
    for path in (
        project_env_paths if project_env_paths is not None else project_env_files(project_dir)
    ):
        layered.update(read_env_file(Path(path)))

    applied: set[str] = set()
    for key, value in layered.items():
        if key in shell_keys:
            continue
        os.environ[key] = value
        applied.add(key)

    if applied:
        logger.debug("Loaded %d variables from .env files", len(applied))
    return applied
