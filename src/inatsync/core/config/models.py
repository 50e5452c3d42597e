"""
Configuration data models for inat-sync.

These models define the structure of .inatsync.json and
~/.config/inatsync/config.json files, with validation and type safety via
Pydantic.
"""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_API_URL = "https://api.inaturalist.org/v1"


def default_data_dir() -> Path:
    """
    Get the default cache directory.

    Returns:
        $XDG_DATA_HOME/inatsync (defaults to ~/.local/share/inatsync)
    """
    if xdg_data := os.environ.get("XDG_DATA_HOME"):
        return Path(xdg_data) / "inatsync"
    return Path.home() / ".local" / "share" / "inatsync"


class SyncConfig(BaseModel):
    """
    Settings for a sync run.

    Example:
        >>> config = SyncConfig()
        >>> config.per_page, config.batch_size, config.max_workers
        (200, 20, 4)
    """

    model_config = ConfigDict(extra="ignore")

    api_url: str = Field(
        default=DEFAULT_API_URL,
        description="Versioned base URL of the API",
    )
    data_dir: Path = Field(
        default_factory=default_data_dir,
        description="Root directory of the local cache",
    )
    # Sometimes documented as 500, in practice capped at 200
    per_page: int = Field(
        default=200,
        ge=1,
        le=200,
        description="Ids requested per page while enumerating",
    )
    batch_size: int = Field(
        default=20,
        ge=1,
        description="Ids fetched per concurrent batch",
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        description="Concurrent in-flight requests within a batch",
    )
    retry_after_default: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds to wait on a 429 without a usable Retry-After",
    )
    timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="HTTP timeout in seconds",
    )
    user_agent: str = Field(
        default="inat-sync",
        description="User-Agent sent with every request",
    )

    @model_validator(mode="after")
    def check_worker_budget(self) -> "SyncConfig":
        """The permit pool must be smaller than a batch (unless batches hold one id)."""
        if self.batch_size > 1 and self.max_workers >= self.batch_size:
            raise ValueError(
                f"max_workers ({self.max_workers}) must be smaller than "
                f"batch_size ({self.batch_size})"
            )
        return self
