"""
inat-sync - iNaturalist personal data mirror

A CLI tool that keeps a local, per-entity YAML cache of one user's
iNaturalist records current using conditional requests.
"""

__version__ = "0.3.0-dev"

from inatsync.core.config.models import SyncConfig
from inatsync.core.sync.models import SyncReport

__all__ = ["SyncConfig", "SyncReport", "__version__"]
