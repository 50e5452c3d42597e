"""
Sync engine.

Keyset id enumeration, concurrent batch refresh and the top-level run that
feeds fetched batches to the normalizer.
"""

from inatsync.core.sync.cursor import IdPage, PageCursor
from inatsync.core.sync.models import BatchOutcome, FetchedEntity, SyncReport
from inatsync.core.sync.orchestrator import ConcurrentSyncOrchestrator
from inatsync.core.sync.service import SyncService

__all__ = [
    "BatchOutcome",
    "ConcurrentSyncOrchestrator",
    "FetchedEntity",
    "IdPage",
    "PageCursor",
    "SyncReport",
    "SyncService",
]
