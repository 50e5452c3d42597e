"""
Local cache of API entities.

One two-document YAML file per entity, grouped in one directory per kind.
"""

from inatsync.core.cache.models import ENTITY_KINDS, CachedEntry, IdListingCache
from inatsync.core.cache.store import CacheStore

__all__ = ["ENTITY_KINDS", "CacheStore", "CachedEntry", "IdListingCache"]
