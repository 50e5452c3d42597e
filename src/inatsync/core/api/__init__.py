"""
API transport layer.

Conditional GET exchanges against the remote JSON API and the models that
describe its envelope and cache metadata.
"""

from inatsync.core.api.fetcher import ConditionalFetcher, create_client
from inatsync.core.api.models import CacheHeader, Envelope, FetchResult

__all__ = [
    "CacheHeader",
    "ConditionalFetcher",
    "Envelope",
    "FetchResult",
    "create_client",
]
