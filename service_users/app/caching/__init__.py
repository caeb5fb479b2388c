"""
Console caching package.

In-memory, per-resource-kind read-through caches. Entries are short-lived
and explicitly invalidated; a per-key generation counter keeps superseded
fetches from re-seeding the cache.
"""

from .ttl_store import CacheEntry, TTLStore
from .generations import GenerationLedger
from .inflight import InFlightRegistry
from .read_through import ReadThroughLoader, merge_values
from .cache_manager import UserCacheManager

__all__ = [
    "CacheEntry",
    "TTLStore",
    "GenerationLedger",
    "InFlightRegistry",
    "ReadThroughLoader",
    "merge_values",
    "UserCacheManager",
]
