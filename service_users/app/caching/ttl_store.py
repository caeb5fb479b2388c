"""
Keyed time-to-live store for cached values.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the moment it was stored."""
    key: str
    value: T
    stored_at: float
    ttl: Optional[float] = None


class TTLStore(Generic[T]):
    """Keyed store answering "is this still fresh".

    The store owns its entries; callers get references to the cached values
    and must route changes through the loader that owns the store.
    """

    def __init__(self, ttl_seconds: float, name: str = "default",
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[CacheEntry[T]]:
        """Return the entry for ``key`` whether or not it is fresh."""
        return self._entries.get(key)

    def get_fresh(self, key: str) -> Optional[CacheEntry[T]]:
        """Return the entry for ``key`` only if it is still fresh."""
        entry = self._entries.get(key)
        if entry is None or not self._is_entry_fresh(entry):
            return None
        return entry

    def is_fresh(self, key: str) -> bool:
        return self.get_fresh(key) is not None

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> CacheEntry[T]:
        """Store ``value`` stamped with the current time."""
        entry = CacheEntry(key=key, value=value, stored_at=self.now(), ttl=ttl)
        self._entries[key] = entry
        return entry

    def touch(self, key: str) -> bool:
        """Re-stamp an existing entry as freshly stored."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        self._entries[key] = CacheEntry(key=key, value=entry.value, stored_at=self.now(), ttl=entry.ttl)
        return True

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        fresh = sum(1 for entry in self._entries.values() if self._is_entry_fresh(entry))
        return {
            "name": self.name,
            "ttl_seconds": self.ttl_seconds,
            "entries": len(self._entries),
            "fresh": fresh,
        }

    def _is_entry_fresh(self, entry: CacheEntry[T]) -> bool:
        ttl = entry.ttl if entry.ttl is not None else self.ttl_seconds
        return self.now() - entry.stored_at < ttl

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
