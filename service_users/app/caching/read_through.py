"""
Read-through loader combining the TTL store, generation ledger and
in-flight registry for one resource kind.
"""

import asyncio
import time
from contextlib import nullcontext
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, List, Mapping, Optional, Sequence, TYPE_CHECKING, TypeVar, Union, get_args

from pydantic import BaseModel

from shared.errors import ValidationError
from shared.logging import get_logger
from .ttl_store import TTLStore
from .generations import GenerationLedger
from .inflight import InFlightRegistry

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

T = TypeVar("T")

Patch = Union[BaseModel, Mapping[str, Any], Sequence[Any]]


def _accepts_none(model_cls: type, field_name: str) -> bool:
    field = model_cls.model_fields.get(field_name)
    if field is None:
        # Extra fields are kept as sent
        return True
    annotation = field.annotation
    return annotation is type(None) or type(None) in get_args(annotation)


def _item_id(item: Any) -> Optional[str]:
    if isinstance(item, BaseModel):
        value = getattr(item, "id", None)
    elif isinstance(item, Mapping):
        value = item.get("id")
    else:
        value = None
    return str(value) if value not in (None, "") else None


def _merge_items(previous: List[Any], partial: Any, collection_fields: Iterable[str]) -> List[Any]:
    """Merge a list of items into a cached list, matching items by ``id``."""
    if isinstance(partial, (BaseModel, Mapping, str, bytes)):
        raise ValidationError(
            "List values are patched with a list of items carrying an id",
            details={"patch_type": type(partial).__name__},
        )

    merged = list(previous)
    positions = {_item_id(item): index for index, item in enumerate(merged)}
    item_type = type(merged[0]) if merged and isinstance(merged[0], BaseModel) else None

    for item in partial:
        item_id = _item_id(item)
        if item_id is None:
            raise ValidationError("List patch item has no id", details={"item": repr(item)})
        if item_id in positions:
            position = positions[item_id]
            merged[position] = merge_values(merged[position], item, collection_fields)
            continue
        if item_type is not None and not isinstance(item, BaseModel):
            item = item_type.model_validate(item)
        positions[item_id] = len(merged)
        merged.append(item)
    return merged


def merge_values(previous: Any, partial: Patch, collection_fields: Iterable[str] = ()) -> Any:
    """Overlay ``partial`` on ``previous``.

    Every field present in ``partial`` wins. Collection fields that are
    missing from ``partial`` (or explicitly null) keep the previous
    collection instead of being reset, and so does any field the model
    does not declare as optional. List values (the catalogs) are merged
    item by item on ``id``.
    """
    if isinstance(previous, list):
        return _merge_items(previous, partial, collection_fields)

    if isinstance(partial, BaseModel):
        patch: Dict[str, Any] = partial.model_dump(exclude_unset=True)
    else:
        patch = dict(partial)

    for field_name in collection_fields:
        if patch.get(field_name) is None:
            patch.pop(field_name, None)

    if isinstance(previous, BaseModel):
        model_cls = type(previous)
        for field_name in [name for name, value in patch.items() if value is None]:
            if not _accepts_none(model_cls, field_name):
                patch.pop(field_name)
        merged = previous.model_dump()
        merged.update(patch)
        return model_cls.model_validate(merged)

    merged = dict(previous)
    merged.update(patch)
    return merged


def _retrieve_exception(task: "asyncio.Task") -> None:
    # Every awaiter may have been cancelled; the failure is already logged
    if not task.cancelled():
        task.exception()


class ReadThroughLoader(Generic[T]):
    """Serve fresh cache, join an in-flight fetch, or start a new one.

    A fetch only seeds the cache if the key's generation did not move while
    it was in flight; otherwise its result goes back to the callers that
    awaited it and nowhere else.
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[str], Awaitable[T]],
        ttl_seconds: float,
        *,
        collection_fields: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.name = name
        self._fetch = fetch
        self.collection_fields = tuple(collection_fields)
        self.metrics = metrics
        self.logger = get_logger(f"users.cache.{name}")

        self.store: TTLStore[T] = TTLStore(ttl_seconds, name=name, clock=clock)
        self.generations = GenerationLedger()
        self.inflight = InFlightRegistry()

    def peek(self, key: str) -> Optional[T]:
        """Return the cached value for ``key`` regardless of freshness."""
        entry = self.store.get(key)
        return entry.value if entry is not None else None

    def get_fresh(self, key: str) -> Optional[T]:
        entry = self.store.get_fresh(key)
        return entry.value if entry is not None else None

    async def load(self, key: str) -> Optional[T]:
        """Load ``key`` through the cache."""
        if not key:
            return None

        entry = self.store.get_fresh(key)
        if entry is not None:
            self._count("cache_hits_total")
            self.logger.debug("Cache hit", key=key)
            return entry.value

        task = self.inflight.get(key)
        if task is not None:
            self._count("cache_joins_total")
            self.logger.debug("Joining in-flight fetch", key=key)
            return await asyncio.shield(task)

        self._count("cache_misses_total")
        start_generation = self.generations.get(key)
        task = asyncio.ensure_future(self._fetch_and_store(key, start_generation))
        task.add_done_callback(_retrieve_exception)
        self.inflight.register(key, task)
        self.logger.debug("Cache miss, fetching", key=key, generation=start_generation)
        return await asyncio.shield(task)

    async def _fetch_and_store(self, key: str, start_generation: int) -> T:
        task = asyncio.current_task()
        if self.metrics:
            timer = self.metrics.time_operation("cache_fetch_duration_seconds", cache_type=self.name)
        else:
            timer = nullcontext()
        try:
            with timer:
                value = await self._fetch(key)
        except Exception as exc:
            # A failed fetch counts as an invalidation so the next load starts clean
            self.generations.bump(key)
            self.store.delete(key)
            self._count("cache_fetch_errors_total")
            if self.metrics:
                self.metrics.record_error(type(exc).__name__)
            self.logger.warning("Cache fetch failed", key=key, error=str(exc))
            raise
        finally:
            self.inflight.release(key, task)

        if not self.generations.is_current(key, start_generation):
            self._count("cache_stale_drops_total")
            self.logger.info(
                "Discarding superseded fetch result",
                key=key,
                started_generation=start_generation,
                current_generation=self.generations.get(key),
            )
            return value

        self.store.set(key, value)
        return value

    def invalidate(self, key: str) -> None:
        """Drop ``key`` and supersede any fetch still in flight for it."""
        if not key:
            return
        generation = self.generations.bump(key)
        self.store.delete(key)
        self.inflight.discard(key)
        self.logger.debug("Invalidated", key=key, generation=generation)

    def begin_mutation(self, key: str) -> None:
        """Supersede in-flight fetches for ``key`` but keep the cached value.

        Used right before a sensitive remote write so a read that started
        earlier cannot re-cache the pre-write record.
        """
        if not key:
            return
        self.generations.bump(key)
        self.inflight.discard(key)

    def merge_patch(self, key: str, partial: Patch) -> Optional[T]:
        """Merge ``partial`` into the cached value; no-op when ``key`` is not cached."""
        if not key:
            return None
        entry = self.store.get(key)
        if entry is None:
            return None

        merged = merge_values(entry.value, partial, self.collection_fields)
        self.store.set(key, merged, ttl=entry.ttl)
        return merged

    def put(self, key: str, value: T) -> None:
        """Store a confirmed authoritative value."""
        if not key:
            return
        self.store.set(key, value)

    def stats(self) -> Dict[str, Any]:
        stats = self.store.stats()
        stats["in_flight"] = len(self.inflight)
        return stats

    def _count(self, metric_name: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, cache_type=self.name)
