"""Time-bounded object cache with fetch coalescing.

The cache keeps ``id -> (value, fetched_at)`` entries in insertion order and
guarantees that at most one backend fetch is in flight for any id. A
whole-set fetch excludes every per-id fetch and vice versa.

Locks are plain :class:`asyncio.Event` objects that are set on release.
A caller that finds any of its ids (or the whole set) locked waits for the
holders to finish and then re-classifies from scratch: the holder may have
just written the very values it was about to fetch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pytinyorm._redact import format_ids
from pytinyorm.exceptions import DuplicateCacheError

_logger = logging.getLogger(__name__)

FetchByIds = Callable[[Sequence[str]], Awaitable[Mapping[str, Any]]]
FetchAll = Callable[[], Awaitable[Mapping[str, Any]]]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    value: Any
    fetched_at: float


class CacheRegistry:
    """Name table of live cached stores.

    Names are claimed on construction and never released. Pass a fresh
    registry to get isolated caches (e.g. in tests); otherwise the
    process-wide :data:`DEFAULT_CACHE_REGISTRY` is used.
    """

    def __init__(self) -> None:
        self._stores: dict[str, CachedStore] = {}

    def register(self, store: CachedStore) -> None:
        if store.name in self._stores:
            raise DuplicateCacheError(
                f'A cached store with name "{store.name}" already exists. '
                "This likely means there is some error in the code.",
                name=store.name,
            )
        self._stores[store.name] = store

    def __contains__(self, name: object) -> bool:
        return name in self._stores

    def names(self) -> list[str]:
        return list(self._stores)


DEFAULT_CACHE_REGISTRY = CacheRegistry()


class CachedStore:
    """Cache in front of a backend's ``fetch_by_ids``/``fetch_all``.

    Parameters
    ----------
    name : str
        Unique name within *registry*.
    max_age_seconds : float
        Maximum entry age. Negative disables expiry.
    fetch_by_ids, fetch_all : async callables
        Backend reads. Missing ids are simply absent from the result.
    registry : CacheRegistry or None
        Name table to register in; defaults to :data:`DEFAULT_CACHE_REGISTRY`.
    clock : callable
        Returns the current time in seconds.
    """

    def __init__(
        self,
        name: str,
        max_age_seconds: float,
        fetch_by_ids: FetchByIds,
        fetch_all: FetchAll,
        *,
        registry: CacheRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.max_age_seconds = max_age_seconds
        self._fetch_by_ids = fetch_by_ids
        self._fetch_all = fetch_all
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._fetch_locks: dict[str, asyncio.Event] = {}
        self._fetch_all_lock: asyncio.Event | None = None
        self._last_fetch_all: float | None = None
        (registry if registry is not None else DEFAULT_CACHE_REGISTRY).register(self)

    def now(self) -> float:
        return self._clock()

    def __contains__(self, object_id: object) -> bool:
        return object_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def ids(self) -> list[str]:
        return list(self._entries)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, ids: Sequence[str]) -> dict[str, Any]:
        """Return current values for *ids*, fetching missing or stale ones.

        Ids the backend does not know are absent from the result.
        """
        ids = list(dict.fromkeys(ids))
        while True:
            found: dict[str, Any] = {}
            missing: list[str] = []
            for object_id in ids:
                entry = self._entries.get(object_id)
                if entry is None:
                    missing.append(object_id)
                elif self._is_expired(entry):
                    _logger.debug('Dropping expired "%s" item "%s" from cache', self.name, object_id)
                    del self._entries[object_id]
                    missing.append(object_id)
                else:
                    found[object_id] = entry.value

            if not missing:
                return found

            # Check the whole requested set, not just the misses, so two
            # partially overlapping gets never fetch side by side.
            contended = self._locks_for(ids)
            if contended:
                _logger.debug('Ongoing "%s" fetch detected; waiting and retrying get', self.name)
                await asyncio.gather(*(lock.wait() for lock in contended))
                continue

            lock = asyncio.Event()
            for object_id in ids:
                self._fetch_locks[object_id] = lock
            try:
                _logger.debug(
                    'Fetching %d "%s" item(s) with IDs %s', len(missing), self.name, format_ids(missing)
                )
                fresh = dict(await self._fetch_by_ids(missing))
                self.update(fresh, self.now())
            finally:
                for object_id in ids:
                    if self._fetch_locks.get(object_id) is lock:
                        del self._fetch_locks[object_id]
                lock.set()

            found.update(fresh)
            return found

    async def get_all(self) -> dict[str, Any]:
        """Return every object, refetching the whole set once it is stale."""
        while self._should_fetch_all():
            contended = self._locks_for(self._fetch_locks)
            if contended:
                _logger.debug('Ongoing "%s" fetch detected; waiting and retrying get_all', self.name)
                await asyncio.gather(*(lock.wait() for lock in contended))
                continue

            lock = asyncio.Event()
            self._fetch_all_lock = lock
            try:
                if self._last_fetch_all is None:
                    _logger.debug('Fetching all "%s" items (never fetched)', self.name)
                else:
                    _logger.debug(
                        'Fetching all "%s" items (last fetch %.0fs ago)',
                        self.name,
                        self.now() - self._last_fetch_all,
                    )
                fetched = dict(await self._fetch_all())
                now = self.now()
                self._entries.clear()
                self.update(fetched, now)
                self._last_fetch_all = now
            finally:
                self._fetch_all_lock = None
                lock.set()
            _logger.debug('Got all "%s" items (%d)', self.name, len(self._entries))
            break

        return {object_id: entry.value for object_id, entry in self._entries.items()}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update(self, values: Mapping[str, Any], now: float) -> None:
        """Write *values* through with timestamp *now*; never touches the backend."""
        for object_id, value in values.items():
            # Re-insert so the entry moves to the most recently updated position.
            self._entries.pop(object_id, None)
            self._entries[object_id] = CacheEntry(value, now)

    def delete(self, ids: Iterable[str]) -> None:
        ids = list(ids)
        if ids:
            _logger.debug('Deleting "%s" items from cache: %s', self.name, format_ids(ids))
        for object_id in ids:
            self._entries.pop(object_id, None)

    def evict(self, ids: Iterable[str]) -> None:
        """Drop *ids* that may still exist in the backend.

        Unlike :meth:`delete`, the cached set is no longer complete afterwards,
        so the next :meth:`get_all` refetches it.
        """
        ids = list(ids)
        if ids:
            self.delete(ids)
            self._last_fetch_all = None

    def delete_all_but(self, ids: Iterable[str]) -> None:
        keep = set(ids)
        self.evict([object_id for object_id in self._entries if object_id not in keep])

    def clear(self) -> None:
        _logger.debug('Clearing all "%s" items from cache', self.name)
        self._entries.clear()
        self._last_fetch_all = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self.max_age_seconds >= 0 and self.now() - entry.fetched_at > self.max_age_seconds

    def _should_fetch_all(self) -> bool:
        if self._last_fetch_all is None:
            return True
        return self.max_age_seconds >= 0 and self.now() - self._last_fetch_all >= self.max_age_seconds

    def _locks_for(self, ids: Iterable[str]) -> list[asyncio.Event]:
        locks = {id(lock): lock for object_id in ids if (lock := self._fetch_locks.get(object_id)) is not None}
        if self._fetch_all_lock is not None:
            locks[id(self._fetch_all_lock)] = self._fetch_all_lock
        return list(locks.values())
