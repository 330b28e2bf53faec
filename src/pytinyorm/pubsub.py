"""Subscription registry on top of :class:`~pytinyorm.cache.CachedStore`.

Observers are plain callables taking ``dict[str, value] | None``; ``None``
is the "loading" signal sent right before data is resolved. Each observer
is in exactly one mode at a time:

* :class:`IdSubscription` - interested in an explicit set of ids;
* :class:`AllSubscription` - interested in every object, optionally
  narrowed by a predicate.

The registry owns its cache. Ids nobody is interested in anymore are
evicted from it, except while any all-scoped observer exists: such an
observer (filtered or not) keeps broadly used ids warm.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from pytinyorm._redact import format_ids
from pytinyorm.cache import CachedStore, CacheRegistry, FetchAll, FetchByIds

_logger = logging.getLogger(__name__)

Observer = Callable[[dict[str, Any] | None], None]
Predicate = Callable[[Any], bool]


@dataclass(frozen=True, slots=True)
class IdSubscription:
    ids: frozenset[str]


@dataclass(frozen=True, slots=True)
class AllSubscription:
    predicate: Predicate | None = None


Subscription = IdSubscription | AllSubscription


class PubSub:
    """Route publishes to interested observers.

    ``_modes`` is the forward index (observer -> mode) and
    ``_observers_by_id`` the reverse index for id-scoped observers. Every
    public method leaves the two consistent before it can suspend.
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
        self._cache = CachedStore(name, max_age_seconds, fetch_by_ids, fetch_all, registry=registry, clock=clock)
        self._modes: dict[Observer, Subscription] = {}
        self._observers_by_id: dict[str, set[Observer]] = {}

    @property
    def cache(self) -> CachedStore:
        return self._cache

    @property
    def observers(self) -> list[Observer]:
        return list(self._modes)

    def mode_of(self, observer: Observer) -> Subscription | None:
        return self._modes.get(observer)

    def observers_of(self, object_id: str) -> set[Observer]:
        """Id-scoped observers of *object_id*."""
        return set(self._observers_by_id.get(object_id, ()))

    def _has_all_observers(self) -> bool:
        return any(isinstance(mode, AllSubscription) for mode in self._modes.values())

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def subscribe(self, observer: Observer, ids: Iterable[str]) -> None:
        """Add *ids* to the observer's id set, switching it to id-scoped mode."""
        ids = frozenset(ids)
        if not ids:
            return

        mode = self._modes.get(observer)
        existing = mode.ids if isinstance(mode, IdSubscription) else frozenset()
        self._modes[observer] = IdSubscription(existing | ids)
        for object_id in ids:
            self._observers_by_id.setdefault(object_id, set()).add(observer)

    def subscribe_all(self, observer: Observer, predicate: Predicate | None = None) -> None:
        """Switch the observer to all-scoped mode, dropping any id subscription."""
        # The observer keeps needing objects, so nothing is orphaned yet.
        self.unsubscribe(observer, evict_orphans=False)
        self._modes[observer] = AllSubscription(predicate)

    def unsubscribe(self, observer: Observer, *, evict_orphans: bool = True) -> None:
        mode = self._modes.pop(observer, None)
        if mode is None:
            return

        orphans: list[str] = []
        if isinstance(mode, IdSubscription):
            for object_id in mode.ids:
                observers = self._observers_by_id.get(object_id)
                if observers is None:
                    continue
                observers.discard(observer)
                if not observers:
                    del self._observers_by_id[object_id]
                    orphans.append(object_id)

        if not evict_orphans or self._has_all_observers():
            return

        if isinstance(mode, AllSubscription):
            _logger.debug(
                'Last all-items observer of "%s" left; evicting items without observers', self._cache.name
            )
            self._cache.delete_all_but(self._observers_by_id)
        elif orphans:
            self._cache.evict(orphans)

    def unsubscribe_ids(self, ids: Iterable[str]) -> list[Observer]:
        """Drop *ids* from every id-scoped observer.

        Observers left with no ids become unregistered; they are returned.
        """
        ids = set(ids)
        affected: dict[Observer, None] = {}
        for object_id in ids:
            for observer in self._observers_by_id.pop(object_id, ()):
                affected[observer] = None

        emptied: list[Observer] = []
        for observer in affected:
            mode = self._modes[observer]
            if not isinstance(mode, IdSubscription):
                continue
            remaining = mode.ids - ids
            if remaining:
                self._modes[observer] = IdSubscription(remaining)
            else:
                del self._modes[observer]
                emptied.append(observer)
        return emptied

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, observers: Iterable[Observer]) -> None:
        """Send each observer its current view of the data.

        Every observer first gets ``None`` so it can show a pending state,
        then its own view once the minimal id set has been resolved.
        """
        observers = list(dict.fromkeys(observers))
        if not observers:
            return

        for observer in observers:
            observer(None)

        modes = [self._modes.get(observer) for observer in observers]
        fetched_all = any(isinstance(mode, AllSubscription) for mode in modes)
        if fetched_all:
            objs = await self._cache.get_all()
        else:
            ids: set[str] = set()
            for mode in modes:
                if isinstance(mode, IdSubscription):
                    ids |= mode.ids
            objs = await self._cache.get(sorted(ids)) if ids else {}

        # Modes are re-read: observers may have left or switched while we waited.
        for observer in observers:
            mode = self._modes.get(observer)
            if isinstance(mode, AllSubscription):
                if not fetched_all:
                    # Switched to all-scoped mid-publish; its own publish follows.
                    continue
                if mode.predicate is None:
                    observer(dict(objs))
                else:
                    observer({object_id: obj for object_id, obj in objs.items() if mode.predicate(obj)})
            elif isinstance(mode, IdSubscription):
                observer({object_id: objs[object_id] for object_id in mode.ids if object_id in objs})

    async def publish_changed(self, changed: Sequence[tuple[str, Any]]) -> None:
        """Publish to the observers affected by just created or updated objects."""
        await self.publish(self._affected_by(changed))

    async def publish_deleted(self, deleted: Sequence[tuple[str, Any]]) -> None:
        """Publish to the observers affected by deleted objects.

        *deleted* carries the last known values so predicates can still
        match. The ids are dropped from every observer and from the cache
        before publishing, so the resolved data omits them instead of
        fetching them again.
        Observers whose last id was deleted get an empty result.
        """
        ids = [object_id for object_id, _ in deleted]
        affected = self._affected_by(deleted)
        emptied = self.unsubscribe_ids(ids)
        self._cache.delete(ids)
        _logger.debug(
            'Publishing deletion of "%s" items %s to %d observer(s)',
            self._cache.name,
            format_ids(ids),
            len(affected),
        )
        await self.publish(affected)
        for observer in emptied:
            if observer not in self._modes:
                observer({})

    def _affected_by(self, objs: Sequence[tuple[str, Any]]) -> list[Observer]:
        affected: dict[Observer, None] = {}
        for observer, mode in self._modes.items():
            if not isinstance(mode, AllSubscription):
                continue
            if mode.predicate is None or any(mode.predicate(obj) for _, obj in objs):
                affected[observer] = None
        for object_id, _ in objs:
            for observer in self._observers_by_id.get(object_id, ()):
                affected[observer] = None
        return list(affected)
