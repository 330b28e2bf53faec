"""Coordinator between a backend, its cache and its observers.

:class:`StoredObjects` is the entry point most applications use. Writes go
to the backend first, are pushed straight into the cache (no TTL wait) and
are then published to the observers they affect. Reads happen through
subscriptions, most conveniently via :class:`ObjectsView`::

    users = StoredObjects.from_model(user_model)

    async with users.watch(predicate=lambda u: u["active"]) as view:
        await users.create({"username": "hunter2", "active": True})
        print(view.objs)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from pytinyorm.cache import CachedStore, CacheRegistry
from pytinyorm.config import StoreConfig
from pytinyorm.model import Model
from pytinyorm.pubsub import Observer, Predicate, PubSub
from pytinyorm.storage.base import StorageBackend

_logger = logging.getLogger(__name__)


class StoredObjects:
    """Shared, cached, observable access to one backend.

    Parameters
    ----------
    name : str
        Unique cache name (see :class:`~pytinyorm.cache.CacheRegistry`).
    backend : StorageBackend
        Source of truth for reads and writes.
    get_id : callable
        Extracts the id of a value returned by the backend.
    config : StoreConfig or None
        Supplies the cache TTL; defaults to ``StoreConfig.from_env()``.
    cache_max_age_seconds : float or None
        Explicit TTL, overriding *config*.
    registry : CacheRegistry or None
        Cache name table; defaults to the process-wide one.
    clock : callable
        Time source in seconds, shared with the cache.
    """

    def __init__(
        self,
        name: str,
        backend: StorageBackend,
        get_id: Callable[[Any], str],
        *,
        config: StoreConfig | None = None,
        cache_max_age_seconds: float | None = None,
        registry: CacheRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if cache_max_age_seconds is None:
            cache_max_age_seconds = (config or StoreConfig.from_env()).max_age_seconds
        self._backend = backend
        self._get_id = get_id
        self._pubsub = PubSub(
            name,
            cache_max_age_seconds,
            backend.fetch_by_ids,
            backend.fetch_all,
            registry=registry,
            clock=clock,
        )

    @classmethod
    def from_model(cls, model: Model, **kwargs: Any) -> StoredObjects:
        """Build a coordinator over a model's storage engine, named after the model."""
        return cls(model.name, model.storage, model.get_id, **kwargs)

    @property
    def name(self) -> str:
        return self._pubsub.cache.name

    @property
    def pubsub(self) -> PubSub:
        return self._pubsub

    @property
    def cache(self) -> CachedStore:
        return self._pubsub.cache

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, observer: Observer, ids: Iterable[str]) -> None:
        self._pubsub.subscribe(observer, ids)

    def subscribe_all(self, observer: Observer, predicate: Predicate | None = None) -> None:
        self._pubsub.subscribe_all(observer, predicate)

    def unsubscribe(self, observer: Observer) -> None:
        self._pubsub.unsubscribe(observer)

    async def publish(self, observers: Iterable[Observer]) -> None:
        await self._pubsub.publish(observers)

    async def notify_changed(self, object_id: str, value: Any) -> None:
        """Write *value* through to the cache and notify affected observers."""
        _logger.debug('"%s" item "%s" changed; notifying observers', self.name, object_id)
        self.cache.update({object_id: value}, self.cache.now())
        await self._pubsub.publish_changed([(object_id, value)])

    async def notify_deleted(self, object_id: str, value: Any) -> None:
        """Forget *object_id* everywhere and notify observers of its last value."""
        await self._pubsub.publish_deleted([(object_id, value)])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, *args: Any, **kwargs: Any) -> Any:
        value = await self._backend.create(*args, **kwargs)
        await self.notify_changed(self._get_id(value), value)
        return value

    async def update(self, *args: Any, **kwargs: Any) -> Any:
        value = await self._backend.update(*args, **kwargs)
        await self.notify_changed(self._get_id(value), value)
        return value

    async def delete(self, *values: Any) -> None:
        """Delete *values* (whole objects, so observers' predicates can match them)."""
        if not values:
            return
        pairs = [(self._get_id(value), value) for value in values]
        await self._backend.delete([object_id for object_id, _ in pairs])
        await self._pubsub.publish_deleted(pairs)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def watch(
        self,
        ids: Iterable[str] | None = None,
        *,
        predicate: Predicate | None = None,
        on_change: Callable[[ObjectsView], None] | None = None,
    ) -> ObjectsView:
        """View of some objects: by *ids*, by *predicate*, or all of them."""
        return ObjectsView(self, ids=ids, predicate=predicate, on_change=on_change)

    def watch_one(
        self,
        id_or_predicate: str | Predicate,
        *,
        on_change: Callable[[ObjectsView], None] | None = None,
    ) -> ObjectsView:
        """View of a single object, by id or by the first match of a predicate."""
        if isinstance(id_or_predicate, str):
            return self.watch([id_or_predicate], on_change=on_change)
        return self.watch(predicate=id_or_predicate, on_change=on_change)


class ObjectsView:
    """Live view of stored objects, kept current while the context is open.

    The view is itself the observer: each publish replaces :attr:`objs` and
    :attr:`is_loading`, then calls *on_change* (if any) with the view.
    """

    def __init__(
        self,
        store: StoredObjects,
        *,
        ids: Iterable[str] | None = None,
        predicate: Predicate | None = None,
        on_change: Callable[[ObjectsView], None] | None = None,
    ) -> None:
        if ids is not None and predicate is not None:
            raise ValueError("pass either ids or predicate, not both")
        self._store = store
        self._ids = list(ids) if ids is not None else None
        self._predicate = predicate
        self._on_change = on_change
        self.objs: dict[str, Any] = {}
        self.is_loading = False

    def __call__(self, objs: dict[str, Any] | None) -> None:
        self.objs = dict(objs) if objs is not None else {}
        self.is_loading = objs is None
        if self._on_change is not None:
            self._on_change(self)

    async def __aenter__(self) -> ObjectsView:
        if self._ids is not None:
            if not self._ids:
                return self
            self._store.subscribe(self, self._ids)
        else:
            self._store.subscribe_all(self, self._predicate)
        try:
            await self._store.publish([self])
        except BaseException:
            self._store.unsubscribe(self)
            raise
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._store.unsubscribe(self)

    async def refresh(self) -> None:
        """Re-publish to this view only (e.g. after the TTL has passed)."""
        await self._store.publish([self])

    def first(self) -> tuple[str, Any] | tuple[None, None]:
        """``(id, obj)`` of the first object in view, or ``(None, None)``."""
        for object_id, obj in self.objs.items():
            return object_id, obj
        return None, None

    @property
    def obj(self) -> Any:
        return self.first()[1]
