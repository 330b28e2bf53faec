from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import pytest

from pytinyorm.cache import CacheRegistry
from pytinyorm.pubsub import AllSubscription, IdSubscription, PubSub


class _Backend:
    def __init__(self, data: dict[str, Any]) -> None:
        self.data = dict(data)
        self.fetch_calls: list[list[str]] = []
        self.fetch_all_calls = 0
        self.gate: asyncio.Event | None = None

    async def fetch_by_ids(self, ids: Sequence[str]) -> dict[str, Any]:
        self.fetch_calls.append(list(ids))
        if self.gate is not None:
            await self.gate.wait()
        return {object_id: self.data[object_id] for object_id in ids if object_id in self.data}

    async def fetch_all(self) -> dict[str, Any]:
        self.fetch_all_calls += 1
        return dict(self.data)


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any] | None] = []

    def __call__(self, objs: dict[str, Any] | None) -> None:
        self.calls.append(objs)

    @property
    def last(self) -> dict[str, Any] | None:
        return self.calls[-1]


def _pubsub(backend: _Backend) -> PubSub:
    return PubSub(
        "things",
        60,
        backend.fetch_by_ids,
        backend.fetch_all,
        registry=CacheRegistry(),
        clock=lambda: 0.0,
    )


X = {"name": "x", "active": True}
Y = {"name": "y", "active": False}


def test_subscribe_accumulates_ids() -> None:
    pubsub = _pubsub(_Backend({}))
    observer = _Recorder()

    pubsub.subscribe(observer, ["a"])
    pubsub.subscribe(observer, ["b", "a"])

    assert pubsub.mode_of(observer) == IdSubscription(frozenset({"a", "b"}))
    assert pubsub.observers_of("a") == {observer}
    assert pubsub.observers_of("b") == {observer}


def test_subscribe_with_no_ids_is_a_noop() -> None:
    pubsub = _pubsub(_Backend({}))
    observer = _Recorder()

    pubsub.subscribe(observer, [])

    assert pubsub.mode_of(observer) is None
    assert pubsub.observers == []


def test_switching_modes_replaces_previous_mode() -> None:
    pubsub = _pubsub(_Backend({}))
    pubsub.cache.update({"a": X}, 0.0)
    observer = _Recorder()

    pubsub.subscribe(observer, ["a"])
    pubsub.subscribe_all(observer)

    assert pubsub.mode_of(observer) == AllSubscription(None)
    assert pubsub.observers_of("a") == set()
    # Switching to all-scoped mode does not evict anything.
    assert "a" in pubsub.cache

    pubsub.subscribe(observer, ["b"])
    assert pubsub.mode_of(observer) == IdSubscription(frozenset({"b"}))


@pytest.mark.asyncio
async def test_publish_sends_loading_then_data() -> None:
    backend = _Backend({"a": X})
    pubsub = _pubsub(backend)
    observer = _Recorder()
    pubsub.subscribe(observer, ["a"])

    await pubsub.publish([observer])

    assert observer.calls == [None, {"a": X}]


@pytest.mark.asyncio
async def test_publish_resolves_union_of_id_scoped_observers() -> None:
    backend = _Backend({"a": X, "b": Y})
    pubsub = _pubsub(backend)
    first, second = _Recorder(), _Recorder()
    pubsub.subscribe(first, ["a"])
    pubsub.subscribe(second, ["b", "missing"])

    await pubsub.publish([first, second])

    assert backend.fetch_calls == [["a", "b", "missing"]]
    assert backend.fetch_all_calls == 0
    assert first.last == {"a": X}
    assert second.last == {"b": Y}


@pytest.mark.asyncio
async def test_publish_with_all_scoped_observer_uses_fetch_all() -> None:
    backend = _Backend({"a": X, "b": Y})
    pubsub = _pubsub(backend)
    everything, active_only, by_id = _Recorder(), _Recorder(), _Recorder()
    pubsub.subscribe_all(everything)
    pubsub.subscribe_all(active_only, lambda obj: obj["active"])
    pubsub.subscribe(by_id, ["b"])

    await pubsub.publish([everything, active_only, by_id])

    assert backend.fetch_all_calls == 1
    assert backend.fetch_calls == []
    assert everything.last == {"a": X, "b": Y}
    assert active_only.last == {"a": X}
    assert by_id.last == {"b": Y}


@pytest.mark.asyncio
async def test_publish_changed_routes_to_interested_observers_only() -> None:
    backend = _Backend({"a": X, "b": Y})
    pubsub = _pubsub(backend)
    pubsub.cache.update({"a": X, "b": Y}, 0.0)

    ac = _Recorder()
    unrelated = _Recorder()
    pubsub.subscribe(ac, ["a", "c"])
    pubsub.subscribe(unrelated, ["z"])

    await pubsub.publish_changed([("a", X), ("b", Y)])

    assert ac.calls == [None, {"a": X}]
    assert unrelated.calls == []


@pytest.mark.asyncio
async def test_filtered_all_observer_skipped_when_no_change_matches() -> None:
    backend = _Backend({"b": Y})
    pubsub = _pubsub(backend)
    active_only, everything = _Recorder(), _Recorder()
    pubsub.subscribe_all(active_only, lambda obj: obj["active"])
    pubsub.subscribe_all(everything)

    await pubsub.publish_changed([("b", Y)])

    assert active_only.calls == []
    assert everything.calls == [None, {"b": Y}]


def test_unsubscribing_last_id_observer_evicts_orphans() -> None:
    pubsub = _pubsub(_Backend({}))
    pubsub.cache.update({"x": X, "y": Y}, 0.0)
    first, second = _Recorder(), _Recorder()
    pubsub.subscribe(first, ["x", "y"])
    pubsub.subscribe(second, ["y"])

    pubsub.unsubscribe(first)

    assert "x" not in pubsub.cache
    assert "y" in pubsub.cache
    assert pubsub.mode_of(first) is None
    assert pubsub.observers_of("x") == set()


def test_all_scoped_observer_suppresses_orphan_eviction() -> None:
    pubsub = _pubsub(_Backend({}))
    pubsub.cache.update({"x": X}, 0.0)
    by_id, filtered = _Recorder(), _Recorder()
    pubsub.subscribe(by_id, ["x"])
    pubsub.subscribe_all(filtered, lambda obj: False)

    pubsub.unsubscribe(by_id)

    assert "x" in pubsub.cache


def test_last_all_scoped_observer_leaving_evicts_unobserved_ids() -> None:
    pubsub = _pubsub(_Backend({}))
    pubsub.cache.update({"x": X, "y": Y, "z": {}}, 0.0)
    everything, first, second = _Recorder(), _Recorder(), _Recorder()
    pubsub.subscribe_all(everything)
    pubsub.subscribe_all(first)
    pubsub.subscribe(second, ["y"])

    pubsub.unsubscribe(everything)
    assert pubsub.cache.ids() == ["x", "y", "z"]

    pubsub.unsubscribe(first)
    assert pubsub.cache.ids() == ["y"]


@pytest.mark.asyncio
async def test_all_scoped_publish_after_eviction_refetches_everything() -> None:
    backend = _Backend({"x": X, "y": Y})
    pubsub = _pubsub(backend)
    everything, by_id = _Recorder(), _Recorder()
    pubsub.subscribe(by_id, ["x"])
    pubsub.subscribe_all(everything)
    await pubsub.publish([everything])

    pubsub.unsubscribe(everything)
    assert pubsub.cache.ids() == ["x"]

    again = _Recorder()
    pubsub.subscribe_all(again)
    await pubsub.publish([again, by_id])

    assert backend.fetch_all_calls == 2
    assert again.last == {"x": X, "y": Y}
    assert by_id.last == {"x": X}


def test_unsubscribe_without_eviction() -> None:
    pubsub = _pubsub(_Backend({}))
    pubsub.cache.update({"x": X}, 0.0)
    observer = _Recorder()
    pubsub.subscribe(observer, ["x"])

    pubsub.unsubscribe(observer, evict_orphans=False)

    assert "x" in pubsub.cache
    assert pubsub.observers == []


def test_unsubscribe_unknown_observer_is_harmless() -> None:
    pubsub = _pubsub(_Backend({}))
    pubsub.cache.update({"x": X}, 0.0)

    pubsub.unsubscribe(_Recorder())

    assert "x" in pubsub.cache


def test_unsubscribe_ids_keeps_indices_consistent() -> None:
    pubsub = _pubsub(_Backend({}))
    first, second = _Recorder(), _Recorder()
    pubsub.subscribe(first, ["x", "y"])
    pubsub.subscribe(second, ["x"])

    emptied = pubsub.unsubscribe_ids(["x"])

    assert emptied == [second]
    assert pubsub.mode_of(first) == IdSubscription(frozenset({"y"}))
    assert pubsub.mode_of(second) is None
    assert pubsub.observers_of("x") == set()
    assert pubsub.observers_of("y") == {first}


@pytest.mark.asyncio
async def test_publish_deleted_drops_ids_and_omits_them_from_payload() -> None:
    # The backend already forgot "x"; the cache still holds it.
    backend = _Backend({"y": Y})
    pubsub = _pubsub(backend)
    pubsub.cache.update({"x": X, "y": Y}, 0.0)

    both, only_x, active_only, unrelated = _Recorder(), _Recorder(), _Recorder(), _Recorder()
    pubsub.subscribe(both, ["x", "y"])
    pubsub.subscribe(only_x, ["x"])
    pubsub.subscribe_all(active_only, lambda obj: obj["active"])
    pubsub.subscribe(unrelated, ["y"])

    await pubsub.publish_deleted([("x", X)])

    assert pubsub.observers_of("x") == set()
    assert pubsub.mode_of(both) == IdSubscription(frozenset({"y"}))
    assert pubsub.mode_of(only_x) is None
    assert "x" not in pubsub.cache

    assert both.last == {"y": Y}
    assert only_x.calls == [None, {}]
    # Predicate matched the last known value of the deleted object.
    assert active_only.calls == [None, {}]
    assert unrelated.calls == []
    assert all("x" not in call for call in backend.fetch_calls)


@pytest.mark.asyncio
async def test_observer_unsubscribed_mid_fetch_gets_no_data() -> None:
    backend = _Backend({"a": X})
    backend.gate = asyncio.Event()
    pubsub = _pubsub(backend)
    observer = _Recorder()
    pubsub.subscribe(observer, ["a"])

    task = asyncio.create_task(pubsub.publish([observer]))
    await asyncio.sleep(0)
    pubsub.unsubscribe(observer)
    backend.gate.set()
    await task

    assert observer.calls == [None]
    # The fetch still completes and its result is cached.
    assert "a" in pubsub.cache


@pytest.mark.asyncio
async def test_publish_to_nobody_does_nothing() -> None:
    backend = _Backend({"a": X})
    pubsub = _pubsub(backend)

    await pubsub.publish([])

    assert backend.fetch_calls == []
    assert backend.fetch_all_calls == 0
