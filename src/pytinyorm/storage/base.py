"""Backend contract and the shared record-engine implementation."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol, TypeVar

from pydantic import ValidationError

from pytinyorm._constants import storage_key
from pytinyorm._redact import format_ids
from pytinyorm.exceptions import NotFoundError, StorageError
from pytinyorm.models.record import EngineParams, StoredRecord

_logger = logging.getLogger(__name__)

R = TypeVar("R")


class StorageBackend(Protocol):
    """Structural backend interface consumed by the cache and coordinator.

    Every value a backend returns must already have been migrated to the
    current schema version. ``fetch_by_ids`` leaves missing ids out of the
    result instead of raising.
    """

    async def fetch_by_ids(self, ids: Sequence[str]) -> dict[str, Any]:
        ...

    async def fetch_all(self) -> dict[str, Any]:
        ...

    async def create(self, *args: Any, **kwargs: Any) -> Any:
        ...

    async def update(self, *args: Any, **kwargs: Any) -> Any:
        ...

    async def delete(self, ids: Sequence[str]) -> None:
        ...


class RecordEngine:
    """Base for engines that keep one JSON :class:`StoredRecord` per object.

    Subclasses provide four synchronous item hooks over string keys; this
    class handles key derivation, record (de)serialization and migration,
    and runs the hooks through :meth:`_offload`.
    """

    def __init__(self, params: EngineParams) -> None:
        self._params = params
        self._prefix = storage_key(params.model_name, "")

    @property
    def model_name(self) -> str:
        return self._params.model_name

    # ------------------------------------------------------------------
    # Item hooks
    # ------------------------------------------------------------------

    def _get_item(self, key: str) -> str | None:
        raise NotImplementedError

    def _set_item(self, key: str, text: str) -> None:
        raise NotImplementedError

    def _remove_item(self, key: str) -> None:
        raise NotImplementedError

    def _keys(self) -> list[str]:
        raise NotImplementedError

    async def _offload(self, fn: Callable[..., R], *args: Any) -> R:
        """Run a blocking hook. In-process engines just call it."""
        return fn(*args)

    # ------------------------------------------------------------------
    # Record helpers
    # ------------------------------------------------------------------

    def _key(self, object_id: str) -> str:
        return storage_key(self._params.model_name, object_id)

    def _decode(self, key: str, text: str) -> Any:
        try:
            record = StoredRecord.model_validate_json(text)
        except ValidationError as exc:
            raise StorageError(f"Corrupt record {key!r}: {exc}", model_name=self.model_name) from exc
        return self._params.migrate(record.value, record.schema_version)

    def _encode(self, value: Any) -> str:
        try:
            record = StoredRecord(schema_version=self._params.current_version, value=value)
        except ValidationError as exc:
            raise StorageError(
                f"{self.model_name} value is not JSON-serializable: {exc}",
                model_name=self.model_name,
            ) from exc
        return record.to_json()

    # ------------------------------------------------------------------
    # Backend contract
    # ------------------------------------------------------------------

    async def fetch_by_ids(self, ids: Sequence[str]) -> dict[str, Any]:
        _logger.debug("Reading %d %s record(s): %s", len(ids), self.model_name, format_ids(ids))
        result: dict[str, Any] = {}
        for object_id in ids:
            key = self._key(object_id)
            text = await self._offload(self._get_item, key)
            if text is not None:
                result[object_id] = self._decode(key, text)
        return result

    async def fetch_all(self) -> dict[str, Any]:
        keys = await self._offload(self._keys)
        result: dict[str, Any] = {}
        for key in keys:
            if not key.startswith(self._prefix):
                continue
            text = await self._offload(self._get_item, key)
            if text is not None:
                result[key[len(self._prefix) :]] = self._decode(key, text)
        _logger.debug("Read all %s records (%d)", self.model_name, len(result))
        return result

    async def get(self, object_id: str) -> Any:
        """Strict single read.

        Raises
        ------
        NotFoundError
            If no object with *object_id* is stored.
        """
        found = await self.fetch_by_ids([object_id])
        if object_id not in found:
            raise NotFoundError(f'Item with ID "{object_id}" not found.', ids=[object_id])
        return found[object_id]

    async def save(self, *values: Any) -> None:
        """Insert or overwrite *values*, stamped with the current schema version."""
        for value in values:
            key = self._key(self._params.get_id(value))
            await self._offload(self._set_item, key, self._encode(value))

    async def create(self, value: Any) -> Any:
        """Store a new object and return it.

        Raises
        ------
        StorageError
            If an object with the same id already exists.
        """
        object_id = self._params.get_id(value)
        if await self._offload(self._get_item, self._key(object_id)) is not None:
            raise StorageError(f'{self.model_name} "{object_id}" already exists', model_name=self.model_name)
        await self.save(value)
        return value

    async def update(self, value: Any) -> Any:
        """Overwrite an existing object and return it.

        Raises
        ------
        NotFoundError
            If no object with the value's id is stored.
        """
        object_id = self._params.get_id(value)
        if await self._offload(self._get_item, self._key(object_id)) is None:
            raise NotFoundError(f'Item with ID "{object_id}" not found.', ids=[object_id])
        await self.save(value)
        return value

    async def delete(self, ids: Sequence[str]) -> None:
        _logger.debug("Deleting %d %s record(s): %s", len(ids), self.model_name, format_ids(ids))
        for object_id in ids:
            await self._offload(self._remove_item, self._key(object_id))
