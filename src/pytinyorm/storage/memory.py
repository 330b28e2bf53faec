"""In-process storage engine."""

from __future__ import annotations

from pytinyorm.models.record import EngineParams
from pytinyorm.storage.base import RecordEngine


class InMemoryEngine(RecordEngine):
    """Keep serialized records in a plain dict.

    Parameters
    ----------
    params : EngineParams
        Supplied by :func:`pytinyorm.model.create_model`.
    table : dict or None
        Backing ``key -> JSON text`` table. Pass the same dict to several
        engines (e.g. with :func:`functools.partial`) to share data between
        models or between successive versions of one model.
    """

    def __init__(self, params: EngineParams, *, table: dict[str, str] | None = None) -> None:
        super().__init__(params)
        self._table: dict[str, str] = table if table is not None else {}

    def _get_item(self, key: str) -> str | None:
        return self._table.get(key)

    def _set_item(self, key: str, text: str) -> None:
        self._table[key] = text

    def _remove_item(self, key: str) -> None:
        self._table.pop(key, None)

    def _keys(self) -> list[str]:
        return list(self._table)
