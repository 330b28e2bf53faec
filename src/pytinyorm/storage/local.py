"""File-backed storage engine.

Each object is one JSON file, ``<storage_dir>/<model>-<id>.json``, holding
a :class:`~pytinyorm.models.record.StoredRecord`. Keys are percent-encoded
so arbitrary ids map to valid file names. File I/O runs in a worker thread
so the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import quote, unquote

from pytinyorm._constants import RECORD_SUFFIX
from pytinyorm.config import StoreConfig
from pytinyorm.exceptions import StorageError
from pytinyorm.models.record import EngineParams
from pytinyorm.storage.base import RecordEngine

_logger = logging.getLogger(__name__)

R = TypeVar("R")


class LocalStorageEngine(RecordEngine):
    """Persist records as files under a directory.

    Parameters
    ----------
    params : EngineParams
        Supplied by :func:`pytinyorm.model.create_model`.
    storage_dir : Path or None
        Target directory; created on first write. Defaults to
        ``StoreConfig.from_env().storage_dir``.
    """

    def __init__(self, params: EngineParams, *, storage_dir: Path | str | None = None) -> None:
        super().__init__(params)
        if storage_dir is None:
            storage_dir = StoreConfig.from_env().storage_dir
        self._dir = Path(storage_dir).expanduser()

    @property
    def storage_dir(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        return self._dir / f"{quote(key, safe='')}{RECORD_SUFFIX}"

    async def _offload(self, fn: Callable[..., R], *args: Any) -> R:
        return await asyncio.to_thread(fn, *args)

    def _get_item(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Cannot read {path}: {exc}", model_name=self.model_name) from exc

    def _set_item(self, key: str, text: str) -> None:
        path = self._path(key)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            # Write-then-rename so readers never see a half-written record.
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".tmp-", suffix=RECORD_SUFFIX)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(text)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"Cannot write {path}: {exc}", model_name=self.model_name) from exc
        _logger.debug("Wrote %s", path)

    def _remove_item(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot delete {path}: {exc}", model_name=self.model_name) from exc

    def _keys(self) -> list[str]:
        if not self._dir.is_dir():
            return []
        return [
            unquote(path.name[: -len(RECORD_SUFFIX)])
            for path in sorted(self._dir.iterdir())
            if path.name.endswith(RECORD_SUFFIX) and not path.name.startswith(".tmp-")
        ]
