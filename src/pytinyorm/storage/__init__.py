"""Storage engines (backends) for pytinyorm models."""

from pytinyorm.storage.base import RecordEngine, StorageBackend
from pytinyorm.storage.local import LocalStorageEngine
from pytinyorm.storage.memory import InMemoryEngine

__all__ = [
    "InMemoryEngine",
    "LocalStorageEngine",
    "RecordEngine",
    "StorageBackend",
]
