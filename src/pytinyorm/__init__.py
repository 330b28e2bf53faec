"""pytinyorm - Async client-side object storage with versioned models and shared caching."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pytinyorm")
except PackageNotFoundError:
    __version__ = "0+local"
from pytinyorm.cache import DEFAULT_CACHE_REGISTRY, CachedStore, CacheRegistry
from pytinyorm.config import StoreConfig
from pytinyorm.exceptions import (
    ConfigError,
    DuplicateCacheError,
    MigrationError,
    NotFoundError,
    StorageError,
    TinyOrmError,
)
from pytinyorm.model import Model, create_model
from pytinyorm.models import EngineParams, StoredRecord
from pytinyorm.pubsub import AllSubscription, IdSubscription, PubSub
from pytinyorm.storage import InMemoryEngine, LocalStorageEngine, RecordEngine, StorageBackend
from pytinyorm.stored import ObjectsView, StoredObjects

__all__ = [
    "__version__",
    "AllSubscription",
    "CachedStore",
    "CacheRegistry",
    "ConfigError",
    "DEFAULT_CACHE_REGISTRY",
    "DuplicateCacheError",
    "EngineParams",
    "IdSubscription",
    "InMemoryEngine",
    "LocalStorageEngine",
    "MigrationError",
    "Model",
    "NotFoundError",
    "ObjectsView",
    "PubSub",
    "RecordEngine",
    "StorageBackend",
    "StorageError",
    "StoreConfig",
    "StoredObjects",
    "StoredRecord",
    "TinyOrmError",
    "create_model",
]
