"""Custom exception hierarchy for pytinyorm."""

from __future__ import annotations

from collections.abc import Iterable


class TinyOrmError(Exception):
    """Base exception for all pytinyorm errors."""


class ConfigError(TinyOrmError):
    """Invalid or missing configuration."""


class NotFoundError(TinyOrmError):
    """A strict read asked for ids the backend does not have."""

    def __init__(self, message: str, *, ids: Iterable[str] = ()) -> None:
        self.ids = tuple(ids)
        super().__init__(message)


class StorageError(TinyOrmError):
    """Backend fetch/create/update/delete failure.

    Raised by the bundled engines when a stored record is unreadable.
    Custom backends may raise their own exceptions instead; the cache and
    registry never wrap or swallow them.
    """

    def __init__(self, message: str, *, model_name: str = "") -> None:
        self.model_name = model_name
        super().__init__(message)


class DuplicateCacheError(TinyOrmError):
    """A cached store with the same name is already registered.

    Two caches in front of one backend would silently diverge, so this is
    treated as a programming error.
    """

    def __init__(self, message: str, *, name: str = "") -> None:
        self.name = name
        super().__init__(message)


class MigrationError(TinyOrmError):
    """A stored object could not be brought up to the current schema version."""

    def __init__(self, message: str, *, model_name: str = "", from_version: int | None = None) -> None:
        self.model_name = model_name
        self.from_version = from_version
        super().__init__(message)
