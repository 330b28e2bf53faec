"""Versioned models.

A model ties together a unique name, a way to get an id out of a value, a
storage engine and an ordered list of schema migrations. Values themselves
stay plain JSON (dicts, lists, scalars); the model never wraps them.

Migrations are indexed by the version they upgrade *from*: ``migrations[0]``
turns a version-1 value into a version-2 value, and so on. The current
version is therefore ``len(migrations) + 1``.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from pytinyorm._redact import redact_for_log
from pytinyorm.exceptions import ConfigError, MigrationError
from pytinyorm.models.record import EngineParams

_logger = logging.getLogger(__name__)

Migration = Callable[[Any], Any]
EngineFactory = Callable[[EngineParams], Any]
MethodsFactory = Callable[[Any], Mapping[str, Callable[..., Any]]]


class Model:
    """A named, versioned model bound to a storage engine.

    Extra methods returned by ``methods_factory(storage)`` are reachable as
    attributes, which lets a model expose a narrower or domain-specific API
    than the raw engine::

        users = create_model(
            "user",
            lambda user: user["username"],
            InMemoryEngine,
            lambda storage: {"persist": storage.save, "get": storage.get},
        )
        await users.persist({"username": "hunter2"})
    """

    def __init__(
        self,
        name: str,
        get_id: Callable[[Any], str],
        engine: EngineFactory,
        methods_factory: MethodsFactory | None = None,
        migrations: Sequence[Migration | None] | None = None,
    ) -> None:
        if not name or not name.strip():
            raise ConfigError("model name must be non-empty")
        self.name = name.strip()
        self.get_id = get_id
        self._migrations: list[Migration | None] = list(migrations or [])
        self.current_version = len(self._migrations) + 1
        self.storage = engine(
            EngineParams(
                model_name=self.name,
                current_version=self.current_version,
                get_id=get_id,
                migrate=self.migrate,
            )
        )
        self._methods: dict[str, Callable[..., Any]] = dict(methods_factory(self.storage)) if methods_factory else {}

    def __getattr__(self, item: str) -> Callable[..., Any]:
        methods = self.__dict__.get("_methods", {})
        try:
            return methods[item]
        except KeyError:
            raise AttributeError(f"model {self.__dict__.get('name')!r} has no method {item!r}") from None

    def __repr__(self) -> str:
        return f"Model(name={self.name!r}, current_version={self.current_version})"

    def migrate(self, raw: Any, stored_version: int) -> Any:
        """Bring *raw* from *stored_version* up to :attr:`current_version`.

        The input is never mutated. A failing migration step logs the value
        it was given (redacted) and re-raises the original exception.

        Raises
        ------
        MigrationError
            If the stored version is unknown or a migration step is missing.
        """
        if stored_version == self.current_version:
            return raw
        if stored_version < 1 or stored_version > self.current_version:
            raise MigrationError(
                f"Cannot migrate {self.name} object from version {stored_version}; "
                f"current version is {self.current_version}",
                model_name=self.name,
                from_version=stored_version,
            )

        current = copy.deepcopy(raw)
        for version in range(stored_version, self.current_version):
            migration = self._migrations[version - 1]
            if migration is None:
                raise MigrationError(
                    f"No migration from version {version} to version {version + 1} of model {self.name} found.",
                    model_name=self.name,
                    from_version=version,
                )
            try:
                current = migration(current)
            except Exception:
                _logger.error(
                    "Failed to migrate object from version %d to version %d of model %s:\n%s",
                    version,
                    version + 1,
                    self.name,
                    json.dumps(redact_for_log(current), indent=4, default=repr),
                )
                raise
        return current


def create_model(
    name: str,
    get_id: Callable[[Any], str],
    engine: EngineFactory,
    methods_factory: MethodsFactory | None = None,
    migrations: Sequence[Migration | None] | None = None,
) -> Model:
    """Create a :class:`Model`; see its docstring for the parameters."""
    return Model(name, get_id, engine, methods_factory, migrations)
