"""Persisted record layout and storage engine parameters."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, JsonValue
from pydantic.alias_generators import to_camel


class StoredRecord(BaseModel):
    """A single persisted object.

    Serialized as ``{"schemaVersion": int, "value": ...}``. The schema
    version is the model version the value was written with; readers pass
    both to :meth:`pytinyorm.model.Model.migrate` before handing the value
    out.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    schema_version: int = Field(..., ge=1)
    value: JsonValue

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class EngineParams(BaseModel):
    """Everything a storage engine needs to know about its model.

    Parameters
    ----------
    model_name : str
        Unique model name. Engines prefix storage keys with it so models
        with overlapping ids do not collide.
    current_version : int
        Schema version new records are written with.
    get_id : callable
        Extracts the object id from a value.
    migrate : callable
        ``migrate(raw, stored_version) -> value``; must be applied to every
        value read back from storage.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
        protected_namespaces=(),
    )

    model_name: str = Field(..., min_length=1)
    current_version: int = Field(..., ge=1)
    get_id: Callable[[Any], str]
    migrate: Callable[[Any, int], Any]
