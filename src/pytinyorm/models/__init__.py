"""Data models shared by storage engines."""

from pytinyorm.models.record import EngineParams, StoredRecord

__all__ = [
    "EngineParams",
    "StoredRecord",
]
