"""Internal constants shared across the library."""

#: Cache TTL used when none is configured.
DEFAULT_CACHE_MAX_AGE_SECONDS: float = 5 * 60

#: Shorter TTL for development, so edits made elsewhere show up quickly.
DEVELOPMENT_CACHE_MAX_AGE_SECONDS: float = 30

DEFAULT_STORAGE_DIR = "~/.pytinyorm"

#: Suffix of files written by the local storage engine.
RECORD_SUFFIX = ".json"


def storage_key(model_name: str, object_id: str) -> str:
    """Backend key for an object: ``<model>-<id>``."""
    return f"{model_name}-{object_id}"
