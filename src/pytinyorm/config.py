"""Configuration for pytinyorm stores."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any

from pytinyorm._constants import (
    DEFAULT_CACHE_MAX_AGE_SECONDS,
    DEFAULT_STORAGE_DIR,
    DEVELOPMENT_CACHE_MAX_AGE_SECONDS,
)
from pytinyorm.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class StoreConfig:
    """Store configuration.

    Parameters
    ----------
    cache_max_age_seconds : float or None
        Maximum age of a cached object before it is re-fetched. A negative
        value disables expiry entirely. ``None`` picks a default based on
        ``development``.
    development : bool
        Use the short development TTL (30 seconds) instead of the
        production one (5 minutes) when no explicit TTL is set.
    storage_dir : Path
        Directory used by :class:`~pytinyorm.storage.LocalStorageEngine`.
    """

    cache_max_age_seconds: float | None = None
    development: bool = False
    storage_dir: Path = dataclasses.field(default_factory=lambda: Path(DEFAULT_STORAGE_DIR).expanduser())

    @property
    def max_age_seconds(self) -> float:
        """Effective cache TTL in seconds."""
        if self.cache_max_age_seconds is not None:
            return self.cache_max_age_seconds
        if self.development:
            return DEVELOPMENT_CACHE_MAX_AGE_SECONDS
        return DEFAULT_CACHE_MAX_AGE_SECONDS

    @classmethod
    def from_env(cls, **overrides: Any) -> StoreConfig:
        """Create configuration from environment variables.

        Reads ``TINYORM_CACHE_MAX_AGE``, ``TINYORM_DEVELOPMENT`` and
        ``TINYORM_STORAGE_DIR``. Explicit keyword arguments override
        environment values.

        Raises
        ------
        ConfigError
            If ``TINYORM_CACHE_MAX_AGE`` is not a number.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        max_age_env = env.get("TINYORM_CACHE_MAX_AGE")
        if max_age_env is not None and "cache_max_age_seconds" not in overrides:
            try:
                config_kwargs["cache_max_age_seconds"] = float(max_age_env)
            except ValueError as exc:
                raise ConfigError(f"TINYORM_CACHE_MAX_AGE must be a number, got {max_age_env!r}") from exc

        if "development" not in overrides:
            config_kwargs["development"] = _env_bool(env.get("TINYORM_DEVELOPMENT"), False)

        dir_env = env.get("TINYORM_STORAGE_DIR")
        if dir_env is not None and "storage_dir" not in overrides:
            config_kwargs["storage_dir"] = Path(dir_env).expanduser()

        if "storage_dir" in overrides:
            overrides["storage_dir"] = Path(overrides["storage_dir"]).expanduser()

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
