"""Configuration classes for eventsync.

This module defines:
- CatalogConfig: Connection settings for the remote catalog
- FetchConfiguration: Immutable fetcher settings resolved from layered sources

Resolution order for FetchConfiguration (later wins):
    defaults -> global settings (config file) -> per-call overrides
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from eventsync.core.types import ConfigurationError

logger = logging.getLogger(__name__)

FETCHING_MODES = ("classic", "smart", "fast", "parallel")

# Modes in which the incremental (watermark) strategy is allowed
INCREMENTAL_MODES = ("smart", "fast")


@dataclass
class CatalogConfig:
    """Configuration for connecting to the remote catalog service.

    Attributes:
        server_url: Base URL of the catalog (e.g., "https://catalog.example.com").
        token: Bearer token for the catalog API.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.server_url.startswith("https://")


@dataclass(frozen=True)
class FetchConfiguration:
    """Settings governing batch sizes, retries, chunking and feature flags.

    Instances are immutable. Use resolve() to build one from layered
    sources and with_overrides() to derive a variant.
    """

    # General
    fetching_mode: str = "smart"
    enable_recovery: bool = True

    # Batch processing
    batch_size: int = 200
    min_batch_size: int = 10
    max_batch_size: int = 1000
    adaptive_batch_sizing: bool = True

    # Parallel processing
    num_threads: int = 2
    task_timeout: float = 300.0
    chunk_size: int = 50  # worker-scoped batch size
    stall_threshold: float = 30.0
    poll_interval: float = 1.0
    lock_timeout: float = 5.0
    lock_max_retries: int = 3
    worker_pause: float = 0.5
    results_ttl: int = 3600

    # Fallback strategies
    date_chunk_fallback: bool = True
    date_chunk_days: int = 90
    min_chunk_days: int = 7

    # Error handling
    max_api_retries: int = 3
    retry_delay_base: float = 1.0
    error_threshold: int = 5

    # Caching
    cache_ttl: int = 3600

    # Feature flags
    enable_incremental: bool = True

    # Default date window when the caller gives none
    default_lookback_days: int = 365
    default_lookahead_days: int = 730

    # Fast mode
    fast_mode_safety_margin: int = 500
    fast_mode_batch_size: int = 500
    fast_mode_initial_batch: int = 100

    def __post_init__(self) -> None:
        """Validate settings."""
        if self.fetching_mode not in FETCHING_MODES:
            raise ConfigurationError(
                f"Unknown fetching mode {self.fetching_mode!r} "
                f"(expected one of {', '.join(FETCHING_MODES)})"
            )
        if self.min_batch_size < 1:
            raise ConfigurationError("min_batch_size must be at least 1")
        if not self.min_batch_size <= self.batch_size <= self.max_batch_size:
            raise ConfigurationError(
                f"batch_size {self.batch_size} must be between "
                f"{self.min_batch_size} and {self.max_batch_size}"
            )
        if self.min_chunk_days < 1 or self.date_chunk_days < self.min_chunk_days:
            raise ConfigurationError(
                f"date_chunk_days {self.date_chunk_days} must be at least "
                f"min_chunk_days {self.min_chunk_days} (>= 1)"
            )
        if self.error_threshold < 1:
            raise ConfigurationError("error_threshold must be at least 1")
        if self.num_threads < 0 or self.chunk_size < 1:
            raise ConfigurationError("num_threads and chunk_size must be positive")
        if self.retry_delay_base < 0 or self.max_api_retries < 0:
            raise ConfigurationError("retry settings must not be negative")

    @classmethod
    def field_names(cls) -> set[str]:
        """Names of all configuration settings."""
        return {f.name for f in dataclasses.fields(cls)}

    @classmethod
    def resolve(
        cls,
        global_settings: Mapping[str, Any] | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> FetchConfiguration:
        """Build a configuration from defaults, global settings and overrides.

        Global settings come from the settings file and are coerced to the
        type of the default value. Unknown global keys are ignored. The
        fetching mode in global settings decides whether incremental
        fetching is enabled unless that flag is set explicitly.

        Args:
            global_settings: Settings from the config file.
            overrides: Per-call overrides (must use known keys).

        Returns:
            The resolved configuration.

        Raises:
            ConfigurationError: On unknown override keys or invalid values.
        """
        names = cls.field_names()
        values: dict[str, Any] = {}

        for key, raw in (global_settings or {}).items():
            if key not in names:
                logger.debug("Ignoring unknown fetcher setting: %s", key)
                continue
            values[key] = _coerce(key, raw)

        if global_settings and "enable_incremental" not in global_settings:
            mode = values.get("fetching_mode", "classic")
            values["enable_incremental"] = mode in INCREMENTAL_MODES

        unknown = set(overrides or {}) - names
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {', '.join(sorted(unknown))}"
            )
        values.update(overrides or {})

        return cls(**values)

    def with_overrides(self, **changes: Any) -> FetchConfiguration:
        """Return a copy of this configuration with some settings replaced."""
        unknown = set(changes) - self.field_names()
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {', '.join(sorted(unknown))}"
            )
        return dataclasses.replace(self, **changes)

    def worker_config(self) -> FetchConfiguration:
        """Settings for a parallel worker: smaller batches, incremental on."""
        batch = min(max(self.chunk_size, self.min_batch_size), self.max_batch_size)
        return self.with_overrides(
            batch_size=batch,
            adaptive_batch_sizing=True,
            enable_incremental=True,
        )

    def recovery_config(self) -> FetchConfiguration:
        """Conservative settings for serial recovery of failed collections."""
        return self.with_overrides(
            batch_size=50,
            min_batch_size=10,
            max_batch_size=100,
            adaptive_batch_sizing=True,
            date_chunk_fallback=True,
            date_chunk_days=30,
            min_chunk_days=min(self.min_chunk_days, 30),
            max_api_retries=5,
            retry_delay_base=2.0,
            enable_incremental=False,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return all settings as a dictionary."""
        return dataclasses.asdict(self)


def _coerce(key: str, raw: Any) -> Any:
    """Convert a settings-file value to the type of the default."""
    default = next(f.default for f in dataclasses.fields(FetchConfiguration) if f.name == key)
    try:
        if isinstance(default, bool):
            if isinstance(raw, str):
                lowered = raw.strip().lower()
                if lowered in ("1", "true", "yes", "on"):
                    return True
                if lowered in ("0", "false", "no", "off", ""):
                    return False
                raise ValueError(raw)
            return bool(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {key}: {raw!r}") from e
    return str(raw)
