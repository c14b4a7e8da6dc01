"""Configuration utilities for the eventsync CLI.

This module provides shared configuration functions used across CLI commands.

Config file layout (~/.eventsync/config.json):
    {
        "server_url": "https://catalog.example.com",
        "token": "...",
        "fetcher": {"batch_size": 200, "fetching_mode": "smart"}
    }
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click

from eventsync.core.cache import ApiCache, SqliteCacheBackend
from eventsync.core.config import CatalogConfig, FetchConfiguration
from eventsync.core.types import ConfigurationError

# Top-level keys that are not fetcher settings
CONNECTION_KEYS = ("server_url", "token", "timeout", "verify_ssl")


def get_config_dir() -> Path:
    """Get the configuration directory for eventsync.

    Returns:
        Path to ~/.eventsync or equivalent.
    """
    return Path.home() / ".eventsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_cache_path() -> Path:
    """Get the path to the cache database."""
    return get_config_dir() / "cache.db"


def get_records_path() -> Path:
    """Get the path to the synchronized records database."""
    return get_config_dir() / "records.db"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def load_fetch_configuration(**overrides: Any) -> FetchConfiguration:
    """Resolve fetcher settings from the config file plus overrides.

    Overrides set to None are ignored. Exits with an error message on
    invalid settings.
    """
    settings = load_config().get("fetcher") or {}
    try:
        return FetchConfiguration.resolve(
            settings,
            {key: value for key, value in overrides.items() if value is not None},
        )
    except ConfigurationError as e:
        click.echo(f"Error: Invalid fetcher configuration: {e}", err=True)
        sys.exit(1)


def load_catalog_config() -> CatalogConfig:
    """Build the catalog connection settings. Exits if not configured."""
    config = load_config()
    if not config.get("server_url") or not config.get("token"):
        click.echo(
            "Error: Catalog not configured. Run 'eventsync config set server_url URL' "
            "and 'eventsync config set token TOKEN' first.",
            err=True,
        )
        sys.exit(1)
    return CatalogConfig(
        server_url=config["server_url"],
        token=config["token"],
        timeout=float(config.get("timeout", 30.0)),
        verify_ssl=_as_bool(config.get("verify_ssl", True)),
    )


def open_cache(config: FetchConfiguration) -> ApiCache:
    """Open the on-disk cache with the configured default TTL."""
    return ApiCache(SqliteCacheBackend(get_cache_path()), default_ttl=config.cache_ttl)


def _as_bool(value: Any) -> bool:
    # "config set" stores strings
    if isinstance(value, str):
        return value.strip().lower() not in ("0", "false", "no", "off", "")
    return bool(value)
