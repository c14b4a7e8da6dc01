"""Settings commands for the eventsync CLI.

Commands:
- config show: Show connection and resolved fetcher settings
- config set: Set a connection or fetcher setting
- config unset: Remove a setting
"""

from __future__ import annotations

import json
import sys

import click

from eventsync.client.cli.config import (
    CONNECTION_KEYS,
    get_config_file,
    load_config,
    save_config,
)
from eventsync.core.config import FetchConfiguration
from eventsync.core.types import ConfigurationError


@click.group("config")
def config_cmd() -> None:
    """Manage eventsync settings.

    Connection settings (server_url, token, timeout, verify_ssl) are stored
    at the top level of the config file, fetcher settings under "fetcher".
    """


@config_cmd.command("show")
def show_cmd() -> None:
    """Show connection and resolved fetcher settings."""
    config = load_config()
    click.echo(f"Config file: {get_config_file()}")
    for key in CONNECTION_KEYS:
        value = config.get(key)
        if key == "token" and value:
            value = value[:4] + "..."
        click.echo(f"{key}: {value if value is not None else '(not set)'}")

    try:
        resolved = FetchConfiguration.resolve(config.get("fetcher") or {})
    except ConfigurationError as e:
        click.echo(f"Error: Invalid fetcher configuration: {e}", err=True)
        sys.exit(1)
    click.echo("fetcher:")
    click.echo(json.dumps(resolved.to_dict(), indent=2))


@config_cmd.command("set")
@click.argument("key")
@click.argument("value")
def set_cmd(key: str, value: str) -> None:
    """Set KEY to VALUE.

    KEY is a connection setting or a fetcher setting such as batch_size.
    """
    config = load_config()

    if key in CONNECTION_KEYS:
        if key == "server_url" and not value.startswith(("http://", "https://")):
            click.echo("Error: server_url must start with http:// or https://", err=True)
            sys.exit(1)
        config[key] = value
    elif key in FetchConfiguration.field_names():
        fetcher = dict(config.get("fetcher") or {})
        fetcher[key] = value
        try:
            FetchConfiguration.resolve(fetcher)
        except ConfigurationError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        config["fetcher"] = fetcher
    else:
        click.echo(f"Error: Unknown setting: {key}", err=True)
        sys.exit(1)

    save_config(config)
    click.echo(f"Set {key}.")


@config_cmd.command("unset")
@click.argument("key")
def unset_cmd(key: str) -> None:
    """Remove KEY, falling back to its default."""
    config = load_config()
    fetcher = dict(config.get("fetcher") or {})

    if key in config and key != "fetcher":
        del config[key]
    elif key in fetcher:
        del fetcher[key]
        config["fetcher"] = fetcher
    else:
        click.echo(f"{key} is not set.")
        return

    save_config(config)
    click.echo(f"Unset {key}.")
