"""tether check — validate configuration and show what a run would use."""

from __future__ import annotations

import os
from pathlib import Path

import click

from tether.config.parser import ConfigError, load_config
from tether.runner.supervisor import resolve_executable

_TOKENS = (
    ("Slack bot token:", "SLACK_BOT_TOKEN"),
    ("Slack app token:", "SLACK_APP_TOKEN"),
)


@click.command()
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
def check(config_file: str | None) -> None:
    """Validate tether.yaml and print a summary."""
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from None

    users = config.allowed_user_ids
    click.echo(f"Default directory: {config.default_directory}")
    click.echo(f"Channel mappings:  {len(config.channel_directories)}")
    for channel, directory in sorted(config.channel_directories.items()):
        click.echo(f"  {channel} → {directory}")
    click.echo(f"Allowed users:     {len(users) if users else 'all'}")
    click.echo(f"Timeout:           {config.timeout:.0f}s (+{config.grace_period:.0f}s grace)")
    click.echo(f"CLI executable:    {config.executable or resolve_executable()}")
    for label, variable in _TOKENS:
        state = "set" if os.environ.get(variable) else f"missing (set {variable} in .env)"
        click.echo(f"{label:<19}{state}")
