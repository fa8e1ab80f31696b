"""tether init — scaffold a tether.yaml configuration."""

from __future__ import annotations

from pathlib import Path

import click

CONFIG_FILENAME = "tether.yaml"
ENV_EXAMPLE_FILENAME = ".env.example"

TEMPLATE_YAML = """\
# Tether configuration

# Working directory for channels without an explicit mapping.
# Must be inside your home directory.
default_directory: "~"

# Channel ID -> working directory
# channel_directories:
#   C0123456789: ~/projects/api

# Slack user IDs allowed to run prompts (empty list = everyone)
allowed_user_ids: []

# Run timeout in seconds (max 3600)
timeout: 300

# Seconds between SIGTERM and SIGKILL when a run times out
# grace_period: 5

# Seconds between progress message updates
# flush_interval: 2

# Seconds between liveness log lines while a run is active (0 to disable)
# heartbeat_interval: 30

# Explicit path to the CLI binary (default: ~/.local/bin, then PATH)
# executable: /usr/local/bin/claude

# Duplicate-event protection
# dedupe:
#   window: 300
#   max_size: 10000
"""

TEMPLATE_ENV_EXAMPLE = """\
# Copy this file to .env and fill in your Slack tokens.
# Bot token (xoxb-...) for posting replies.
SLACK_BOT_TOKEN=
# App-level token (xapp-...) with connections:write, for `tether serve`.
SLACK_APP_TOKEN=

# Optional overrides for tether.yaml values.
# TETHER_TIMEOUT=600
# TETHER_DEFAULT_DIRECTORY=~/projects/main
# TETHER_CONFIG=~/tether/tether.yaml
"""


@click.command()
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing tether.yaml if it exists.",
)
def init(force: bool) -> None:
    """Scaffold a tether.yaml in the current directory."""
    cwd = Path.cwd()
    config_path = cwd / CONFIG_FILENAME
    env_example_path = cwd / ENV_EXAMPLE_FILENAME

    if config_path.exists() and not force:
        raise click.ClickException(
            f"{CONFIG_FILENAME} already exists. Use --force to overwrite."
        )

    try:
        config_path.write_text(TEMPLATE_YAML, encoding="utf-8")
    except OSError as exc:
        raise click.ClickException(f"Cannot write {CONFIG_FILENAME}: {exc}") from exc
    click.echo(f"  Created {CONFIG_FILENAME}")

    if not env_example_path.exists() or force:
        try:
            env_example_path.write_text(TEMPLATE_ENV_EXAMPLE, encoding="utf-8")
        except OSError as exc:
            raise click.ClickException(
                f"Cannot write {ENV_EXAMPLE_FILENAME}: {exc}"
            ) from exc
        click.echo(f"  Created {ENV_EXAMPLE_FILENAME}")
    else:
        click.echo(f"  Skipped {ENV_EXAMPLE_FILENAME} (already exists)")

    click.echo()
    click.echo("Next steps:")
    click.echo(f"  1. Edit {CONFIG_FILENAME} to map channels to directories")
    click.echo("  2. Copy .env.example to .env and add your Slack bot token")
    click.echo("  3. Run `tether check` to validate the setup")
