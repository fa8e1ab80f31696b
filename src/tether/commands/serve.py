"""tether serve — answer Slack mentions and DMs over Socket Mode."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import click
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.async_app import AsyncApp

from tether.commands.run import configure_logging
from tether.config.models import TetherConfig
from tether.config.parser import ConfigError, load_config
from tether.relay.events import register_handlers
from tether.relay.handler import RelayHandler
from tether.relay.slack import SlackClient

BOT_TOKEN_VAR = "SLACK_BOT_TOKEN"
APP_TOKEN_VAR = "SLACK_APP_TOKEN"


@click.command()
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
@click.option("--reveal-prompts", is_flag=True, help="Log prompts unmasked.")
@click.option("-v", "--verbose", count=True, help="Log run checkpoints (-vv for more).")
def serve(config_file: str | None, reveal_prompts: bool, verbose: int) -> None:
    """Connect to Slack and relay prompts until interrupted."""
    configure_logging(verbose)
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from None

    # Read after load_config so a .env beside the config can supply them.
    bot_token = os.environ.get(BOT_TOKEN_VAR)
    app_token = os.environ.get(APP_TOKEN_VAR)
    if not bot_token or not app_token:
        click.echo(f"Error: {BOT_TOKEN_VAR} and {APP_TOKEN_VAR} must be set", err=True)
        raise SystemExit(1)

    users = config.allowed_user_ids
    click.echo("Tether is running (Socket Mode)")
    click.echo(f"  Default directory: {config.default_directory}")
    click.echo(f"  Channel mappings:  {len(config.channel_directories)}")
    click.echo(f"  Allowed users:     {len(users) if users else 'all'}")

    try:
        asyncio.run(_serve(config, bot_token, app_token, reveal_prompts))
    except KeyboardInterrupt:
        click.echo("Stopped.")


async def _serve(
    config: TetherConfig, bot_token: str, app_token: str, reveal_prompts: bool
) -> None:
    app = AsyncApp(token=bot_token)
    async with SlackClient(bot_token) as chat:
        handler = RelayHandler.from_config(config, chat, reveal_prompts=reveal_prompts)
        register_handlers(app, handler)
        socket = AsyncSocketModeHandler(app, app_token)
        try:
            await socket.start_async()
        finally:
            await socket.close_async()
