"""tether run — run one prompt locally with live progress in the terminal."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import click

from tether.config.models import DEFAULT_TIMEOUT, TetherConfig
from tether.config.parser import (
    CONFIG_PATH_VAR,
    DEFAULT_CONFIG_NAME,
    ConfigError,
    load_config,
)
from tether.relay.coalescer import ProgressCoalescer
from tether.relay.formatting import format_result
from tether.relay.sinks import ConsoleSink
from tether.runner.models import RunRequest, RunResult
from tether.runner.prompt import validate_prompt
from tether.runner.supervisor import ProcessSupervisor


def configure_logging(verbosity: int) -> None:
    """``-v`` shows run checkpoints (INFO), ``-vv`` adds parser detail (DEBUG)."""
    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.command()
@click.argument("prompt")
@click.option(
    "-C",
    "--directory",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Working directory (default: config default_directory, else cwd).",
)
@click.option("--timeout", type=float, default=None, help="Run timeout in seconds.")
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
@click.option("-v", "--verbose", count=True, help="Log run checkpoints (-vv for more).")
def run(
    prompt: str,
    directory: Path | None,
    timeout: float | None,
    config_file: str | None,
    verbose: int,
) -> None:
    """Run PROMPT through the CLI and print the formatted result."""
    configure_logging(verbose)

    reason = validate_prompt(prompt)
    if reason is not None:
        click.echo(f"Error: {reason}", err=True)
        raise SystemExit(1)

    config = _load_optional_config(config_file)
    cwd = (directory or (config.default_directory if config else Path.cwd())).resolve()
    if timeout is None:
        timeout = config.timeout if config else DEFAULT_TIMEOUT
    if timeout <= 0:
        click.echo("Error: --timeout must be positive", err=True)
        raise SystemExit(1)

    supervisor = ProcessSupervisor(
        executable=config.executable if config else None,
        grace_period=config.grace_period if config else 5.0,
        heartbeat_interval=config.heartbeat_interval if config else 30.0,
    )
    flush_interval = config.flush_interval if config else 2.0
    request = RunRequest(prompt=prompt, cwd=cwd, timeout=timeout)

    click.echo(f"Running in {cwd} (timeout {timeout:.0f}s)...", err=True)
    result = asyncio.run(_run_with_progress(supervisor, request, flush_interval))

    for message in format_result(result, str(cwd)):
        click.echo(message)
    if not result.success:
        raise SystemExit(1)


def _load_optional_config(config_file: str | None) -> TetherConfig | None:
    """Load the config if one was given or exists here; otherwise ``None``."""
    if config_file is None and not os.environ.get(CONFIG_PATH_VAR):
        if not (Path.cwd() / DEFAULT_CONFIG_NAME).is_file():
            return None
    try:
        return load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from None


async def _run_with_progress(
    supervisor: ProcessSupervisor, request: RunRequest, flush_interval: float
) -> RunResult:
    coalescer = ProgressCoalescer(ConsoleSink(), flush_interval=flush_interval)
    await coalescer.start()
    try:
        return await supervisor.run(request, on_event=coalescer.on_event)
    finally:
        await coalescer.stop()
