"""Root CLI group and version flag."""

import faulthandler
import signal

import click

from tether import __version__
from tether.commands.check import check
from tether.commands.init import init
from tether.commands.run import run
from tether.commands.serve import serve

faulthandler.enable()

# Keep a closed stdout pipe (e.g. `tether run ... | head`) from killing
# the process before the CLI subprocess is reaped.
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)


@click.group()
@click.version_option(version=__version__, prog_name="tether")
def cli() -> None:
    """Tether — relay coding-assistant CLI runs to chat."""


cli.add_command(init)
cli.add_command(check)
cli.add_command(run)
cli.add_command(serve)
