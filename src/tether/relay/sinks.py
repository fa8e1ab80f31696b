"""Progress sinks — where coalesced progress renders are written."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import click

from tether.relay.slack import SlackClient

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressSink(Protocol):
    """Anything that can replace a single progress message's body."""

    async def update(self, text: str) -> None: ...


class SlackMessageSink:
    """Rewrites one posted Slack message in place via ``chat.update``.

    Errors propagate so the coalescer can log them and retry on its next
    tick.
    """

    def __init__(self, client: SlackClient, channel: str, ts: str) -> None:
        self._client = client
        self._channel = channel
        self._ts = ts

    async def update(self, text: str) -> None:
        await self._client.update_message(self._channel, self._ts, text)


class ConsoleSink:
    """Echoes each new render to the terminal (used by ``tether run``)."""

    def __init__(self, err: bool = True) -> None:
        self._err = err
        self._last: str | None = None

    async def update(self, text: str) -> None:
        # Newest line only, to keep local output short.
        lines = text.splitlines() or [""]
        status = lines[-1]
        if status == self._last:
            return
        self._last = status
        click.echo(f"  {status}", err=self._err)
