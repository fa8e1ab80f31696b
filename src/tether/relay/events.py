"""Slack event routing — mentions and direct messages into the relay handler."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from slack_bolt.async_app import AsyncApp

from tether.relay.handler import RelayHandler

logger = logging.getLogger(__name__)


def is_direct_message(event: Mapping[str, Any]) -> bool:
    """True for a person's message in a DM; bot posts and channels are skipped."""
    return (
        event.get("channel_type") == "im"
        and event.get("subtype") != "bot_message"
        and "bot_id" not in event
    )


async def on_mention(event: Mapping[str, Any], handler: RelayHandler) -> None:
    await handler.handle_message(
        event.get("channel", ""),
        event.get("user"),
        event.get("ts", ""),
        event.get("text") or "",
        source="mention",
    )


async def on_message(event: Mapping[str, Any], handler: RelayHandler) -> None:
    if not is_direct_message(event):
        logger.debug(
            "Ignoring message event: channel_type=%s, subtype=%s",
            event.get("channel_type"),
            event.get("subtype"),
        )
        return
    await handler.handle_message(
        event.get("channel", ""),
        event.get("user"),
        event.get("ts", ""),
        event.get("text") or "",
        source="dm",
    )


def register_handlers(app: AsyncApp, handler: RelayHandler) -> None:
    """Subscribe *handler* to ``app_mention`` and ``message`` events on *app*."""

    async def mention(event: dict[str, Any]) -> None:
        await on_mention(event, handler)

    async def message(event: dict[str, Any]) -> None:
        await on_message(event, handler)

    app.event("app_mention")(mention)
    app.event("message")(message)
