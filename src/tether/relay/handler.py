"""Relay handler — one inbound chat message to one supervised run."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Literal

import httpx

from tether.config.models import TetherConfig
from tether.relay.artifacts import extract_image_paths, find_new_images, snapshot_files
from tether.relay.coalescer import STATUS_STARTING, ProgressCoalescer
from tether.relay.dedupe import DedupeCache
from tether.relay.formatting import format_result, strip_mention
from tether.relay.sinks import SlackMessageSink
from tether.relay.slack import SlackAPIError, SlackClient, safe_send
from tether.runner.models import RunRequest, RunResult
from tether.runner.prompt import mask_prompt, validate_prompt
from tether.runner.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

Source = Literal["mention", "dm"]

MSG_NOT_ALLOWED = "⛔ You are not allowed to use this bot."
MSG_EMPTY_PROMPT = "Please include a prompt, e.g. `@bot explain this project's layout`"
MSG_INTERNAL_ERROR = "⚠️ Something went wrong while handling your request. Please try again."
MSG_UPLOAD_SCOPE = "⚠️ Cannot upload files: add the files:write scope to the Slack app."

#: Slack errors that mean no upload in this workspace can succeed.
_FATAL_UPLOAD_ERRORS = frozenset({"missing_scope", "not_allowed", "not_allowed_token_type"})


class RelayHandler:
    """Admits, validates, runs, and answers chat prompts.

    The handler is transport-agnostic: whatever receives Slack events
    calls :meth:`handle_message` with the event's channel, user, ``ts``
    and text.  Progress is streamed into a single reply that is replaced
    by the formatted result when the run ends.
    """

    def __init__(
        self,
        config: TetherConfig,
        chat: SlackClient,
        supervisor: ProcessSupervisor,
        dedupe: DedupeCache,
        *,
        reveal_prompts: bool = False,
    ) -> None:
        self._config = config
        self._chat = chat
        self._supervisor = supervisor
        self._dedupe = dedupe
        self._reveal_prompts = reveal_prompts

    @classmethod
    def from_config(
        cls, config: TetherConfig, chat: SlackClient, *, reveal_prompts: bool = False
    ) -> RelayHandler:
        """Build a handler with a supervisor and cache configured from *config*."""
        supervisor = ProcessSupervisor(
            executable=config.executable,
            grace_period=config.grace_period,
            heartbeat_interval=config.heartbeat_interval,
        )
        dedupe = DedupeCache(window=config.dedupe.window, max_size=config.dedupe.max_size)
        return cls(config, chat, supervisor, dedupe, reveal_prompts=reveal_prompts)

    async def handle_message(
        self,
        channel: str,
        user: str | None,
        ts: str,
        text: str,
        *,
        source: Source = "mention",
    ) -> None:
        """Handle one inbound message.  Never raises."""
        logger.info("[%s] received: channel=%s, user=%s", source, channel, user)

        if not self._dedupe.admit(f"{channel}-{ts}"):
            logger.info("[%s] duplicate event ignored", source)
            return
        if not user:
            return

        try:
            if not self._config.is_user_allowed(user):
                logger.info("[%s] blocked: user %s not allowed", source, user)
                await self._chat.post_message(channel, MSG_NOT_ALLOWED, thread_ts=ts)
                return

            prompt = strip_mention(text) if source == "mention" else text.strip()
            if not prompt:
                if source == "mention":
                    await self._chat.post_message(channel, MSG_EMPTY_PROMPT, thread_ts=ts)
                return

            reason = validate_prompt(prompt)
            if reason is not None:
                await self._chat.post_message(channel, f"⚠️ {reason}", thread_ts=ts)
                return

            directory = self._config.directory_for(channel)
            logger.info(
                "[%s] running: user=%s, prompt=%s, dir=%s",
                source,
                user,
                mask_prompt(prompt, reveal=self._reveal_prompts),
                directory,
            )
            await self._run(channel, ts, prompt, directory, source)
        except Exception:
            logger.exception("[%s] request failed", source)
            with contextlib.suppress(SlackAPIError, httpx.HTTPError):
                await self._chat.post_message(channel, MSG_INTERNAL_ERROR, thread_ts=ts)

    # ------------------------------------------------------------------ #
    # Internal
    # ------------------------------------------------------------------ #

    async def _run(
        self, channel: str, thread_ts: str, prompt: str, directory: Path, source: Source
    ) -> None:
        before = await asyncio.to_thread(snapshot_files, directory)

        progress_ts = await self._chat.post_message(channel, STATUS_STARTING, thread_ts=thread_ts)
        if not progress_ts:
            logger.error("[%s] progress message has no ts", source)
            return

        coalescer = ProgressCoalescer(
            SlackMessageSink(self._chat, channel, progress_ts),
            flush_interval=self._config.flush_interval,
        )
        await coalescer.start()
        try:
            result = await self._supervisor.run(
                RunRequest(prompt=prompt, cwd=directory, timeout=self._config.timeout),
                on_event=coalescer.on_event,
            )
        finally:
            # Let an in-flight progress update land before the final reply.
            await coalescer.stop()

        logger.info(
            "[%s] run finished: duration=%dms, length=%d, timed_out=%s, cost=%s, turns=%s",
            source,
            result.duration_ms,
            len(result.output),
            result.timed_out,
            f"${result.cost_usd:.4f}" if result.cost_usd is not None else "n/a",
            result.num_turns if result.num_turns is not None else "n/a",
        )

        messages = format_result(result, str(directory))
        await safe_send(self._chat, channel, messages[0], update_ts=progress_ts)
        for message in messages[1:]:
            await safe_send(self._chat, channel, message, thread_ts=thread_ts)

        images = await self._collect_images(before, directory, result)
        if images:
            uploaded = await self._upload_images(channel, thread_ts, images)
            logger.info("[%s] uploaded %d/%d images", source, uploaded, len(images))
        logger.info("[%s] done: %d messages, %d images", source, len(messages), len(images))

    async def _collect_images(
        self, before: dict[str, int], directory: Path, result: RunResult
    ) -> list[str]:
        new_files = await asyncio.to_thread(find_new_images, before, directory)
        referenced = extract_image_paths(result.output)
        return list(dict.fromkeys([*new_files, *referenced]))

    async def _upload_images(self, channel: str, thread_ts: str, images: list[str]) -> int:
        uploaded = 0
        for path in images:
            try:
                await self._chat.upload_file(channel, thread_ts, path)
            except SlackAPIError as exc:
                logger.error("Image upload failed for %s: %s", path, exc)
                if exc.error in _FATAL_UPLOAD_ERRORS:
                    with contextlib.suppress(SlackAPIError, httpx.HTTPError):
                        await self._chat.post_message(channel, MSG_UPLOAD_SCOPE, thread_ts=thread_ts)
                    break
            except (OSError, httpx.HTTPError) as exc:
                logger.error("Image upload failed for %s: %s", path, exc)
            else:
                uploaded += 1
        return uploaded
