"""Minimal Slack Web API client over httpx."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from tether.constants import MAX_SINK_CHARS

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"

#: Fallback length when Slack rejects a message as too long.
_SHORT_RETRY_CHARS = 2000


class SlackAPIError(Exception):
    """Slack answered ``ok: false``; ``error`` is Slack's error code."""

    def __init__(self, method: str, error: str) -> None:
        super().__init__(f"{method} failed: {error}")
        self.method = method
        self.error = error


class SlackClient:
    """The handful of Web API methods the relay needs.

    Pass *http_client* to share a connection pool or to inject a mock
    transport in tests.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = SLACK_API_URL,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def __aenter__(self) -> SlackClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------ #
    # API methods
    # ------------------------------------------------------------------ #

    async def post_message(
        self, channel: str, text: str, thread_ts: str | None = None
    ) -> str:
        """Post *text* and return the new message's ``ts``."""
        payload: dict[str, Any] = {"channel": channel, "text": text}
        if thread_ts is not None:
            payload["thread_ts"] = thread_ts
        data = await self._call("chat.postMessage", json=payload)
        return str(data.get("ts", ""))

    async def update_message(self, channel: str, ts: str, text: str) -> None:
        """Replace the body of message *ts*."""
        await self._call("chat.update", json={"channel": channel, "ts": ts, "text": text})

    async def upload_file(self, channel: str, thread_ts: str, path: str | Path) -> None:
        """Upload *path* into a thread using the external-upload flow."""
        file_path = Path(path)
        content = file_path.read_bytes()
        ticket = await self._call(
            "files.getUploadURLExternal",
            data={"filename": file_path.name, "length": str(len(content))},
        )
        response = await self._http.post(str(ticket["upload_url"]), content=content)
        response.raise_for_status()
        await self._call(
            "files.completeUploadExternal",
            json={
                "files": [{"id": ticket["file_id"], "title": file_path.name}],
                "channel_id": channel,
                "thread_ts": thread_ts,
            },
        )

    async def _call(
        self,
        method: str,
        *,
        json: dict[str, Any] | None = None,
        data: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = await self._http.post(
            f"{self._base_url}/{method}",
            headers=self._headers,
            json=json,
            data=data,
        )
        response.raise_for_status()
        body: dict[str, Any] = response.json()
        if not body.get("ok"):
            raise SlackAPIError(method, str(body.get("error", "unknown_error")))
        return body


async def safe_send(
    client: SlackClient,
    channel: str,
    text: str,
    *,
    thread_ts: str | None = None,
    update_ts: str | None = None,
) -> None:
    """Post (or update) a message, never raising.

    Text is clamped to what Slack accepts; a ``msg_too_long`` rejection is
    retried once with a shorter body.  Other failures are logged.
    """
    if len(text) > MAX_SINK_CHARS:
        text = text[:MAX_SINK_CHARS] + "\n...(truncated)"

    async def _send(body: str) -> None:
        if update_ts is not None:
            await client.update_message(channel, update_ts, body)
        else:
            await client.post_message(channel, body, thread_ts=thread_ts)

    try:
        await _send(text)
    except SlackAPIError as exc:
        if exc.error != "msg_too_long":
            logger.error("Slack send failed: %s", exc)
            return
        logger.warning("Slack rejected message as too long, retrying shorter")
        try:
            await _send(text[:_SHORT_RETRY_CHARS] + "\n...(message was too long and was cut)")
        except (SlackAPIError, httpx.HTTPError) as retry_exc:
            logger.error("Slack send failed after retry: %s", retry_exc)
    except httpx.HTTPError as exc:
        logger.error("Slack send failed: %s", exc)
