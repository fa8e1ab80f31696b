"""Tests for the Slack Web API client and safe_send."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from tether.constants import MAX_SINK_CHARS
from tether.relay.slack import SlackAPIError, SlackClient, safe_send


class FakeSlack:
    """Records Web API calls and answers them from a script."""

    def __init__(self, responses: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.uploads: list[bytes] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "files.slack.test":
            self.uploads.append(request.content)
            return httpx.Response(200, text="OK")

        method = request.url.path.rsplit("/", 1)[-1]
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            body = json.loads(request.content)
        else:
            body = dict(httpx.QueryParams(request.content.decode()))
        body["_auth"] = request.headers.get("authorization")
        self.calls.append((method, body))

        scripted = self.responses.get(method)
        if scripted:
            return httpx.Response(200, json=scripted.pop(0))
        return httpx.Response(200, json={"ok": True, "ts": "1700000000.000100"})

    def client(self) -> SlackClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return SlackClient("xoxb-test", http_client=http)


class TestSlackClient:
    async def test_post_message(self) -> None:
        fake = FakeSlack()
        client = fake.client()
        ts = await client.post_message("C1", "hello", thread_ts="1.2")
        assert ts == "1700000000.000100"
        method, body = fake.calls[0]
        assert method == "chat.postMessage"
        assert body["channel"] == "C1"
        assert body["text"] == "hello"
        assert body["thread_ts"] == "1.2"
        assert body["_auth"] == "Bearer xoxb-test"

    async def test_post_without_thread(self) -> None:
        fake = FakeSlack()
        await fake.client().post_message("C1", "top level")
        assert "thread_ts" not in fake.calls[0][1]

    async def test_update_message(self) -> None:
        fake = FakeSlack()
        await fake.client().update_message("C1", "9.9", "new body")
        method, body = fake.calls[0]
        assert method == "chat.update"
        assert (body["channel"], body["ts"], body["text"]) == ("C1", "9.9", "new body")

    async def test_error_raises(self) -> None:
        fake = FakeSlack({"chat.update": [{"ok": False, "error": "message_not_found"}]})
        with pytest.raises(SlackAPIError) as excinfo:
            await fake.client().update_message("C1", "9.9", "x")
        assert excinfo.value.error == "message_not_found"
        assert excinfo.value.method == "chat.update"

    async def test_http_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = SlackClient("t", http_client=http)
        with pytest.raises(httpx.HTTPStatusError):
            await client.post_message("C1", "x")

    async def test_upload_file(self, tmp_path: Path) -> None:
        image = tmp_path / "chart.png"
        image.write_bytes(b"\x89PNG data")
        fake = FakeSlack({
            "files.getUploadURLExternal": [
                {"ok": True, "upload_url": "https://files.slack.test/upload/abc", "file_id": "F1"}
            ]
        })
        await fake.client().upload_file("C1", "1.2", image)

        assert [m for m, _ in fake.calls] == [
            "files.getUploadURLExternal",
            "files.completeUploadExternal",
        ]
        assert fake.calls[0][1]["filename"] == "chart.png"
        assert fake.calls[0][1]["length"] == str(len(b"\x89PNG data"))
        assert fake.uploads == [b"\x89PNG data"]
        complete = fake.calls[1][1]
        assert complete["files"] == [{"id": "F1", "title": "chart.png"}]
        assert complete["channel_id"] == "C1"
        assert complete["thread_ts"] == "1.2"

    async def test_context_manager_closes_owned_client(self) -> None:
        async with SlackClient("t") as client:
            assert client._http.is_closed is False
        assert client._http.is_closed is True


class TestSafeSend:
    async def test_post_in_thread(self) -> None:
        fake = FakeSlack()
        await safe_send(fake.client(), "C1", "hi", thread_ts="1.2")
        assert fake.calls[0][0] == "chat.postMessage"
        assert fake.calls[0][1]["thread_ts"] == "1.2"

    async def test_update_when_ts_given(self) -> None:
        fake = FakeSlack()
        await safe_send(fake.client(), "C1", "final", update_ts="5.5")
        assert fake.calls[0][0] == "chat.update"
        assert fake.calls[0][1]["ts"] == "5.5"

    async def test_long_text_truncated(self) -> None:
        fake = FakeSlack()
        await safe_send(fake.client(), "C1", "z" * 5000)
        text = fake.calls[0][1]["text"]
        assert text.startswith("z" * MAX_SINK_CHARS)
        assert text.endswith("\n...(truncated)")

    async def test_msg_too_long_retried_shorter(self) -> None:
        fake = FakeSlack({"chat.postMessage": [{"ok": False, "error": "msg_too_long"}]})
        await safe_send(fake.client(), "C1", "w" * 3000)
        assert len(fake.calls) == 2
        retry = fake.calls[1][1]["text"]
        assert retry.startswith("w" * 2000)
        assert len(retry) < 2100

    async def test_other_errors_swallowed(self) -> None:
        fake = FakeSlack({"chat.postMessage": [{"ok": False, "error": "channel_not_found"}]})
        await safe_send(fake.client(), "C1", "x")
        assert len(fake.calls) == 1

    async def test_transport_errors_swallowed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        await safe_send(SlackClient("t", http_client=http), "C1", "x")
