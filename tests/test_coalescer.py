"""Tests for the progress coalescer."""

from __future__ import annotations

import asyncio

from tether.relay.coalescer import (
    SEPARATOR,
    STATUS_ANALYZING,
    STATUS_STARTING,
    STATUS_THINKING,
    STATUS_WRITING,
    ProgressCoalescer,
    tool_label,
)
from tether.runner.models import (
    CompleteEvent,
    RunResult,
    TextDeltaEvent,
    ThinkingEvent,
    ToolCompletedEvent,
    ToolInvokedEvent,
)


class RecordingSink:
    def __init__(self) -> None:
        self.updates: list[str] = []

    async def update(self, text: str) -> None:
        self.updates.append(text)


class FailingSink:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.attempts = 0
        self.updates: list[str] = []

    async def update(self, text: str) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RuntimeError("ratelimited")
        self.updates.append(text)


class BlockingSink:
    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.updates: list[str] = []

    async def update(self, text: str) -> None:
        self.entered.set()
        await self.release.wait()
        self.updates.append(text)


def _complete() -> CompleteEvent:
    return CompleteEvent(result=RunResult(success=True, output="done"))


class TestToolLabel:
    def test_known_and_unknown(self) -> None:
        assert tool_label("Bash") == "shell command"
        assert tool_label("mcp__github__search") == "mcp__github__search"


class TestRender:
    async def test_initial_state(self) -> None:
        coalescer = ProgressCoalescer(RecordingSink())
        assert coalescer.render() == STATUS_STARTING
        assert coalescer.dirty is True

    async def test_thinking_status(self) -> None:
        coalescer = ProgressCoalescer(RecordingSink())
        await coalescer.on_event(ThinkingEvent())
        assert coalescer.render() == STATUS_THINKING

    async def test_tool_lifecycle(self) -> None:
        coalescer = ProgressCoalescer(RecordingSink())
        await coalescer.on_event(ToolInvokedEvent(tool="Bash"))
        assert coalescer.render() == "🔧 Running shell command..."

        await coalescer.on_event(ToolCompletedEvent(tool="Bash", duration_sec=12.6))
        await coalescer.on_event(ToolInvokedEvent(tool="Read"))
        await coalescer.on_event(ToolCompletedEvent(tool="Read"))
        assert coalescer.render() == (
            "✅ shell command done (13s)\n✅ file read done\n" + STATUS_ANALYZING
        )

    async def test_text_preview(self) -> None:
        coalescer = ProgressCoalescer(RecordingSink())
        await coalescer.on_event(ToolCompletedEvent(tool="Grep", duration_sec=1.0))
        await coalescer.on_event(TextDeltaEvent(text="Hi", accumulated="Hi"))
        assert coalescer.render() == "\n".join(
            ["✅ code search done (1s)", STATUS_WRITING, SEPARATOR, "Hi"]
        )

    async def test_long_preview_keeps_tail(self) -> None:
        coalescer = ProgressCoalescer(RecordingSink(), preview_chars=10)
        text = "abcdefghijklmnopqrstuvwxyz"
        await coalescer.on_event(TextDeltaEvent(text=text, accumulated=text))
        body = coalescer.render()
        assert body.endswith("...\nqrstuvwxyz")

    async def test_render_clamped(self) -> None:
        coalescer = ProgressCoalescer(RecordingSink(), max_chars=50)
        text = "x" * 500
        await coalescer.on_event(TextDeltaEvent(text=text, accumulated=text))
        assert len(coalescer.render()) == 50


class TestFlush:
    async def test_flush_only_when_dirty(self) -> None:
        sink = RecordingSink()
        coalescer = ProgressCoalescer(sink)
        assert await coalescer.flush() is True
        assert await coalescer.flush() is False
        await coalescer.on_event(ThinkingEvent())
        assert await coalescer.flush() is True
        assert sink.updates == [STATUS_STARTING, STATUS_THINKING]

    async def test_many_events_one_push(self) -> None:
        sink = RecordingSink()
        coalescer = ProgressCoalescer(sink)
        acc = ""
        for ch in "coalesced":
            acc += ch
            await coalescer.on_event(TextDeltaEvent(text=ch, accumulated=acc))
        await coalescer.flush()
        assert len(sink.updates) == 1
        assert sink.updates[0].endswith("coalesced")

    async def test_failure_keeps_state_dirty(self) -> None:
        sink = FailingSink(failures=1)
        coalescer = ProgressCoalescer(sink)
        assert await coalescer.flush() is False
        assert coalescer.dirty is True
        assert coalescer.flushing is False
        assert await coalescer.flush() is True
        assert sink.updates == [STATUS_STARTING]

    async def test_contention_skips(self) -> None:
        sink = BlockingSink()
        coalescer = ProgressCoalescer(sink)
        first = asyncio.create_task(coalescer.flush())
        await sink.entered.wait()

        await coalescer.on_event(ThinkingEvent())
        assert coalescer.flushing is True
        assert await coalescer.flush() is False

        sink.release.set()
        assert await first is True
        # The change made during the push is still pending.
        assert coalescer.dirty is True
        assert await coalescer.flush() is True
        assert sink.updates == [STATUS_STARTING, STATUS_THINKING]

    async def test_complete_stops_updates(self) -> None:
        sink = RecordingSink()
        coalescer = ProgressCoalescer(sink)
        await coalescer.on_event(_complete())
        assert coalescer.stopped is True
        await coalescer.on_event(ThinkingEvent())
        assert await coalescer.flush() is False
        assert sink.updates == []


class TestCadence:
    async def test_background_flushes(self) -> None:
        sink = RecordingSink()
        coalescer = ProgressCoalescer(sink, flush_interval=0.01)
        await coalescer.start()
        assert coalescer.running is True
        await coalescer.on_event(ToolInvokedEvent(tool="WebSearch"))
        await asyncio.sleep(0.1)
        await coalescer.stop()

        assert coalescer.running is False
        assert sink.updates[-1] == "🔧 Running web search..."
        # Identical renders are never pushed twice in a row.
        assert all(a != b for a, b in zip(sink.updates, sink.updates[1:], strict=False))

    async def test_complete_ends_loop(self) -> None:
        sink = RecordingSink()
        coalescer = ProgressCoalescer(sink, flush_interval=0.01)
        await coalescer.start()
        await coalescer.on_event(_complete())
        await asyncio.sleep(0.05)
        assert coalescer.running is False
        await coalescer.stop()

    async def test_stop_waits_for_inflight_push(self) -> None:
        sink = BlockingSink()
        coalescer = ProgressCoalescer(sink, flush_interval=0.01)
        await coalescer.start()
        await sink.entered.wait()

        stopper = asyncio.create_task(coalescer.stop())
        await asyncio.sleep(0.02)
        assert not stopper.done()

        sink.release.set()
        await stopper
        assert sink.updates == [STATUS_STARTING]
