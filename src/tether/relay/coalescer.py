"""Progress coalescer — throttled, idempotent progress updates to a sink."""

from __future__ import annotations

import logging

from tether.background_loop import BackgroundLoop
from tether.constants import MAX_SINK_CHARS
from tether.relay.sinks import ProgressSink
from tether.runner.models import (
    CompleteEvent,
    StreamEvent,
    TextDeltaEvent,
    ThinkingEvent,
    ToolCompletedEvent,
    ToolInvokedEvent,
)

logger = logging.getLogger(__name__)

#: Seconds between flush attempts.
DEFAULT_FLUSH_INTERVAL = 2.0

#: Trailing characters of prose shown in the preview.
MAX_PREVIEW_CHARS = 3500

SEPARATOR = "────────────"

STATUS_STARTING = "🤔 Thinking..."
STATUS_THINKING = "🧠 Thinking..."
STATUS_ANALYZING = "🤔 Analyzing..."
STATUS_WRITING = "✍️ Writing response..."

#: Readable labels for the CLI's built-in tools.
TOOL_LABELS: dict[str, str] = {
    "WebSearch": "web search",
    "WebFetch": "web page fetch",
    "Read": "file read",
    "Edit": "file edit",
    "Write": "file write",
    "Bash": "shell command",
    "Glob": "file search",
    "Grep": "code search",
    "Task": "sub-agent task",
    "NotebookEdit": "notebook edit",
}


def tool_label(tool: str) -> str:
    """Readable label for *tool*, or the raw name if unknown."""
    return TOOL_LABELS.get(tool, tool)


class ProgressCoalescer(BackgroundLoop):
    """Renders stream events into one progress message, flushed on a cadence.

    Events only mutate render state and mark it dirty.  Every
    *flush_interval* seconds the render is pushed to the sink if it
    changed and no push is outstanding; contention skips rather than
    queues.  A ``complete`` event stops the cadence; a push already in
    flight still finishes.
    """

    def __init__(
        self,
        sink: ProgressSink,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        max_chars: int = MAX_SINK_CHARS,
        preview_chars: int = MAX_PREVIEW_CHARS,
    ) -> None:
        super().__init__(flush_interval)
        self._sink = sink
        self._max_chars = max_chars
        self._preview_chars = preview_chars

        # Render state.
        self._tool_history: list[str] = []
        self._status = STATUS_STARTING
        self._text = ""
        self._dirty = True
        self._flushing = False
        self._stopped = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def flushing(self) -> bool:
        return self._flushing

    @property
    def stopped(self) -> bool:
        return self._stopped

    # ------------------------------------------------------------------ #
    # Event intake
    # ------------------------------------------------------------------ #

    async def on_event(self, event: StreamEvent) -> None:
        """Apply *event* to the render state (suitable as an EventCallback)."""
        if self._stopped:
            return
        match event:
            case ThinkingEvent():
                self._status = STATUS_THINKING
            case ToolInvokedEvent(tool=tool):
                self._status = f"🔧 Running {tool_label(tool)}..."
            case ToolCompletedEvent(tool=tool, duration_sec=duration):
                suffix = f" ({round(duration)}s)" if duration else ""
                self._tool_history.append(f"✅ {tool_label(tool)} done{suffix}")
                self._status = STATUS_ANALYZING
            case TextDeltaEvent(accumulated=accumulated):
                self._text = accumulated
                self._status = STATUS_WRITING
            case CompleteEvent():
                self._stopped = True
                self.request_stop()
                return
        self._dirty = True

    # ------------------------------------------------------------------ #
    # Rendering & flushing
    # ------------------------------------------------------------------ #

    def render(self) -> str:
        """Compose the progress body from the current render state."""
        parts: list[str] = []
        if self._tool_history:
            parts.append("\n".join(self._tool_history))
        parts.append(self._status)
        if self._text:
            if len(self._text) > self._preview_chars:
                preview = "...\n" + self._text[-self._preview_chars :]
            else:
                preview = self._text
            parts.append(SEPARATOR)
            parts.append(preview)
        return "\n".join(parts)[: self._max_chars]

    async def flush(self) -> bool:
        """Push the render if it changed; return ``True`` if a push happened."""
        if self._stopped or not self._dirty or self._flushing:
            return False
        self._dirty = False
        self._flushing = True
        try:
            body = self.render()
            logger.info(
                "Progress update: text=%d chars, tools=%d, status=%r",
                len(self._text),
                len(self._tool_history),
                self._status,
            )
            await self._sink.update(body)
        except Exception as exc:
            # Retry on the next tick with whatever state exists by then.
            self._dirty = True
            logger.warning("Progress update failed: %s", exc)
            return False
        finally:
            self._flushing = False
        return True

    async def _tick(self) -> None:
        await self.flush()
