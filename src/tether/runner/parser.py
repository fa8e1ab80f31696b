"""Stream parser — turns CLI stdout records into typed stream events."""

from __future__ import annotations

import logging

from tether.constants import EMPTY_OUTPUT
from tether.runner.models import (
    CompleteEvent,
    RunResult,
    StreamEvent,
    TextDeltaEvent,
    ThinkingEvent,
    ToolCompletedEvent,
    ToolInvokedEvent,
)
from tether.runner.records import (
    AssistantRecord,
    ContentBlockDelta,
    ContentBlockStart,
    OtherRecord,
    ResultRecord,
    StreamEnvelope,
    StreamRecord,
    TextBlock,
    TextDelta,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserRecord,
    parse_record,
)

logger = logging.getLogger(__name__)

#: Tool name used when a ``tool_use`` block carries no name.
UNKNOWN_TOOL = "unknown_tool"

#: Tool name reported for a tool result when no tool is being tracked.
FALLBACK_TOOL = "tool"


class StreamParser:
    """Stateful parser for one run's ``stream-json`` output.

    Feed it one framed line at a time with :meth:`feed`; each call returns
    the (possibly empty) list of semantic events that line produced.
    Malformed lines produce no events.  Once a ``result`` record has been
    seen the parser is :attr:`finished` and ignores everything else, so
    the ``complete`` event is always the last one it emits.

    Two channels can announce the same tool invocation: the partial
    ``stream_event`` blocks and the full ``assistant`` message that
    follows.  The assistant channel only emits when the tool name differs
    from the active one.  The comparison is by name alone, so a second
    call to the same tool with no result in between is merged into the
    first.
    """

    def __init__(self) -> None:
        self._accumulated = ""
        self._active_tool: str | None = None
        self._thinking = False
        self._finished = False

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def accumulated_text(self) -> str:
        """All prose text received so far."""
        return self._accumulated

    @property
    def active_tool(self) -> str | None:
        return self._active_tool

    @property
    def thinking(self) -> bool:
        return self._thinking

    @property
    def finished(self) -> bool:
        """True once the terminal ``result`` record has been parsed."""
        return self._finished

    # ------------------------------------------------------------------ #
    # Parsing
    # ------------------------------------------------------------------ #

    def feed(self, line: str) -> list[StreamEvent]:
        """Parse one line and return the events it produced."""
        if self._finished or not line.strip():
            return []
        record = parse_record(line)
        if record is None:
            logger.debug("Skipping malformed record: %s", line[:200])
            return []
        return self._dispatch(record)

    def finish(
        self,
        *,
        success: bool,
        exit_code: int | None,
        timed_out: bool,
        duration_ms: int,
        fallback_output: str = "",
    ) -> CompleteEvent:
        """Build the terminal event for a run that ended without a ``result``.

        The output is the accumulated prose, then *fallback_output*, then a
        fixed placeholder.
        """
        self._finished = True
        output = self._accumulated.strip() or fallback_output or EMPTY_OUTPUT
        return CompleteEvent(
            result=RunResult(
                success=success,
                output=output,
                timed_out=timed_out,
                exit_code=exit_code,
                duration_ms=duration_ms,
            )
        )

    def _dispatch(self, record: StreamRecord) -> list[StreamEvent]:
        match record:
            case StreamEnvelope(event=ContentBlockStart(content_block=block)):
                return self._on_block_start(block)
            case StreamEnvelope(event=ContentBlockDelta(delta=TextDelta(text=text))):
                return [self._on_text_delta(text)]
            case StreamEnvelope():
                return []
            case AssistantRecord():
                return self._on_assistant(record)
            case UserRecord():
                return self._on_user(record)
            case ResultRecord():
                return [self._on_result(record)]
            case OtherRecord():
                return []
        return []

    def _on_block_start(self, block: object) -> list[StreamEvent]:
        match block:
            case ThinkingBlock():
                if self._thinking:
                    return []
                self._thinking = True
                logger.info("Thinking started")
                return [ThinkingEvent()]
            case ToolUseBlock(name=name):
                tool = name or UNKNOWN_TOOL
                self._active_tool = tool
                self._thinking = False
                logger.info("Tool invoked: %s", tool)
                return [ToolInvokedEvent(tool=tool)]
            case TextBlock():
                self._thinking = False
                logger.debug("Text block started")
        return []

    def _on_text_delta(self, text: str) -> TextDeltaEvent:
        if not self._accumulated:
            logger.info("First text delta: %r", text[:30])
        self._accumulated += text
        self._thinking = False
        return TextDeltaEvent(text=text, accumulated=self._accumulated)

    def _on_assistant(self, record: AssistantRecord) -> list[StreamEvent]:
        if record.message is None:
            return []
        events: list[StreamEvent] = []
        for block in record.message.blocks:
            if not isinstance(block, ToolUseBlock) or not block.name:
                continue
            if block.name == self._active_tool:
                continue
            self._active_tool = block.name
            logger.info("Tool invoked (assistant message): %s", block.name)
            events.append(ToolInvokedEvent(tool=block.name))
        return events

    def _on_user(self, record: UserRecord) -> list[StreamEvent]:
        if record.message is None:
            return []
        blocks = record.message.blocks
        if not blocks or not isinstance(blocks[0], ToolResultBlock):
            return []
        tool = self._active_tool or FALLBACK_TOOL
        duration = record.duration_seconds
        logger.info(
            "Tool completed: %s (%s)",
            tool,
            f"{duration:.0f}s" if duration is not None else "n/a",
        )
        self._active_tool = None
        return [ToolCompletedEvent(tool=tool, duration_sec=duration)]

    def _on_result(self, record: ResultRecord) -> CompleteEvent:
        self._finished = True
        output = record.result or self._accumulated or EMPTY_OUTPUT
        duration_ms = int(record.duration_ms or 0)
        logger.info(
            "Final result: length=%d, duration=%dms, cost=%s, turns=%s",
            len(output),
            duration_ms,
            f"${record.total_cost_usd:.4f}" if record.total_cost_usd is not None else "n/a",
            record.num_turns if record.num_turns is not None else "n/a",
        )
        return CompleteEvent(
            result=RunResult(
                success=not record.is_error,
                output=output,
                timed_out=False,
                exit_code=None,
                duration_ms=max(duration_ms, 0),
                cost_usd=record.total_cost_usd,
                num_turns=record.num_turns,
            )
        )
