"""Record shapes emitted by the CLI in ``--output-format stream-json`` mode.

Every stdout line is one JSON object with a top-level ``type``:

* ``stream_event`` — a raw API streaming event (``content_block_start``,
  ``content_block_delta``, ...) when ``--include-partial-messages`` is on.
* ``assistant`` — a complete assistant message; ``message.content[]``
  holds ``text``, ``tool_use`` and ``thinking`` blocks.
* ``user`` — tool results fed back to the model.
* ``result`` — the final aggregated result.
* anything else (``system`` init, ...) is accepted and ignored.

Unknown tags at every level resolve to an ``Other*`` model so that new
record kinds never fail validation; only structurally broken records do.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
)


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


def _tagger(known: frozenset[str]) -> Any:
    """Build a discriminator that maps unknown ``type`` values to ``other``."""

    def _discriminate(v: Any) -> str:
        tag = v.get("type") if isinstance(v, dict) else getattr(v, "type", None)
        return tag if tag in known else "other"

    return _discriminate


# ------------------------------------------------------------------ #
# Content blocks
# ------------------------------------------------------------------ #


class ThinkingBlock(_Record):
    type: Literal["thinking"]


class ToolUseBlock(_Record):
    type: Literal["tool_use"]
    name: str | None = None


class TextBlock(_Record):
    type: Literal["text"]
    text: str = ""


class ToolResultBlock(_Record):
    type: Literal["tool_result"]


class OtherBlock(_Record):
    type: str = ""


ContentBlock = Annotated[
    Annotated[ThinkingBlock, Tag("thinking")]
    | Annotated[ToolUseBlock, Tag("tool_use")]
    | Annotated[TextBlock, Tag("text")]
    | Annotated[ToolResultBlock, Tag("tool_result")]
    | Annotated[OtherBlock, Tag("other")],
    Discriminator(_tagger(frozenset({"thinking", "tool_use", "text", "tool_result"}))),
]


# ------------------------------------------------------------------ #
# Streaming API events (inside ``stream_event``)
# ------------------------------------------------------------------ #


class TextDelta(_Record):
    type: Literal["text_delta"]
    text: str = ""


class OtherDelta(_Record):
    type: str = ""


Delta = Annotated[
    Annotated[TextDelta, Tag("text_delta")] | Annotated[OtherDelta, Tag("other")],
    Discriminator(_tagger(frozenset({"text_delta"}))),
]


class ContentBlockStart(_Record):
    type: Literal["content_block_start"]
    content_block: ContentBlock | None = None


class ContentBlockDelta(_Record):
    type: Literal["content_block_delta"]
    delta: Delta | None = None


class OtherApiEvent(_Record):
    type: str = ""


ApiEvent = Annotated[
    Annotated[ContentBlockStart, Tag("content_block_start")]
    | Annotated[ContentBlockDelta, Tag("content_block_delta")]
    | Annotated[OtherApiEvent, Tag("other")],
    Discriminator(_tagger(frozenset({"content_block_start", "content_block_delta"}))),
]


# ------------------------------------------------------------------ #
# Top-level records
# ------------------------------------------------------------------ #


class Message(_Record):
    content: list[ContentBlock] | str = Field(default_factory=list)

    @property
    def blocks(self) -> list[Any]:
        """Content blocks, or an empty list for plain-string content."""
        return self.content if isinstance(self.content, list) else []


class StreamEnvelope(_Record):
    type: Literal["stream_event"]
    event: ApiEvent | None = None


class AssistantRecord(_Record):
    type: Literal["assistant"]
    message: Message | None = None


class UserRecord(_Record):
    type: Literal["user"]
    message: Message | None = None
    # A dict for most tools, a bare string for tool errors.
    tool_use_result: Any = None

    @property
    def duration_seconds(self) -> float | None:
        """``tool_use_result.durationSeconds`` when it is a number."""
        if not isinstance(self.tool_use_result, dict):
            return None
        value = self.tool_use_result.get("durationSeconds")
        if isinstance(value, bool) or not isinstance(value, int | float):
            return None
        return float(value)


class ResultRecord(_Record):
    type: Literal["result"]
    result: str | None = None
    duration_ms: float | None = None
    total_cost_usd: float | None = None
    num_turns: int | None = None
    is_error: bool = False


class OtherRecord(_Record):
    type: str = ""


StreamRecord = Annotated[
    Annotated[StreamEnvelope, Tag("stream_event")]
    | Annotated[AssistantRecord, Tag("assistant")]
    | Annotated[UserRecord, Tag("user")]
    | Annotated[ResultRecord, Tag("result")]
    | Annotated[OtherRecord, Tag("other")],
    Discriminator(
        _tagger(frozenset({"stream_event", "assistant", "user", "result"}))
    ),
]
"""Discriminated union of every top-level stdout record."""

_RECORD_ADAPTER: TypeAdapter[Any] = TypeAdapter(StreamRecord)


def parse_record(line: str) -> StreamRecord | None:
    """Validate one JSON line into a typed record.

    Returns ``None`` for anything that is not a well-formed record
    (invalid JSON, a non-object value, or a shape that fails validation).
    """
    try:
        return _RECORD_ADAPTER.validate_json(line)
    except ValidationError:
        return None
