"""Pydantic v2 models for run requests, results, and stream events."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class RunRequest(BaseModel):
    """One prompt to run inside one working directory."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    prompt: str = Field(description="Free-text prompt passed to the CLI")
    cwd: Path = Field(description="Working directory for the CLI process")
    timeout: float = Field(gt=0, description="Run timeout in seconds")


class RunResult(BaseModel):
    """Terminal value of a run — produced exactly once per request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    success: bool = Field(description="True if the run finished cleanly")
    output: str = Field(description="Final text output")
    timed_out: bool = Field(
        default=False,
        description="True if a termination signal was ever sent",
    )
    exit_code: int | None = Field(
        default=None,
        description="Process exit code (None if not started or unknown)",
    )
    duration_ms: int = Field(default=0, ge=0, description="Run duration in ms")
    cost_usd: float | None = Field(default=None, description="Reported cost in USD")
    num_turns: int | None = Field(default=None, description="Reported turn count")


class _StreamEventBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ThinkingEvent(_StreamEventBase):
    """The model started an extended-thinking block."""

    type: Literal["thinking"] = "thinking"


class TextDeltaEvent(_StreamEventBase):
    """An incremental prose fragment plus the running total."""

    type: Literal["text_delta"] = "text_delta"
    text: str = Field(description="Fragment appended by this delta")
    accumulated: str = Field(description="All prose text received so far")


class ToolInvokedEvent(_StreamEventBase):
    """The model invoked a tool."""

    type: Literal["tool_invoked"] = "tool_invoked"
    tool: str = Field(description="Tool identifier")


class ToolCompletedEvent(_StreamEventBase):
    """A tool returned its result to the model."""

    type: Literal["tool_completed"] = "tool_completed"
    tool: str = Field(description="Tool identifier")
    duration_sec: float | None = Field(
        default=None, description="Tool execution time, when reported"
    )


class CompleteEvent(_StreamEventBase):
    """Terminal event carrying the run result.  Nothing follows it."""

    type: Literal["complete"] = "complete"
    result: RunResult


def _event_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


StreamEvent = Annotated[
    Annotated[ThinkingEvent, Tag("thinking")]
    | Annotated[TextDeltaEvent, Tag("text_delta")]
    | Annotated[ToolInvokedEvent, Tag("tool_invoked")]
    | Annotated[ToolCompletedEvent, Tag("tool_completed")]
    | Annotated[CompleteEvent, Tag("complete")],
    Discriminator(_event_discriminator),
]
"""Discriminated union of all stream event types."""
