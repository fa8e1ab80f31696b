"""Process runner — CLI supervision, stream framing, and event parsing."""

from tether.runner.framing import LineFramer
from tether.runner.models import (
    CompleteEvent,
    RunRequest,
    RunResult,
    StreamEvent,
    TextDeltaEvent,
    ThinkingEvent,
    ToolCompletedEvent,
    ToolInvokedEvent,
)
from tether.runner.parser import StreamParser
from tether.runner.prompt import (
    MAX_PROMPT_LENGTH,
    PromptRejectedError,
    sanitize_prompt,
    validate_prompt,
)
from tether.runner.supervisor import (
    EventCallback,
    ProcessSupervisor,
    TerminationState,
    build_args,
    build_env,
    resolve_executable,
)

__all__ = [
    "MAX_PROMPT_LENGTH",
    "CompleteEvent",
    "EventCallback",
    "LineFramer",
    "ProcessSupervisor",
    "PromptRejectedError",
    "RunRequest",
    "RunResult",
    "StreamEvent",
    "StreamParser",
    "TerminationState",
    "TextDeltaEvent",
    "ThinkingEvent",
    "ToolCompletedEvent",
    "ToolInvokedEvent",
    "build_args",
    "build_env",
    "resolve_executable",
    "sanitize_prompt",
    "validate_prompt",
]
