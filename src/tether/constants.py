"""Shared constants and type aliases for the Tether runtime."""

from __future__ import annotations

#: Environment-variable prefix reserved for the supervised CLI's own
#: nested-invocation state.  Stripped from every child environment.
RESERVED_ENV_PREFIX = "CLAUDE"

#: Name of the supervised CLI binary.
CLI_NAME = "claude"

#: Placeholder output when a run produced no text at all.
EMPTY_OUTPUT = "(empty response)"

#: Maximum characters the chat API accepts for one message body.
MAX_SINK_CHARS = 3900
