"""Relay — dedupe, progress coalescing, and chat delivery of runs."""

from tether.relay.coalescer import ProgressCoalescer, tool_label
from tether.relay.dedupe import DedupeCache
from tether.relay.handler import RelayHandler
from tether.relay.sinks import ConsoleSink, ProgressSink, SlackMessageSink
from tether.relay.slack import SlackAPIError, SlackClient, safe_send

__all__ = [
    "ConsoleSink",
    "DedupeCache",
    "ProgressCoalescer",
    "ProgressSink",
    "RelayHandler",
    "SlackAPIError",
    "SlackClient",
    "SlackMessageSink",
    "safe_send",
    "tool_label",
]
