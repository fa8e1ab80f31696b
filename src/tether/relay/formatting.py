"""Turn a run result into chat-sized plain-text messages."""

from __future__ import annotations

import re

from tether.relay.coalescer import SEPARATOR
from tether.runner.models import RunResult

#: Longest single reply message.
MAX_MESSAGE_LENGTH = 2500

_MENTION_RE = re.compile(r"<@[A-Z0-9]+>")

#: (pattern, replacement, flags) applied in order by :func:`strip_markdown`.
_MARKDOWN_RULES: list[tuple[str, str, int]] = [
    (r"```[\w]*\n?([\s\S]*?)```", r"\1", 0),  # fenced code
    (r"`([^`]+)`", r"\1", 0),  # inline code
    (r"\*{3}(.+?)\*{3}", r"\1", 0),  # bold italic
    (r"_{3}(.+?)_{3}", r"\1", 0),
    (r"\*{2}(.+?)\*{2}", r"\1", 0),  # bold
    (r"_{2}(.+?)_{2}", r"\1", 0),
    (r"\*(.+?)\*", r"\1", 0),  # italic
    (r"^#{1,6}\s+(.+)$", r"\1", re.MULTILINE),  # headers
    (r"\[([^\]]+)\]\(([^)]+)\)", r"\1 (\2)", 0),  # links
    (r"!\[([^\]]*)\]\([^)]+\)", r"(\1)", 0),  # images
    (r"^[-*_]{3,}$", SEPARATOR, re.MULTILINE),  # horizontal rules
    (r"^>\s?", "", re.MULTILINE),  # quotes
    (r"\n{3,}", "\n\n", 0),
]
_MARKDOWN_PATTERNS = [(re.compile(p, f), r) for p, r, f in _MARKDOWN_RULES]

_IMAGE_MARKER_RE = re.compile(r"\[Image:\s*source:\s*[^\]]*\]", re.IGNORECASE)
_BARE_IMAGE_RE = re.compile(r"\[image\]", re.IGNORECASE)


def escape_mrkdwn(text: str) -> str:
    """Escape the three characters Slack treats as control sequences."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def strip_mention(text: str) -> str:
    """Remove ``<@U123>`` user mentions and surrounding whitespace."""
    return _MENTION_RE.sub("", text).strip()


def strip_markdown(text: str) -> str:
    """Reduce markdown to readable plain text."""
    for pattern, replacement in _MARKDOWN_PATTERNS:
        text = pattern.sub(replacement, text)
    return text.strip()


def strip_image_markers(text: str) -> str:
    """Drop ``[Image: source: ...]`` / ``[image]`` markers and tidy spacing."""
    text = _IMAGE_MARKER_RE.sub("", text)
    text = _BARE_IMAGE_RE.sub("", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def split_message(text: str, max_len: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split *text* into chunks of at most *max_len* characters.

    Prefers the last newline before the limit, then the last space, and
    only then a hard cut.
    """
    if len(text) <= max_len:
        return [text]

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n", 0, max_len + 1)
        if split_at <= 0:
            split_at = remaining.rfind(" ", 0, max_len + 1)
        if split_at <= 0:
            split_at = max_len
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].lstrip()
    return chunks


def format_duration(ms: int) -> str:
    """Format milliseconds as ``850ms``, ``42s`` or ``3m 5s``."""
    if ms < 1000:
        return f"{ms}ms"
    secs = round(ms / 1000)
    if secs < 60:
        return f"{secs}s"
    return f"{secs // 60}m {secs % 60}s"


def format_result(result: RunResult, directory: str) -> list[str]:
    """Render *result* as one or more reply messages with a footer.

    The footer (directory, duration, timeout marker) goes on the last
    message; multi-part replies get ``(i/n)`` headers.
    """
    footer = f"\n{SEPARATOR}\n📂 {escape_mrkdwn(directory)} | ⏱ {format_duration(result.duration_ms)}"
    if result.timed_out:
        footer += " | ⚠️ timed out"

    content_max = MAX_MESSAGE_LENGTH - (len(footer) + 10)
    plain = strip_image_markers(strip_markdown(result.output))

    if len(plain) <= content_max:
        return [plain + footer]

    chunks = split_message(plain, content_max - 20)
    total = len(chunks)
    return [
        (f"({i}/{total})\n" if total > 1 else "") + chunk + (footer if i == total else "")
        for i, chunk in enumerate(chunks, start=1)
    ]
