"""Prompt gate — sanitize and validate user prompts before a run."""

from __future__ import annotations

import re

#: Longest prompt accepted; longer prompts are rejected by validation
#: and truncated by sanitization.
MAX_PROMPT_LENGTH = 10_000

#: CLI flags a prompt must never smuggle into the argument list.
_FORBIDDEN_RE = re.compile(
    r"--dangerously|--system-prompt|--unsafe|--allowedTools|--disallowedTools",
    re.IGNORECASE,
)

#: Flag-like tokens at the start of the prompt or after whitespace.
_FLAG_TOKEN_RE = re.compile(r"(?:^|\s)--[\w-]+")


class PromptRejectedError(ValueError):
    """A prompt failed validation; ``reason`` is safe to show the user."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def sanitize_prompt(prompt: str) -> str:
    """Truncate *prompt* and defuse flag-like tokens (``--foo`` → ``foo``)."""
    sanitized = prompt[:MAX_PROMPT_LENGTH]
    sanitized = _FLAG_TOKEN_RE.sub(lambda m: m.group(0).replace("--", "", 1), sanitized)
    return sanitized.strip()


def validate_prompt(prompt: str) -> str | None:
    """Return a user-facing rejection reason, or ``None`` if *prompt* is OK."""
    if _FORBIDDEN_RE.search(prompt):
        return "The prompt contains a forbidden pattern."
    if len(prompt) > MAX_PROMPT_LENGTH:
        return f"The prompt is too long (max {MAX_PROMPT_LENGTH} characters)."
    return None


def mask_prompt(prompt: str, length: int = 20, *, reveal: bool = True) -> str:
    """Shorten *prompt* for log lines; with ``reveal=False`` log only its size."""
    if not reveal:
        return f"[{len(prompt)} chars]"
    if len(prompt) <= length:
        return prompt
    return prompt[:length] + "..."
