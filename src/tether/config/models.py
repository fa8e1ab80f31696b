"""Pydantic v2 models for tether.yaml configuration."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tether.runner.helpers import home_dir

logger = logging.getLogger(__name__)

#: Default run timeout in seconds.
DEFAULT_TIMEOUT = 300.0

#: Longest run timeout allowed, in seconds.
MAX_TIMEOUT = 3600.0


def resolve_directory(value: str | Path, label: str) -> Path:
    """Expand and resolve *value*; it must lie inside the home directory.

    A missing directory is only warned about, since it may be created
    before the first run.
    """
    resolved = Path(value).expanduser().resolve()
    home = home_dir().resolve()
    if not resolved.is_relative_to(home):
        msg = f"{label}: directory outside the home directory is not allowed ({resolved})"
        raise ValueError(msg)
    if not resolved.exists():
        logger.warning("%s: directory does not exist (%s)", label, resolved)
    return resolved


class DedupeConfig(BaseModel):
    """Settings for the inbound-event idempotency cache."""

    model_config = ConfigDict(extra="forbid")

    window: float = Field(
        default=300.0,
        gt=0,
        description="Seconds a seen event key is remembered",
    )
    max_size: int = Field(
        default=10_000,
        ge=1,
        description="Entry count that triggers a sweep of expired keys",
    )


class TetherConfig(BaseModel):
    """Top-level tether.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    default_directory: Path = Field(
        description="Working directory for channels without a mapping",
    )
    channel_directories: dict[str, Path] = Field(
        default_factory=dict,
        description="Channel ID → working directory",
    )
    allowed_user_ids: list[str] = Field(
        description="User IDs allowed to run prompts (empty = everyone)",
    )
    timeout: float = Field(
        default=DEFAULT_TIMEOUT,
        description="Run timeout in seconds (clamped to 1 hour)",
    )
    grace_period: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between SIGTERM and SIGKILL on timeout",
    )
    flush_interval: float = Field(
        default=2.0,
        gt=0,
        description="Seconds between progress message updates",
    )
    heartbeat_interval: float = Field(
        default=30.0,
        ge=0,
        description="Seconds between liveness log lines (0 to disable)",
    )
    executable: str | None = Field(
        default=None,
        description="Explicit CLI path (skips automatic resolution)",
    )
    dedupe: DedupeConfig = Field(
        default_factory=DedupeConfig,
        description="Idempotency cache settings",
    )

    @field_validator("timeout", mode="before")
    @classmethod
    def _clamp_timeout(cls, value: object) -> float:
        try:
            timeout = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            timeout = -1.0
        if timeout != timeout or timeout <= 0:
            logger.warning("Invalid timeout %r, using default %.0fs", value, DEFAULT_TIMEOUT)
            return DEFAULT_TIMEOUT
        if timeout > MAX_TIMEOUT:
            logger.warning("Timeout %.0fs exceeds maximum, clamping to %.0fs", timeout, MAX_TIMEOUT)
            return MAX_TIMEOUT
        return timeout

    @field_validator("default_directory")
    @classmethod
    def _check_default_directory(cls, value: Path) -> Path:
        return resolve_directory(value, "default_directory")

    @field_validator("channel_directories")
    @classmethod
    def _check_channel_directories(cls, value: dict[str, Path]) -> dict[str, Path]:
        resolved: dict[str, Path] = {}
        problems: list[str] = []
        for channel, path in value.items():
            try:
                resolved[channel] = resolve_directory(path, f"channel_directories[{channel}]")
            except ValueError as exc:
                problems.append(str(exc))
        if problems:
            raise ValueError("; ".join(problems))
        return resolved

    @model_validator(mode="after")
    def _warn_open_access(self) -> TetherConfig:
        if not self.allowed_user_ids:
            logger.warning("allowed_user_ids is empty: every user may run prompts")
        return self

    def directory_for(self, channel: str) -> Path:
        """Working directory mapped to *channel*, else the default."""
        return self.channel_directories.get(channel, self.default_directory)

    def is_user_allowed(self, user_id: str) -> bool:
        """An empty allow-list admits everyone."""
        return not self.allowed_user_ids or user_id in self.allowed_user_ids
