"""Find and read tether.yaml, layer ``.env`` and environment overrides, validate."""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from tether.config.models import TetherConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "tether.yaml"

#: Environment variable naming the config file when no path is given.
CONFIG_PATH_VAR = "TETHER_CONFIG"

#: Settings keyed by a channel ID rather than a nested field name.
_KEYED_FIELDS = frozenset({"channel_directories"})


class ConfigError(Exception):
    """User-facing configuration error."""


def _seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        msg = f"must be a number of seconds, got {value!r}"
        raise ValueError(msg) from None
    if math.isnan(seconds):
        msg = f"must be a number of seconds, got {value!r}"
        raise ValueError(msg)
    return seconds


def _path(value: str) -> str:
    return value.strip()


@dataclass(frozen=True)
class EnvOverride:
    """An environment variable that replaces one top-level setting."""

    variable: str
    field: str
    convert: Callable[[str], Any]


ENV_OVERRIDES: tuple[EnvOverride, ...] = (
    EnvOverride("TETHER_TIMEOUT", "timeout", _seconds),
    EnvOverride("TETHER_DEFAULT_DIRECTORY", "default_directory", _path),
)


def load_config(path: Path | None = None) -> TetherConfig:
    """Load and validate a tether.yaml file.

    The file is *path* if given, else ``$TETHER_CONFIG``, else
    ``tether.yaml`` in the current directory. A ``.env`` beside it is
    loaded without replacing variables that are already set, and the
    ``TETHER_*`` overrides are applied on top of the file's values.

    Raises:
        ConfigError: On a missing file, bad YAML, an unusable override,
            or validation failure.
    """
    config_path = _find_config(path)
    raw = _read_yaml(config_path)
    _load_env(config_path.parent)
    sources = _apply_env_overrides(raw)
    return _validate(raw, sources)


def _find_config(path: Path | None) -> Path:
    if path is not None:
        return _existing(Path(path), "")

    from_env = os.environ.get(CONFIG_PATH_VAR)
    if from_env:
        return _existing(Path(from_env).expanduser(), f" (from {CONFIG_PATH_VAR})")

    default = Path.cwd() / DEFAULT_CONFIG_NAME
    if not default.is_file():
        msg = (
            f"No {DEFAULT_CONFIG_NAME} found in {Path.cwd()}. "
            f"Run `tether init` to create one, or set {CONFIG_PATH_VAR}."
        )
        raise ConfigError(msg)
    return default


def _existing(path: Path, origin: str) -> Path:
    if not path.is_file():
        msg = f"Config file not found: {path}{origin}"
        raise ConfigError(msg)
    return path


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file: {exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" (line {mark.line + 1}, column {mark.column + 1})" if mark else ""
        msg = f"Invalid YAML in {path.name}{where}"
        raise ConfigError(msg) from exc

    # An empty file still fails validation with the missing settings listed.
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {path.name}, got {type(data).__name__}"
        raise ConfigError(msg)
    return data


def _load_env(config_dir: Path) -> None:
    env_path = config_dir / ".env"
    if env_path.is_file():
        load_dotenv(env_path)
        logger.debug("Loaded environment from %s", env_path)


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, str]:
    """Replace settings from ``TETHER_*`` variables; map field → variable."""
    sources: dict[str, str] = {}
    for override in ENV_OVERRIDES:
        value = os.environ.get(override.variable)
        if not value:
            continue
        try:
            raw[override.field] = override.convert(value)
        except ValueError as exc:
            msg = f"{override.variable} {exc}"
            raise ConfigError(msg) from exc
        sources[override.field] = override.variable
        logger.debug("%s overrides %s", override.variable, override.field)
    return sources


def _validate(raw: dict[str, Any], sources: dict[str, str]) -> TetherConfig:
    try:
        return TetherConfig.model_validate(raw)
    except ValidationError as exc:
        lines = [f"  {_describe(err, sources)}" for err in exc.errors()]
        msg = "Config validation failed:\n" + "\n".join(lines)
        raise ConfigError(msg) from exc


def _location(loc: tuple[int | str, ...]) -> str:
    """Render ``("channel_directories", "C9")`` as ``channel_directories[C9]``."""
    if not loc:
        return "(root)"
    text = str(loc[0])
    parent = loc[0]
    for part in loc[1:]:
        if isinstance(part, int) or parent in _KEYED_FIELDS:
            text += f"[{part}]"
        else:
            text += f".{part}"
        parent = part
    return text


def _describe(err: Any, sources: dict[str, str]) -> str:
    location = _location(err["loc"])
    match err["type"]:
        case "missing":
            line = f"{location}: required setting is missing"
        case "extra_forbidden":
            line = f"{location}: unknown setting"
        case "value_error":
            # Directory checks name their own location, including the channel.
            message = str(err["ctx"]["error"])
            line = message if message.startswith(location) else f"{location}: {message}"
        case _:
            line = f"{location}: {err['msg']}"

    variable = sources.get(str(err["loc"][0])) if err["loc"] else None
    if variable is not None:
        line += f" (set by {variable})"
    return line
