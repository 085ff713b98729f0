"""Supervisor configuration: defaults, config file, environment and flags."""

from __future__ import annotations

import logging
import os
import shutil
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import cast

from claude_supervisor.lib.exec.errors import ConfigurationError
from claude_supervisor.lib.exec.patterns import split_patterns
from claude_supervisor.lib.exec.spawn import EXIT_COMMAND_NOT_EXECUTABLE, EXIT_COMMAND_NOT_FOUND

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = "claude-supervisor"
CONFIG_FILENAME = "config.toml"


def default_command() -> str:
    return "claude.exe" if os.name == "nt" else "claude"


@dataclass(frozen=True, slots=True)
class SupervisorConfig:
    """Resolved configuration handed to the supervisor core."""

    command: str = default_command()
    args: tuple[str, ...] = ()
    max_retries: int = 6
    base_delay_ms: int = 500
    max_delay_ms: int = 20_000
    patterns: tuple[str, ...] = ()
    force_capture: bool = False
    interactive: bool = False
    retry_on_any_error: bool = False
    retry_on_signal: bool = False
    retry_exit_codes: tuple[int, ...] = ()
    jitter_ratio: float = 0.5
    max_stdin_bytes: int = 16 * 1024 * 1024
    kill_grace_seconds: float = 2.0


_INT_FIELDS = frozenset({"max_retries", "base_delay_ms", "max_delay_ms", "max_stdin_bytes"})
_FLOAT_FIELDS = frozenset({"jitter_ratio", "kill_grace_seconds"})
_BOOL_FIELDS = frozenset({"force_capture", "retry_on_any_error", "retry_on_signal"})
_PATTERN_FIELDS = frozenset({"patterns"})
_EXIT_CODE_FIELDS = frozenset({"retry_exit_codes"})

_SECTION_KEY_MAP: dict[str, dict[str, str]] = {
    "retry": {
        "max_retries": "max_retries",
        "base_delay_ms": "base_delay_ms",
        "max_delay_ms": "max_delay_ms",
        "jitter_ratio": "jitter_ratio",
        "patterns": "patterns",
        "on_any_error": "retry_on_any_error",
        "retry_on_any_error": "retry_on_any_error",
        "on_signal": "retry_on_signal",
        "retry_on_signal": "retry_on_signal",
        "exit_codes": "retry_exit_codes",
        "retry_exit_codes": "retry_exit_codes",
    },
    "input": {
        "max_stdin_bytes": "max_stdin_bytes",
        "max_bytes": "max_stdin_bytes",
    },
    "process": {
        "cmd": "command",
        "command": "command",
        "force_capture": "force_capture",
        "kill_grace_seconds": "kill_grace_seconds",
    },
}

_TOP_LEVEL_KEY_MAP: dict[str, str] = {
    "cmd": "command",
    "command": "command",
    "max_retries": "max_retries",
    "base_delay_ms": "base_delay_ms",
    "max_delay_ms": "max_delay_ms",
    "patterns": "patterns",
    "force_capture": "force_capture",
    "retry_on_any_error": "retry_on_any_error",
    "retry_on_signal": "retry_on_signal",
    "retry_exit_codes": "retry_exit_codes",
    "jitter_ratio": "jitter_ratio",
    "max_stdin_bytes": "max_stdin_bytes",
    "kill_grace_seconds": "kill_grace_seconds",
}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "CLAUDE_SUPERVISOR_CMD": "command",
    "CLAUDE_SUPERVISOR_MAX_RETRIES": "max_retries",
    "CLAUDE_SUPERVISOR_BASE_MS": "base_delay_ms",
    "CLAUDE_SUPERVISOR_CAP_MS": "max_delay_ms",
    "CLAUDE_SUPERVISOR_PATTERNS": "patterns",
    "CLAUDE_SUPERVISOR_FORCE_CAPTURE": "force_capture",
    "CLAUDE_SUPERVISOR_RETRY_ON_ANY_ERROR": "retry_on_any_error",
    "CLAUDE_SUPERVISOR_RETRY_ON_SIGNAL": "retry_on_signal",
    "CLAUDE_SUPERVISOR_RETRY_EXIT_CODES": "retry_exit_codes",
    "CLAUDE_SUPERVISOR_MAX_STDIN_BYTES": "max_stdin_bytes",
}
CONFIG_PATH_ENV = "CLAUDE_SUPERVISOR_CONFIG"

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off", ""})


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> object:
    if field_name in _INT_FIELDS:
        if isinstance(raw_value, bool) or not isinstance(raw_value, int):
            raise ConfigurationError(
                f"Invalid value for '{source}': expected int, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return raw_value

    if field_name in _FLOAT_FIELDS:
        if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
            raise ConfigurationError(
                f"Invalid value for '{source}': expected float, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return float(raw_value)

    if field_name in _BOOL_FIELDS:
        if not isinstance(raw_value, bool):
            raise ConfigurationError(
                f"Invalid value for '{source}': expected bool, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return raw_value

    if field_name in _PATTERN_FIELDS:
        if isinstance(raw_value, str):
            return split_patterns(raw_value)
        if isinstance(raw_value, list) and all(isinstance(item, str) for item in raw_value):
            return tuple(item for item in cast("list[str]", raw_value) if item.strip())
        raise ConfigurationError(
            f"Invalid value for '{source}': expected str or array[str], got {raw_value!r}."
        )

    if field_name in _EXIT_CODE_FIELDS:
        if not isinstance(raw_value, list) or not all(
            isinstance(item, int) and not isinstance(item, bool) for item in raw_value
        ):
            raise ConfigurationError(
                f"Invalid value for '{source}': expected array[int], got {raw_value!r}."
            )
        return tuple(cast("list[int]", raw_value))

    if not isinstance(raw_value, str) or not raw_value.strip():
        raise ConfigurationError(
            f"Invalid value for '{source}': expected non-empty string, got {raw_value!r}."
        )
    return raw_value.strip()


def _coerce_env_value(*, field_name: str, raw_value: str, env_name: str) -> object:
    normalized = raw_value.strip()
    if field_name in _INT_FIELDS:
        try:
            return int(normalized)
        except ValueError as error:
            raise ConfigurationError(
                f"Invalid environment override '{env_name}': expected int, got {raw_value!r}."
            ) from error

    if field_name in _FLOAT_FIELDS:
        try:
            return float(normalized)
        except ValueError as error:
            raise ConfigurationError(
                f"Invalid environment override '{env_name}': expected float, got {raw_value!r}."
            ) from error

    if field_name in _BOOL_FIELDS:
        lowered = normalized.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        raise ConfigurationError(
            f"Invalid environment override '{env_name}': expected boolean, got {raw_value!r}."
        )

    if field_name in _PATTERN_FIELDS:
        return split_patterns(raw_value)

    if field_name in _EXIT_CODE_FIELDS:
        return parse_exit_codes(raw_value, source=env_name)

    if not normalized:
        raise ConfigurationError(
            f"Invalid environment override '{env_name}': expected non-empty string."
        )
    return normalized


def parse_exit_codes(raw_value: str, *, source: str) -> tuple[int, ...]:
    """Parse a comma-separated exit-code list such as `1,75`."""

    codes: list[int] = []
    for piece in raw_value.split(","):
        if not piece.strip():
            continue
        try:
            codes.append(int(piece.strip()))
        except ValueError as error:
            raise ConfigurationError(
                f"Invalid value for '{source}': expected comma-separated ints, got {raw_value!r}."
            ) from error
    return tuple(codes)


def _default_values() -> dict[str, object]:
    defaults = SupervisorConfig()
    return {field.name: getattr(defaults, field.name) for field in fields(SupervisorConfig)}


def resolve_config_path(env: Mapping[str, str]) -> Path:
    explicit = env.get(CONFIG_PATH_ENV, "").strip()
    if explicit:
        return Path(explicit).expanduser()
    xdg_home = env.get("XDG_CONFIG_HOME", "").strip()
    base = Path(xdg_home).expanduser() if xdg_home else Path.home() / ".config"
    return base / CONFIG_DIR_NAME / CONFIG_FILENAME


def _apply_toml_payload(
    *,
    values: dict[str, object],
    payload: dict[str, object],
    path: Path,
) -> None:
    for key, raw_value in payload.items():
        section_map = _SECTION_KEY_MAP.get(key)
        if section_map is not None:
            if not isinstance(raw_value, dict):
                raise ConfigurationError(f"Invalid value for '{key}' in '{path}': expected table.")
            for section_key, section_value in cast("dict[str, object]", raw_value).items():
                field_name = section_map.get(section_key)
                if field_name is None:
                    logger.warning("Ignoring unknown config key '%s.%s'.", key, section_key)
                    continue
                values[field_name] = _coerce_file_value(
                    field_name=field_name,
                    raw_value=section_value,
                    source=f"{key}.{section_key}",
                )
            continue

        field_name = _TOP_LEVEL_KEY_MAP.get(key)
        if field_name is None:
            logger.warning("Ignoring unknown config key '%s'.", key)
            continue
        values[field_name] = _coerce_file_value(
            field_name=field_name,
            raw_value=raw_value,
            source=key,
        )


def _apply_env_overrides(values: dict[str, object], env: Mapping[str, str]) -> None:
    for env_name, field_name in _ENV_OVERRIDE_MAP.items():
        raw_value = env.get(env_name)
        if raw_value is None:
            continue
        values[field_name] = _coerce_env_value(
            field_name=field_name,
            raw_value=raw_value,
            env_name=env_name,
        )


def validate_config(config: SupervisorConfig) -> SupervisorConfig:
    """Check numeric bounds; raise ConfigurationError on the first violation."""

    if not config.command.strip():
        raise ConfigurationError("Child command must not be empty.")
    if config.max_retries < 0:
        raise ConfigurationError(f"max_retries must be >= 0, got {config.max_retries}.")
    if config.base_delay_ms < 0:
        raise ConfigurationError(f"base_delay_ms must be >= 0, got {config.base_delay_ms}.")
    if config.base_delay_ms > config.max_delay_ms:
        raise ConfigurationError(
            f"base_delay_ms ({config.base_delay_ms}) must not exceed "
            f"max_delay_ms ({config.max_delay_ms})."
        )
    if not 0.0 <= config.jitter_ratio <= 1.0:
        raise ConfigurationError(f"jitter_ratio must be within [0, 1], got {config.jitter_ratio}.")
    if config.max_stdin_bytes <= 0:
        raise ConfigurationError(f"max_stdin_bytes must be > 0, got {config.max_stdin_bytes}.")
    if config.kill_grace_seconds <= 0:
        raise ConfigurationError(
            f"kill_grace_seconds must be > 0, got {config.kill_grace_seconds}."
        )
    return config


def load_config(
    *,
    overrides: Mapping[str, object] | None = None,
    env: Mapping[str, str] | None = None,
) -> SupervisorConfig:
    """Resolve config with precedence flags > environment > config file > defaults."""

    resolved_env = os.environ if env is None else env
    values = _default_values()

    path = resolve_config_path(resolved_env)
    if path.is_file():
        try:
            payload_obj = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as error:
            raise ConfigurationError(f"Invalid config file '{path}': {error}") from error
        _apply_toml_payload(values=values, payload=cast("dict[str, object]", payload_obj), path=path)

    _apply_env_overrides(values, resolved_env)

    for key, value in (overrides or {}).items():
        if key not in values:
            raise ConfigurationError(f"Unknown configuration field '{key}'.")
        if value is not None:
            values[key] = value

    return validate_config(SupervisorConfig(**values))  # type: ignore[arg-type]


def resolve_executable(config: SupervisorConfig) -> SupervisorConfig:
    """Resolve the child command through PATH before the first attempt."""

    resolved = shutil.which(config.command)
    if resolved is not None:
        return replace(config, command=resolved)

    candidate = Path(config.command).expanduser()
    if candidate.exists() and not os.access(candidate, os.X_OK):
        raise ConfigurationError(
            f"Command '{config.command}' is not executable.",
            exit_code=EXIT_COMMAND_NOT_EXECUTABLE,
        )
    raise ConfigurationError(
        f"Command '{config.command}' not found on PATH. Install it or pass --cmd.",
        exit_code=EXIT_COMMAND_NOT_FOUND,
    )
