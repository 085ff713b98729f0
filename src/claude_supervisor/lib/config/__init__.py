"""Configuration loading."""

from claude_supervisor.lib.config.settings import (
    SupervisorConfig,
    load_config,
    resolve_executable,
    validate_config,
)

__all__ = [
    "SupervisorConfig",
    "load_config",
    "resolve_executable",
    "validate_config",
]
