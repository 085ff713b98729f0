"""Cyclopts CLI entry point for claude-supervisor."""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from dataclasses import replace
from typing import TYPE_CHECKING, Annotated

from cyclopts import App, Parameter

from claude_supervisor import __version__
from claude_supervisor.lib.config.settings import (
    SupervisorConfig,
    load_config,
    parse_exit_codes,
    resolve_executable,
)
from claude_supervisor.lib.exec.errors import ConfigurationError
from claude_supervisor.lib.exec.patterns import split_patterns
from claude_supervisor.lib.exec.replay import InputReplay
from claude_supervisor.lib.supervisor import run_supervisor

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

CHILD_ARGS_SEPARATOR = "--"
EXIT_INTERRUPTED = 130

_CHILD_ARGS: ContextVar[tuple[str, ...]] = ContextVar("_CHILD_ARGS", default=())


app = App(
    name="claude-supervisor",
    help=(
        "Retry wrapper for the Claude CLI. Arguments after `--` are passed to the "
        "child command unchanged."
    ),
    version=__version__,
    help_formatter="plain",
)


def split_child_args(argv: Sequence[str]) -> tuple[list[str], tuple[str, ...]]:
    """Split supervisor options from the child's arguments at the first `--`."""

    args = list(argv)
    if CHILD_ARGS_SEPARATOR not in args:
        return args, ()
    index = args.index(CHILD_ARGS_SEPARATOR)
    return args[:index], tuple(args[index + 1 :])


def _extract_logging_flags(argv: Sequence[str]) -> tuple[list[str], bool, int]:
    json_logs = False
    verbosity = 0
    cleaned: list[str] = []
    for arg in argv:
        if arg == "--json-logs":
            json_logs = True
            continue
        if arg == "--verbose":
            verbosity += 1
            continue
        if arg.startswith("-v") and set(arg[1:]) == {"v"}:
            verbosity += len(arg) - 1
            continue
        cleaned.append(arg)
    return cleaned, json_logs, verbosity


def _stdin_is_tty() -> bool:
    try:
        return sys.stdin is not None and sys.stdin.isatty()
    except ValueError:
        return False


def build_config(
    *,
    child_args: tuple[str, ...],
    overrides: dict[str, object],
    stdin_is_tty: bool,
) -> SupervisorConfig:
    """Merge flags over environment/config-file values and resolve the executable."""

    config = load_config(overrides={**overrides, "args": child_args})
    # Interactive only when a human is at the terminal and nothing is forwarded.
    interactive = stdin_is_tty and not child_args and not config.force_capture
    return resolve_executable(replace(config, interactive=interactive))


@app.default
def supervise(
    cmd: Annotated[
        str | None,
        Parameter(name="--cmd", help="Command to run (default: `claude`, `claude.exe` on Windows)."),
    ] = None,
    max_retries: Annotated[
        int | None,
        Parameter(name="--max-retries", help="Max retries on overload/429/5xx/network errors."),
    ] = None,
    base_delay_ms: Annotated[
        int | None,
        Parameter(name="--base-delay-ms", help="Base backoff in milliseconds."),
    ] = None,
    max_delay_ms: Annotated[
        int | None,
        Parameter(name="--max-delay-ms", help="Backoff cap in milliseconds."),
    ] = None,
    patterns: Annotated[
        str | None,
        Parameter(name="--patterns", help="Extra retry regex patterns, pipe-separated."),
    ] = None,
    force_capture: Annotated[
        bool | None,
        Parameter(
            name=["--force-capture", "--force-tee"],
            help="Capture and echo output even when running interactively.",
        ),
    ] = None,
    retry_on_any_error: Annotated[
        bool | None,
        Parameter(
            name="--retry-on-any-error",
            help="Retry every non-zero exit, even without a matching pattern.",
        ),
    ] = None,
    retry_on_signal: Annotated[
        bool | None,
        Parameter(name="--retry-on-signal", help="Retry when the child is killed by a signal."),
    ] = None,
    retry_exit_codes: Annotated[
        str | None,
        Parameter(name="--retry-exit-codes", help="Comma-separated exit codes that always retry."),
    ] = None,
    max_stdin_bytes: Annotated[
        int | None,
        Parameter(name="--max-stdin-bytes", help="Upper bound for piped stdin kept for replay."),
    ] = None,
) -> None:
    """Run the child command, retrying transient failures with backoff."""

    child_args = _CHILD_ARGS.get()
    overrides: dict[str, object] = {
        "command": cmd,
        "max_retries": max_retries,
        "base_delay_ms": base_delay_ms,
        "max_delay_ms": max_delay_ms,
        "patterns": split_patterns(patterns) if patterns is not None else None,
        "force_capture": force_capture,
        "retry_on_any_error": retry_on_any_error,
        "retry_on_signal": retry_on_signal,
        "retry_exit_codes": (
            parse_exit_codes(retry_exit_codes, source="--retry-exit-codes")
            if retry_exit_codes is not None
            else None
        ),
        "max_stdin_bytes": max_stdin_bytes,
    }
    config = build_config(
        child_args=child_args,
        overrides=overrides,
        stdin_is_tty=_stdin_is_tty(),
    )

    replay = InputReplay(max_bytes=config.max_stdin_bytes)
    # Read piped stdin before the event loop starts so Ctrl-C interrupts the read directly.
    snapshot = replay.capture_once()
    if snapshot is not None and not snapshot.data and not child_args:
        logger.warning(
            "No stdin and no child args. Run from a terminal for interactive mode, "
            "or pass child args after `--` (e.g. -- -p 'hello')."
        )

    result = run_supervisor(config, replay=replay)
    if not result.succeeded:
        print(f"error: {result.message}", file=sys.stderr)
    raise SystemExit(result.exit_code)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point used by `claude-supervisor` and `python -m claude_supervisor`."""

    from claude_supervisor.lib.logging import configure_logging

    args = list(sys.argv[1:] if argv is None else argv)
    own_args, child_args = split_child_args(args)
    own_args, json_logs, verbosity = _extract_logging_flags(own_args)
    # Configure logging early so config warnings go to stderr, not the child's stdout.
    configure_logging(json_mode=json_logs, verbosity=verbosity)

    token = _CHILD_ARGS.set(child_args)
    try:
        try:
            app(own_args)
        except ConfigurationError as exc:
            print(f"error: {exc}", file=sys.stderr)
            raise SystemExit(exc.exit_code) from None
        except KeyboardInterrupt:
            raise SystemExit(EXIT_INTERRUPTED) from None
    finally:
        _CHILD_ARGS.reset(token)
