"""Shared pytest fixtures for supervisor and CLI checks."""

from __future__ import annotations

import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from collections.abc import Callable

PACKAGE_ROOT = Path(__file__).resolve().parents[1]


@dataclass(frozen=True, slots=True)
class CliResult:
    args: tuple[str, ...]
    returncode: int
    stdout: bytes
    stderr: str


@pytest.fixture(autouse=True)
def _isolate_supervisor_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("CLAUDE_SUPERVISOR_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))


@pytest.fixture
def package_root() -> Path:
    return PACKAGE_ROOT


@pytest.fixture
def mock_child(package_root: Path) -> tuple[str, ...]:
    return (sys.executable, str(package_root / "tests" / "mock_child.py"))


@pytest.fixture
def cli_env(package_root: Path) -> dict[str, str]:
    env = os.environ.copy()
    existing = env.get("PYTHONPATH", "")
    root = str(package_root / "src")
    env["PYTHONPATH"] = root if not existing else f"{root}:{existing}"
    return env


@pytest.fixture
def run_supervisor_cli(
    package_root: Path,
    cli_env: dict[str, str],
) -> Callable[..., CliResult]:
    def _run(args: list[str], *, stdin: bytes = b"", timeout: float = 30.0) -> CliResult:
        completed = subprocess.run(
            [sys.executable, "-m", "claude_supervisor", *args],
            cwd=package_root,
            env=cli_env,
            input=stdin,
            capture_output=True,
            check=False,
            timeout=timeout,
        )
        return CliResult(
            args=tuple(args),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr.decode("utf-8", errors="replace"),
        )

    return _run
