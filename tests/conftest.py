"""Pytest configuration for specsync tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`).
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    # Prepend so that 'python -m specsync.cli' finds local package first
    sys.path.insert(0, str(SRC))

# Subprocesses started by tests import the in-repo package through PYTHONPATH
py_path = os.environ.get("PYTHONPATH", "")
parts = [p for p in py_path.split(os.pathsep) if p]
if str(SRC) not in parts:
    parts.insert(0, str(SRC))
    os.environ["PYTHONPATH"] = os.pathsep.join(parts)

# Ensure pytest-asyncio plugin is loaded explicitly so @pytest.mark.asyncio tests run
pytest_plugins = ["pytest_asyncio"]

SPEC_A = "11111111-1111-4111-8111-111111111111"
SPEC_B = "22222222-2222-4222-9222-222222222222"
SPEC_C = "33333333-3333-4333-a333-333333333333"
SPEC_D = "44444444-4444-4444-b444-444444444444"


class FakeGit:
    """Scripted git runner; records every invocation."""

    def __init__(self, responses: dict[tuple[str, ...], str | Exception] | None = None):
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, ...]] = []

    def run(self, *args: str) -> str:
        from specsync.errors import GitCommandError

        self.calls.append(args)
        outcome = self.responses.get(args, GitCommandError(args, "not scripted"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def count(self, *args: str) -> int:
        return sum(1 for call in self.calls if call == args)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def write_spec_file(
    directory: Path,
    spec_id: str,
    *,
    title: str = "Example spec",
    phase: str | None = "design",
    created: str | None = "2025/11/19 10:47:58",
    updated: str | None = "2025/11/20 08:00:00",
) -> Path:
    lines = [f"# {title}", ""]
    if phase is not None:
        lines.append(f"**Phase:** {phase}")
    if created is not None:
        lines.append(f"**Created:** {created}")
    if updated is not None:
        lines.append(f"**Updated:** {updated}")
    lines += ["", "## Overview", "", "Body text."]
    path = directory / f"{spec_id}.md"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in (
        "SPECSYNC_PROTECTED_BRANCHES",
        "PROTECTED_BRANCHES",
        "SPECSYNC_GITHUB_TOKEN",
        "GITHUB_TOKEN",
        "GH_TOKEN",
        "SPECSYNC_GITHUB_API",
        "SPECSYNC_QUIET",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
    from specsync import branch_cache

    branch_cache.set_branch_cache(None)


@pytest.fixture
def specs_dir(tmp_path: Path) -> Path:
    path = tmp_path / "specs"
    path.mkdir()
    return path


@pytest.fixture
def store(tmp_path: Path):  # type: ignore[no-untyped-def]
    from specsync.store import JsonStore

    return JsonStore(tmp_path / "meta")
