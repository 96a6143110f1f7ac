"""Current-branch cache and protected-branch guard.

Reading the branch means shelling out to git, which is slow relative to
the operations it gates, so both the current branch and the protected
branch set are cached for ``ttl`` seconds. Each value carries its own
observation timestamp; an entry older than ``ttl`` is never served and
is re-read synchronously.

Failure policy:
 - not a repository -> the guard is a no-op and the current branch
   reads as ``main``
 - git call fails or times out while probing -> safe default, never raised
 - inside ``validate_branch`` a repository that exists but whose branch
   cannot be read raises ``BranchQueryError``

The cache is an explicit object so tests can inject a fake clock and a
fake runner. ``get_branch_cache()`` returns the process default instance.
Call ``invalidate()`` after switching branch out-of-band.
"""

from __future__ import annotations

import os
import shutil
import subprocess  # nosec B404 - subprocess is required for git invocation
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Protocol

from .errors import BranchQueryError, GitCommandError, ProtectedBranchViolation
from .logging import get_logger

DEFAULT_BRANCH = "main"
DEFAULT_TTL = 60.0
DEFAULT_GIT_TIMEOUT = 0.5
PROTECTED_ENV_VARS = ("SPECSYNC_PROTECTED_BRANCHES", "PROTECTED_BRANCHES")

_COMMON_SUGGESTIONS = ("feature/<feature-name>", "fix/<fix-scope>", "refactor/<refactor-scope>")
_PHASE_SUGGESTIONS = {
    "implementation": "feature/<feature-name>",
    "testing": "test/<test-scope>",
}


class GitRunnerProtocol(Protocol):
    def run(self, *args: str) -> str: ...  # pragma: no cover - structural only


class GitRunner:
    """Run git with a bounded wall-clock timeout."""

    def __init__(self, timeout: float = DEFAULT_GIT_TIMEOUT, cwd: str | None = None):
        self.timeout = timeout
        self.cwd = cwd
        self._git_path = shutil.which("git")

    def run(self, *args: str) -> str:
        cmd = [self._git_path or "git", *args]
        try:
            result = subprocess.run(  # nosec B603 - fixed git argv, no shell
                cmd,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitCommandError(args, f"timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise GitCommandError(args, str(exc)) from exc
        if result.returncode != 0:
            detail = (result.stderr or "").strip() or f"exit {result.returncode}"
            raise GitCommandError(args, detail)
        return result.stdout.strip()


@dataclass
class _Observation:
    value: tuple[str, ...] | str
    observed_at: float


def suggest_working_branch(phase: str | None = None) -> list[str]:
    """Recommended branch-name patterns, optionally specialised by spec phase."""
    suggestions: list[str] = []
    phase_hint = _PHASE_SUGGESTIONS.get(phase or "")
    if phase_hint:
        suggestions.append(phase_hint)
    suggestions.extend(_COMMON_SUGGESTIONS)
    return list(dict.fromkeys(suggestions))


def _split_branches(raw: str) -> list[str]:
    return list(dict.fromkeys(b.strip() for b in raw.split(",") if b.strip()))


class BranchCache:
    def __init__(
        self,
        runner: GitRunnerProtocol | None = None,
        *,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
        protected_branches: Iterable[str] | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self.runner: GitRunnerProtocol = runner or GitRunner()
        self.ttl = ttl
        self._clock = clock
        self._configured = list(protected_branches) if protected_branches is not None else None
        self._environ = environ if environ is not None else os.environ
        self._branch: _Observation | None = None
        self._protected: _Observation | None = None

    # --- cache bookkeeping ------------------------------------------------
    def _cached(self, obs: _Observation | None) -> tuple[str, ...] | str | None:
        """Value of ``obs`` while it is younger than ``ttl``; otherwise None."""
        if obs is None or self._clock() - obs.observed_at > self.ttl:
            return None
        return obs.value

    def invalidate(self) -> None:
        self._branch = None
        self._protected = None

    # --- repository probes ------------------------------------------------
    def is_repository(self) -> bool:
        try:
            self.runner.run("rev-parse", "--git-dir")
        except GitCommandError:
            return False
        return True

    def _read_branch(self) -> str:
        return self.runner.run("rev-parse", "--abbrev-ref", "HEAD")

    def get_current_branch(self, use_cache: bool = True) -> str:
        cached = self._cached(self._branch) if use_cache else None
        if cached is not None:
            return str(cached)
        try:
            branch = self._read_branch() or DEFAULT_BRANCH
        except GitCommandError as exc:
            get_logger().debug("current branch unavailable; using default", error=str(exc))
            branch = DEFAULT_BRANCH
        self._branch = _Observation(branch, self._clock())
        return branch

    def _detect_default_branch(self) -> str:
        if not self.is_repository():
            return DEFAULT_BRANCH
        try:
            ref = self.runner.run("symbolic-ref", "refs/remotes/origin/HEAD")
            name = ref.rsplit("/", 1)[-1].strip()
            if name:
                return name
        except GitCommandError:
            pass
        for candidate in ("main", "master"):
            try:
                self.runner.run("rev-parse", "--verify", "--quiet", candidate)
                return candidate
            except GitCommandError:
                continue
        return DEFAULT_BRANCH

    def get_protected_branches(self) -> list[str]:
        cached = self._cached(self._protected)
        if cached is not None:
            return list(cached)
        branches: list[str]
        if self._configured is not None:
            branches = list(dict.fromkeys(self._configured))
        else:
            env_value = next(
                (self._environ[name] for name in PROTECTED_ENV_VARS if self._environ.get(name)),
                None,
            )
            branches = _split_branches(env_value) if env_value else [self._detect_default_branch()]
        self._protected = _Observation(tuple(branches), self._clock())
        return branches

    def is_protected(self, branch: str) -> bool:
        return branch in self.get_protected_branches()

    # --- guard ------------------------------------------------------------
    def validate_branch(self, phase: str | None = None) -> None:
        """Raise ``ProtectedBranchViolation`` when HEAD is on a protected branch."""
        if not self.is_repository():
            return
        cached = self._cached(self._branch)
        if cached is not None:
            current = str(cached)
        else:
            try:
                current = self._read_branch()
            except GitCommandError as exc:
                raise BranchQueryError(f"Failed to read current branch: {exc.detail}") from exc
            self._branch = _Observation(current, self._clock())
        protected = self.get_protected_branches()
        if current in protected:
            raise ProtectedBranchViolation(current, protected, suggest_working_branch(phase))


_DEFAULT_CACHE: BranchCache | None = None


def get_branch_cache() -> BranchCache:
    global _DEFAULT_CACHE  # noqa: PLW0603
    if _DEFAULT_CACHE is None:
        _DEFAULT_CACHE = BranchCache()
    return _DEFAULT_CACHE


def set_branch_cache(cache: BranchCache | None) -> None:
    global _DEFAULT_CACHE  # noqa: PLW0603
    _DEFAULT_CACHE = cache


__all__ = [
    "BranchCache",
    "DEFAULT_BRANCH",
    "GitRunner",
    "GitRunnerProtocol",
    "get_branch_cache",
    "set_branch_cache",
    "suggest_working_branch",
]
