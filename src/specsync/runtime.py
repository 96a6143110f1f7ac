"""Runtime helpers for specsync CLI orchestration."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from specsync.branch_cache import BranchCache, GitRunner, set_branch_cache
from specsync.config import SyncConfig, load_config, load_environment, resolve_github_token
from specsync.errors import ConfigError
from specsync.github_rest import GitHubRestClient
from specsync.logging import configure_logging, get_logger
from specsync.store import JsonStore


class _HandlerCallable(Protocol):
    def __call__(self) -> Any: ...


def _default_loader(path: str) -> SyncConfig:
    return load_config(path, missing_ok=True)


def prepare_config(
    args: Any, *, loader: Callable[[str], SyncConfig] = _default_loader
) -> SyncConfig:
    """Load SyncConfig for the given argparse namespace and apply CLI overrides."""
    if not hasattr(args, "config"):
        raise AttributeError("Command namespace is missing 'config' attribute")
    cfg = loader(args.config)
    repo_override = getattr(args, "repo", None)
    if repo_override:
        cfg.github_repo = repo_override
    load_environment(cfg)
    level = "WARNING" if getattr(args, "quiet", False) else cfg.logging_level
    configure_logging(json_logging=cfg.logging_json_enabled, level=level)
    return cfg


def build_store(cfg: SyncConfig) -> JsonStore:
    return JsonStore(cfg.store_dir)


def build_branch_cache(cfg: SyncConfig) -> BranchCache:
    cache = BranchCache(
        GitRunner(timeout=cfg.git_timeout, cwd=str(cfg.root)),
        ttl=cfg.branch_cache_ttl,
        protected_branches=cfg.protected_branches,
    )
    set_branch_cache(cache)
    return cache


def build_github_client(cfg: SyncConfig) -> GitHubRestClient:
    token = resolve_github_token()
    if not token:
        raise ConfigError("GitHub token not found (set SPECSYNC_GITHUB_TOKEN or GITHUB_TOKEN)")
    if not cfg.github_repo:
        raise ConfigError("GitHub repository not configured (github.repo or --repo)")
    return GitHubRestClient(
        token=token,
        repo=cfg.github_repo,
        base_url=cfg.github_api_url,
        timeout=cfg.github_timeout,
    )


def ensure_specs_dir(cfg: SyncConfig) -> Path:
    if not cfg.specs_dir.is_dir():
        raise ConfigError(f"Specs directory not found: {cfg.specs_dir}")
    return cfg.specs_dir


def execute_command(handler: _HandlerCallable, args: Any, command: str) -> int:
    """Execute a command handler, logging its duration and exit code."""
    logger = get_logger()
    start = time.monotonic()
    try:
        result = handler()
        exit_code = int(result) if result is not None else 0
    except Exception as exc:
        logger.log_error(f"command {command} failed", error=str(exc), command=command)
        raise
    duration_ms = max(0.0, time.monotonic() - start) * 1000
    logger.log_performance(f"command_{command}", duration_ms, exit_code=exit_code)
    return exit_code


__all__ = [
    "build_branch_cache",
    "build_github_client",
    "build_store",
    "ensure_specs_dir",
    "execute_command",
    "prepare_config",
]
