"""Centralized retry / backoff helpers.

Provides a single small function ``run_with_retries`` that encapsulates
exponential backoff with jitter for transient GitHub failures (rate limit,
secondary rate limits, 5xx responses, dropped connections). A server-sent
``Retry-After`` header wins over both the body hints and the computed backoff.

Environment overrides:
  SPECSYNC_RETRY_ATTEMPTS (default 3)
  SPECSYNC_RETRY_BASE (seconds base, default 0.5)
  SPECSYNC_RETRY_MAX_SLEEP (cap on any single sleep, unset = no cap)

The caller supplies a thunk returning the desired result or raising. Only
errors classified as transient trigger a retry; everything else (404,
401, plain 403, local errors) propagates immediately.
"""

from __future__ import annotations

import os
import random
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import requests

from .errors import GitHubAPIError, classify_error
from .logging import get_logger

T = TypeVar("T")

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from error output.

    Supports patterns like:
      Retry-After: 12
      retry after 12
      wait 30 seconds
    Returns None if no valid positive value found.
    """
    if not text:
        return None
    for pattern in (_RE_RETRY_AFTER, _RE_SECONDS_HINT):
        m = pattern.search(text)
        if m:
            val = float(m.group(1))
            return val if val > 0 else None
    return None


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


@dataclass
class RetryConfig:
    attempts: int = field(default_factory=lambda: int(_env_float("SPECSYNC_RETRY_ATTEMPTS", 3)))
    base_sleep: float = field(default_factory=lambda: _env_float("SPECSYNC_RETRY_BASE", 0.5))
    max_sleep: float | None = field(
        default_factory=lambda: (
            _env_float("SPECSYNC_RETRY_MAX_SLEEP", -1.0)
            if os.environ.get("SPECSYNC_RETRY_MAX_SLEEP")
            else None
        )
    )


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    return classify_error(exc).transient


def _compute_sleep(attempt: int, cfg: RetryConfig, exc: BaseException) -> float:
    explicit = exc.retry_after if isinstance(exc, GitHubAPIError) else None
    if explicit is None:
        text = exc.response_text if isinstance(exc, GitHubAPIError) else None
        explicit = _extract_explicit_backoff(text or str(exc))
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    if cfg.max_sleep is not None and cfg.max_sleep >= 0:
        sleep_for = min(sleep_for, cfg.max_sleep)
    return sleep_for


def run_with_retries(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if attempt >= attempts or not is_transient(exc):
                raise
            sleep_for = _compute_sleep(attempt, cfg, exc)
            get_logger().warning(
                f"[retry] transient error, attempt {attempt}/{attempts}, sleeping {sleep_for:.2f}s",
                error=str(exc),
            )
            sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "is_transient", "run_with_retries"]
