from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import requests

from . import __version__
from .errors import (
    GitHubAPIError,
    GitHubConnectionError,
    GitHubForbiddenError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubServerError,
    GitHubUnauthorizedError,
    error_for_status,
    redact,
)
from .retry import RetryConfig, run_with_retries

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT = 30.0
USER_AGENT = f"specsync-rest/{__version__}"


def _decode(response: requests.Response) -> Any:
    if not response.text:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _retry_after(response: requests.Response) -> float | None:
    value = (response.headers.get("Retry-After") or "").strip()
    if not value.isdigit():
        return None
    seconds = float(value)
    return seconds if seconds > 0 else None


def _raise_for_status(method: str, url: str, response: requests.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    raise error_for_status(
        status,
        f"GitHub API {method} {url} failed with {status}",
        redact(response.text or ""),
        retry_after=_retry_after(response),
    )


@dataclass
class GitHubRestClient:
    """Issue lookups used by ghost-link cleanup.

    Every call carries ``timeout`` and goes through ``run_with_retries``;
    non-2xx answers surface as the typed errors from ``specsync.errors``, and a
    request that never got an answer as ``GitHubConnectionError``.
    """

    token: str
    repo: str
    base_url: str = DEFAULT_API_URL
    timeout: float = DEFAULT_TIMEOUT
    session: requests.Session | None = None
    retry: RetryConfig | None = None
    _http: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._http = self.session or requests.Session()
        defaults = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        }
        for name, value in defaults.items():
            self._http.headers.setdefault(name, value)

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _issue_path(self, number: int) -> str:
        return f"/repos/{self.repo}/issues/{number}"

    def _call(self, method: str, path: str) -> Any:
        url = self._url(path)

        def attempt() -> requests.Response:
            response = self._http.request(
                method, url, headers=self._http.headers, timeout=self.timeout
            )
            _raise_for_status(method, url, response)
            return response

        try:
            response = run_with_retries(attempt, cfg=self.retry)
        except requests.RequestException as exc:
            raise GitHubConnectionError(
                f"GitHub API {method} {url} failed: {redact(str(exc))}"
            ) from exc
        return _decode(response)

    # ---- issues ---------------------------------------------------------
    def get_issue(self, number: int) -> dict[str, Any]:
        """Fetch one issue; raises ``GitHubNotFoundError`` for 404 / 410."""
        issue = self._call("GET", self._issue_path(number))
        if not isinstance(issue, dict):
            raise GitHubAPIError(f"Unexpected payload for issue #{number}")
        return issue


__all__ = [
    "DEFAULT_API_URL",
    "GitHubAPIError",
    "GitHubConnectionError",
    "GitHubForbiddenError",
    "GitHubNotFoundError",
    "GitHubRateLimitError",
    "GitHubRestClient",
    "GitHubServerError",
    "GitHubUnauthorizedError",
]
