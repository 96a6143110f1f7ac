from __future__ import annotations

import os
from pathlib import Path

import pytest

from specsync.config import (
    default_config,
    load_config,
    load_environment,
    resolve_github_token,
)
from specsync.errors import ConfigError

FULL_CONFIG = """
version: 1
paths:
  specs_dir: docs/specs
  store_dir: var/meta
branch:
  protected: [main, release, main]
  integration: [main]
  cache_ttl: 30
  git_timeout: 2
  import_default: trunk
github:
  repo: acme/specs
  timeout: 10
environment:
  load_dotenv: false
logging:
  json_enabled: true
  level: DEBUG
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "specsync.config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_full_config(tmp_path: Path) -> None:
    cfg = load_config(_write(tmp_path, FULL_CONFIG))

    assert cfg.root == tmp_path
    assert cfg.specs_dir == tmp_path / "docs" / "specs"
    assert cfg.store_dir == tmp_path / "var" / "meta"
    assert cfg.protected_branches == ["main", "release"]
    assert cfg.integration_branches == ["main"]
    assert cfg.branch_cache_ttl == 30.0
    assert cfg.git_timeout == 2.0
    assert cfg.import_default_branch == "trunk"
    assert cfg.github_repo == "acme/specs"
    assert cfg.github_api_url == "https://api.github.com"
    assert cfg.github_timeout == 10.0
    assert cfg.env_load_dotenv is False
    assert cfg.logging_json_enabled is True
    assert cfg.logging_level == "DEBUG"
    assert cfg.source_file == tmp_path / "specsync.config.yaml"


def test_defaults(tmp_path: Path) -> None:
    cfg = default_config(tmp_path)
    assert cfg.specs_dir == tmp_path / ".specsync" / "specs"
    assert cfg.store_dir == tmp_path / ".specsync" / "meta"
    assert cfg.protected_branches is None
    assert cfg.integration_branches == ["main", "develop"]
    assert cfg.branch_cache_ttl == 60.0
    assert cfg.git_timeout == 0.5
    assert cfg.import_default_branch == "develop"
    assert cfg.github_repo is None


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.yaml")
    cfg = load_config(tmp_path / "nope.yaml", missing_ok=True)
    assert cfg.root == tmp_path
    assert cfg.source_file is None


@pytest.mark.parametrize(
    "text, message",
    [
        ("paths: [unclosed", "Invalid YAML"),
        ("- just\n- a list\n", "must be a mapping"),
        ("branch: nope\n", "'branch' must be a mapping"),
        ("branch:\n  cache_ttl: -1\n", "must be positive"),
        ("branch:\n  git_timeout: soon\n", "must be a number"),
        ("branch:\n  protected: 5\n", "list of branch names"),
    ],
)
def test_invalid_config(tmp_path: Path, text: str, message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        load_config(_write(tmp_path, text))


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SPECSYNC_PROTECTED_BRANCHES", "prod, main ,")
    monkeypatch.setenv("SPECSYNC_GITHUB_API", "https://ghe.example.com/api/v3")
    monkeypatch.setenv("SPECSYNC_GITHUB_REPO", "acme/from-env")
    monkeypatch.setenv("SPECSYNC_TEST_INTEGRATION", "trunk,next")
    cfg = load_config(
        _write(
            tmp_path,
            "branch:\n  protected: [main]\n  integration: $SPECSYNC_TEST_INTEGRATION\n"
            "github:\n  repo: $SPECSYNC_GITHUB_REPO\n",
        )
    )
    assert cfg.protected_branches == ["prod", "main"]
    assert cfg.integration_branches == ["trunk", "next"]
    assert cfg.github_api_url == "https://ghe.example.com/api/v3"
    assert cfg.github_repo == "acme/from-env"


def test_legacy_protected_env_var(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROTECTED_BRANCHES", "stable")
    assert default_config(tmp_path).protected_branches == ["stable"]


def test_load_environment_reads_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # register both names so monkeypatch restores them after load_dotenv writes os.environ
    for name in ("SPECSYNC_DOTENV_ONLY", "SPECSYNC_DOTENV_KEEP"):
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)
    monkeypatch.setenv("SPECSYNC_DOTENV_KEEP", "from-shell")
    (tmp_path / ".env").write_text(
        "SPECSYNC_DOTENV_ONLY=from-file\nSPECSYNC_DOTENV_KEEP=from-file\n", encoding="utf-8"
    )

    loaded = load_environment(default_config(tmp_path))

    assert loaded == tmp_path / ".env"
    assert os.environ["SPECSYNC_DOTENV_ONLY"] == "from-file"
    assert os.environ["SPECSYNC_DOTENV_KEEP"] == "from-shell"


def test_load_environment_disabled_or_absent(tmp_path: Path) -> None:
    assert load_environment(default_config(tmp_path)) is None
    cfg = load_config(_write(tmp_path, FULL_CONFIG))
    (tmp_path / ".env").write_text("X=1\n", encoding="utf-8")
    assert load_environment(cfg) is None


def test_resolve_github_token_order() -> None:
    assert resolve_github_token({"GITHUB_TOKEN": "b", "GH_TOKEN": "c"}) == "b"
    assert resolve_github_token({"SPECSYNC_GITHUB_TOKEN": "a", "GITHUB_TOKEN": "b"}) == "a"
    assert resolve_github_token({"GH_TOKEN": "c"}) == "c"
    assert resolve_github_token({"GITHUB_TOKEN": ""}) is None
