from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml
from dotenv import load_dotenv

from .errors import ConfigError
from .logging import get_logger

CONFIG_FILENAME = 'specsync.config.yaml'
DEFAULT_SPECS_DIR = '.specsync/specs'
DEFAULT_STORE_DIR = '.specsync/meta'
DEFAULT_INTEGRATION_BRANCHES = ['main', 'develop']
TOKEN_ENV_VARS = ('SPECSYNC_GITHUB_TOKEN', 'GITHUB_TOKEN', 'GH_TOKEN')
PROTECTED_ENV_VARS = ('SPECSYNC_PROTECTED_BRANCHES', 'PROTECTED_BRANCHES')


@dataclass
class SyncConfig:
    version: int
    root: Path
    specs_dir: Path
    store_dir: Path
    # Branch guard / visibility
    protected_branches: list[str] | None
    integration_branches: list[str]
    branch_cache_ttl: float
    git_timeout: float
    import_default_branch: str | None
    # GitHub
    github_repo: str | None
    github_api_url: str
    github_timeout: float
    # Environment
    env_load_dotenv: bool
    env_dotenv_path: str | None
    # Logging
    logging_json_enabled: bool
    logging_level: str
    source_file: Path | None = None


def _resolve_env_var(value: Any, env_var_name: str | None = None) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        env_name = env_var_name or value[1:]  # Remove $ prefix
        return os.getenv(env_name, value)  # Fallback to original if not found
    return value


def _split_csv(value: str) -> list[str]:
    return list(dict.fromkeys(part.strip() for part in value.split(',') if part.strip()))


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {}) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return cast(dict[str, Any], value)


def _branch_list(value: Any, key: str) -> list[str] | None:
    value = _resolve_env_var(value)
    if value is None:
        return None
    if isinstance(value, str):
        return _split_csv(value)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(dict.fromkeys(value))
    raise ConfigError(f"'{key}' must be a list of branch names")


def _number(value: Any, key: str, default: float) -> float:
    if value is None:
        return default
    try:
        number = float(_resolve_env_var(value))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{key}' must be a number") from exc
    if number <= 0:
        raise ConfigError(f"'{key}' must be positive")
    return number


def _build(raw: dict[str, Any], root: Path, source: Path | None) -> SyncConfig:
    paths = _section(raw, 'paths')
    branch = _section(raw, 'branch')
    gh = _section(raw, 'github')
    env = _section(raw, 'environment')
    logging_config = _section(raw, 'logging')

    protected = _branch_list(branch.get('protected'), 'branch.protected')
    for name in PROTECTED_ENV_VARS:
        if os.environ.get(name):
            protected = _split_csv(os.environ[name])
            break

    integration = _branch_list(branch.get('integration'), 'branch.integration')
    import_default = _resolve_env_var(branch.get('import_default', 'develop'))

    return SyncConfig(
        version=int(raw.get('version', 1)),
        root=root,
        specs_dir=root / str(_resolve_env_var(paths.get('specs_dir', DEFAULT_SPECS_DIR))),
        store_dir=root / str(_resolve_env_var(paths.get('store_dir', DEFAULT_STORE_DIR))),
        protected_branches=protected,
        integration_branches=(
            integration if integration is not None else list(DEFAULT_INTEGRATION_BRANCHES)
        ),
        branch_cache_ttl=_number(branch.get('cache_ttl'), 'branch.cache_ttl', 60.0),
        git_timeout=_number(branch.get('git_timeout'), 'branch.git_timeout', 0.5),
        import_default_branch=import_default if isinstance(import_default, str) else None,
        github_repo=_resolve_env_var(gh.get('repo'), 'SPECSYNC_GITHUB_REPO'),
        github_api_url=os.environ.get('SPECSYNC_GITHUB_API')
        or str(gh.get('api_url', 'https://api.github.com')),
        github_timeout=_number(gh.get('timeout'), 'github.timeout', 30.0),
        env_load_dotenv=bool(env.get('load_dotenv', True)),
        env_dotenv_path=env.get('dotenv_path'),
        logging_json_enabled=bool(logging_config.get('json_enabled', False)),
        logging_level=str(logging_config.get('level', 'INFO')),
        source_file=source,
    )


def default_config(root: str | Path | None = None) -> SyncConfig:
    return _build({}, Path(root or Path.cwd()), None)


def load_config(path: str | Path, *, missing_ok: bool = False) -> SyncConfig:
    p = Path(path)
    if not p.exists():
        if missing_ok:
            return default_config(p.parent)
        raise ConfigError(f'Configuration file not found: {p}')
    try:
        raw = yaml.safe_load(p.read_text(encoding='utf-8')) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f'Invalid YAML in {p}: {exc}') from exc
    if not isinstance(raw, dict):
        raise ConfigError(f'Configuration root must be a mapping: {p}')
    return _build(cast(dict[str, Any], raw), p.parent, p)


def load_environment(cfg: SyncConfig) -> Path | None:
    """Load a ``.env`` file into ``os.environ`` (existing variables win)."""
    if not cfg.env_load_dotenv:
        return None
    candidates = (
        [cfg.root / cfg.env_dotenv_path]
        if cfg.env_dotenv_path
        else [cfg.root / '.env', cfg.root / '.env.local']
    )
    for candidate in candidates:
        if candidate.is_file():
            load_dotenv(candidate, override=False)
            get_logger().debug('Loaded environment variables', dotenv=str(candidate))
            return candidate
    return None


def resolve_github_token(environ: Mapping[str, str] | None = None) -> str | None:
    env = os.environ if environ is None else environ
    for name in TOKEN_ENV_VARS:
        value = env.get(name)
        if value:
            return value
    return None


__all__ = [
    'CONFIG_FILENAME',
    'SyncConfig',
    'default_config',
    'load_config',
    'load_environment',
    'resolve_github_token',
]
