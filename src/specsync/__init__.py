"""specsync - keep spec files, the spec store and GitHub issue links consistent.

High-level public API:

from specsync import JsonStore, SyncService, IntegrityChecker

store = JsonStore('.specsync/meta')
result = asyncio.run(SyncService(store).import_from_directory('.specsync/specs'))
report = IntegrityChecker(store).check('.specsync/specs')
print(report.sync_rate)

The CLI (``specsync``) is a thin layer over these objects.
"""

from __future__ import annotations

from importlib import import_module

# Version constant (sync manually with pyproject)
__version__ = "0.3.0"

_LAZY_ATTRS = {
    "BranchCache": "specsync.branch_cache",
    "GitHubRestClient": "specsync.github_rest",
    "GitHubSyncChecker": "specsync.github_sync",
    "IntegrityChecker": "specsync.integrity",
    "IntegrityReport": "specsync.integrity",
    "JsonStore": "specsync.store",
    "SpecFileParser": "specsync.spec_parser",
    "SyncConfig": "specsync.config",
    "SyncResult": "specsync.sync_service",
    "SyncService": "specsync.sync_service",
    "load_config": "specsync.config",
}


def __getattr__(name: str) -> object:
    """Lazy loading of the public classes to keep ``import specsync`` cheap."""
    module_name = _LAZY_ATTRS.get(name)
    if module_name is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    return getattr(import_module(module_name), name)


__all__ = [*sorted(_LAZY_ATTRS), "__version__"]
