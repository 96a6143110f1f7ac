"""Import spec files into the structured store.

Parsing fans out over a bounded thread pool (one failing file never
cancels the others); the store upserts that follow run strictly one at a
time in sorted filename order, so the existing-vs-new decision for each id
is race-free without store-level locking. Individual upserts are not
rolled back when a later one fails.
"""

from __future__ import annotations

import asyncio
import functools
import os
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from .errors import SyncConflictError, redact
from .integrity import IntegrityChecker, IntegrityReport
from .logging import get_logger
from .models import Spec, SpecMetadata, truncate_to_seconds
from .path_validator import SPEC_EXTENSION, resolve_spec_path
from .spec_parser import SpecFileParser
from .store import JsonStore

DEFAULT_IMPORT_BRANCH = "develop"
DEFAULT_MAX_CONCURRENCY = 8


@dataclass
class ImportFailure:
    file: str
    error: str


@dataclass
class SyncResult:
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[ImportFailure] = field(default_factory=list)

    def record_failure(self, file: str, exc: BaseException | str) -> None:
        self.failed += 1
        self.errors.append(ImportFailure(file=file, error=redact(str(exc)) or "Unknown error"))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _unchanged(existing: Spec, metadata: SpecMetadata) -> bool:
    return (
        existing.name == metadata.name
        and existing.phase == metadata.phase
        and truncate_to_seconds(existing.updated_at) == truncate_to_seconds(metadata.updated_at)
    )


class SyncService:
    def __init__(
        self,
        store: JsonStore,
        parser: SpecFileParser | None = None,
        *,
        default_branch: str | None = DEFAULT_IMPORT_BRANCH,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.store = store
        self.parser = parser or SpecFileParser()
        self.default_branch = default_branch
        self.max_concurrency = max(1, max_concurrency)
        self.logger = get_logger()

    async def import_from_directory(self, specs_dir: str | os.PathLike[str]) -> SyncResult:
        """Parse every ``*.md`` under ``specs_dir`` and upsert the results.

        Raises ``OSError`` when the directory itself cannot be listed.
        """
        directory = Path(specs_dir)
        files = sorted(
            entry.name
            for entry in directory.iterdir()
            if entry.name.endswith(SPEC_EXTENSION) and entry.is_file()
        )
        result = SyncResult()
        with self.logger.timed_operation("import_directory", specs_dir=str(directory)):
            parsed = await self._parse_all([directory / name for name in files])
            ready: list[tuple[str, SpecMetadata]] = []
            for name, outcome in zip(files, parsed):
                if isinstance(outcome, BaseException):
                    result.record_failure(name, outcome)
                else:
                    ready.append((name, outcome))
            for name, metadata in ready:
                self._apply(result, name, metadata)
        self._log_summary("import_directory", result)
        return result

    async def import_from_files(
        self, ids: Iterable[str], specs_dir: str | os.PathLike[str]
    ) -> SyncResult:
        """Import only the given ids; every id goes through the path validator."""
        result = SyncResult()
        loop = asyncio.get_running_loop()
        for spec_id in ids:
            name = f"{spec_id}{SPEC_EXTENSION}"
            try:
                path = resolve_spec_path(specs_dir, spec_id)
                metadata = await loop.run_in_executor(None, self.parser.parse_file, path)
            except Exception as exc:
                result.record_failure(name, exc)
                continue
            self._apply(result, name, metadata)
        self._log_summary("import_files", result)
        return result

    def export_to_files(self, ids: Iterable[str], specs_dir: str | os.PathLike[str]) -> None:
        raise NotImplementedError("export_to_files is not implemented")

    # ---- internals ----------------------------------------------------
    async def _parse_all(self, paths: list[Path]) -> list[SpecMetadata | BaseException]:
        if not paths:
            return []
        loop = asyncio.get_running_loop()
        with ThreadPoolExecutor(max_workers=self.max_concurrency) as executor:
            tasks = [
                loop.run_in_executor(executor, functools.partial(self.parser.parse_file, p))
                for p in paths
            ]
            return list(await asyncio.gather(*tasks, return_exceptions=True))

    def _apply(self, result: SyncResult, name: str, metadata: SpecMetadata) -> None:
        try:
            outcome = self._upsert(metadata)
        except SyncConflictError:
            result.skipped += 1
            return
        except Exception as exc:
            result.record_failure(name, exc)
            return
        if outcome == "unchanged":
            result.skipped += 1
        else:
            result.imported += 1

    def _upsert(self, metadata: SpecMetadata) -> str:
        existing = self.store.get_spec(metadata.id)
        if existing is not None:
            if _unchanged(existing, metadata):
                return "unchanged"
            self.store.update_spec(
                metadata.id,
                name=metadata.name,
                phase=metadata.phase,
                updated_at=metadata.updated_at,
            )
            return "updated"
        self.store.insert_spec(
            Spec(
                id=metadata.id,
                name=metadata.name,
                phase=metadata.phase,
                description=None,
                branch_name=self.default_branch,
                created_at=metadata.created_at,
                updated_at=metadata.updated_at,
            )
        )
        return "inserted"

    def _log_summary(self, operation: str, result: SyncResult) -> None:
        self.logger.log_operation(
            operation,
            imported=result.imported,
            skipped=result.skipped,
            failed=result.failed,
        )
        for failure in result.errors:
            self.logger.warning("spec import failed", file=failure.file, error=failure.error)


@dataclass
class RepairOutcome:
    before: IntegrityReport
    files_only: SyncResult
    mismatched: SyncResult
    after: IntegrityReport


async def repair_from_files(
    service: SyncService, checker: IntegrityChecker, specs_dir: str | os.PathLike[str]
) -> RepairOutcome:
    """Check, re-import files-only and mismatched ids from their files, check again."""
    before = checker.check(specs_dir)
    files_only = await service.import_from_files(before.files_only, specs_dir)
    mismatched = await service.import_from_files([m.id for m in before.mismatch], specs_dir)
    after = checker.check(specs_dir)
    return RepairOutcome(before, files_only, mismatched, after)


__all__ = [
    "DEFAULT_IMPORT_BRANCH",
    "ImportFailure",
    "RepairOutcome",
    "SyncResult",
    "SyncService",
    "repair_from_files",
]
