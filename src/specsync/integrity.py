"""Consistency check between spec files and the structured store.

Classifies every identifier into one of four buckets:

* ``files_only`` - a ``<id>.md`` file with no store record
* ``store_only`` - a store record with no file whose branch is outside
  the visible set (current branch plus integration branches); records with
  no branch, or on a visible branch, are work in flight elsewhere and are
  not reported
* ``mismatch``   - both exist but name / phase / updated time differ, or the
  file could not be parsed
* ``synced``     - both exist and agree

``sync_rate`` is the rounded percentage of files that are synced (0 when
there are no files).
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from .branch_cache import BranchCache, get_branch_cache
from .errors import redact
from .logging import get_logger
from .models import Spec, SpecMetadata, truncate_to_seconds
from .path_validator import SPEC_EXTENSION, resolve_spec_path
from .spec_parser import SpecFileParser
from .store import JsonStore

DEFAULT_INTEGRATION_BRANCHES = ("main", "develop")


@dataclass
class MismatchEntry:
    id: str
    differences: list[str]


@dataclass
class IntegrityReport:
    files_only: list[str] = field(default_factory=list)
    store_only: list[str] = field(default_factory=list)
    mismatch: list[MismatchEntry] = field(default_factory=list)
    synced: list[str] = field(default_factory=list)
    total_files: int = 0
    total_store_records: int = 0
    sync_rate: int = 0

    @property
    def in_sync(self) -> bool:
        return not (self.files_only or self.store_only or self.mismatch)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["in_sync"] = self.in_sync
        return data


def compute_sync_rate(synced: int, total: int) -> int:
    if total <= 0:
        return 0
    # half-up, not banker's rounding
    return int(100 * synced / total + 0.5)


def compare_metadata(metadata: SpecMetadata, record: Spec) -> list[str]:
    differences: list[str] = []
    if metadata.name != record.name:
        differences.append(f'Name mismatch: file="{metadata.name}" store="{record.name}"')
    if metadata.phase != record.phase:
        differences.append(f'Phase mismatch: file="{metadata.phase}" store="{record.phase}"')
    file_time = truncate_to_seconds(metadata.updated_at)
    store_time = truncate_to_seconds(record.updated_at)
    if file_time != store_time:
        differences.append(f'Updated time mismatch: file="{file_time}" store="{store_time}"')
    return differences


class IntegrityChecker:
    def __init__(
        self,
        store: JsonStore,
        branch_cache: BranchCache | None = None,
        parser: SpecFileParser | None = None,
        integration_branches: Iterable[str] = DEFAULT_INTEGRATION_BRANCHES,
    ):
        self.store = store
        self.branch_cache = branch_cache or get_branch_cache()
        self.parser = parser or SpecFileParser()
        self.integration_branches = tuple(integration_branches)
        self.logger = get_logger()

    def visible_branches(self) -> set[str]:
        return {self.branch_cache.get_current_branch(), *self.integration_branches}

    def check(self, specs_dir: str | os.PathLike[str]) -> IntegrityReport:
        directory = Path(specs_dir)
        file_ids = sorted(
            entry.name[: -len(SPEC_EXTENSION)]
            for entry in directory.iterdir()
            if entry.name.endswith(SPEC_EXTENSION) and entry.is_file()
        )
        records = {spec.id: spec for spec in self.store.list_specs()}
        file_set = set(file_ids)

        report = IntegrityReport(total_files=len(file_ids), total_store_records=len(records))
        report.files_only = [fid for fid in file_ids if fid not in records]

        visible = self.visible_branches()
        report.store_only = sorted(
            spec.id
            for spec in records.values()
            if spec.id not in file_set
            and spec.branch_name is not None
            and spec.branch_name not in visible
        )

        for fid in file_ids:
            record = records.get(fid)
            if record is None:
                continue
            try:
                metadata = self.parser.parse_file(resolve_spec_path(directory, fid))
                differences = compare_metadata(metadata, record)
            except Exception as exc:
                report.mismatch.append(
                    MismatchEntry(fid, [f"Parse error: {redact(str(exc)) or 'Unknown error'}"])
                )
                continue
            if differences:
                report.mismatch.append(MismatchEntry(fid, differences))
            else:
                report.synced.append(fid)

        report.sync_rate = compute_sync_rate(len(report.synced), report.total_files)
        self.logger.log_operation(
            "integrity_check",
            files_only=len(report.files_only),
            store_only=len(report.store_only),
            mismatched=len(report.mismatch),
            synced=len(report.synced),
            sync_rate=report.sync_rate,
        )
        return report


def format_integrity_report(report: IntegrityReport) -> list[str]:
    lines = [
        f"[check] files={report.total_files} store={report.total_store_records} "
        f"synced={len(report.synced)} sync_rate={report.sync_rate}%"
    ]
    if report.in_sync:
        lines.append("[check] No drift detected")
        return lines
    for fid in report.files_only:
        lines.append(f"  files-only  {fid} (not registered in store)")
    for sid in report.store_only:
        lines.append(f"  store-only  {sid} (spec file missing)")
    for entry in report.mismatch:
        lines.append(f"  mismatch    {entry.id}")
        for diff in entry.differences:
            lines.append(f"      - {diff}")
    return lines


__all__ = [
    "DEFAULT_INTEGRATION_BRANCHES",
    "IntegrityChecker",
    "IntegrityReport",
    "MismatchEntry",
    "compare_metadata",
    "compute_sync_rate",
    "format_integrity_report",
]
