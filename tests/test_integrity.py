from __future__ import annotations

from pathlib import Path

import pytest

from conftest import SPEC_A, SPEC_B, SPEC_C, SPEC_D, FakeClock, FakeGit, write_spec_file
from specsync.branch_cache import BranchCache
from specsync.integrity import (
    IntegrityChecker,
    compute_sync_rate,
    format_integrity_report,
)
from specsync.models import Spec
from specsync.store import JsonStore

HEAD = ("rev-parse", "--abbrev-ref", "HEAD")


def _checker(store: JsonStore, branch: str = "feature/current") -> IntegrityChecker:
    cache = BranchCache(FakeGit({HEAD: branch}), clock=FakeClock())
    return IntegrityChecker(store, cache)


def _record(spec_id: str, *, branch: str | None = "develop", **kw: str) -> Spec:
    return Spec(
        id=spec_id,
        name=kw.get("name", "Example spec"),
        phase=kw.get("phase", "design"),  # type: ignore[arg-type]
        branch_name=branch,
        created_at="2025-11-19T10:47:58",
        updated_at=kw.get("updated_at", "2025-11-20T08:00:00"),
    )


def test_store_only_on_visible_branch_is_suppressed(store: JsonStore, specs_dir: Path) -> None:
    write_spec_file(specs_dir, SPEC_A)
    write_spec_file(specs_dir, SPEC_B)
    store.insert_spec(_record(SPEC_A))
    store.insert_spec(_record(SPEC_C, branch="feature/current"))

    report = _checker(store).check(specs_dir)

    assert report.files_only == [SPEC_B]
    assert report.store_only == []
    assert report.synced == [SPEC_A]


def test_store_only_on_foreign_branch_is_reported(store: JsonStore, specs_dir: Path) -> None:
    write_spec_file(specs_dir, SPEC_A)
    write_spec_file(specs_dir, SPEC_B)
    store.insert_spec(_record(SPEC_A))
    store.insert_spec(_record(SPEC_C, branch="feature/someone-else"))

    report = _checker(store).check(specs_dir)

    assert report.files_only == [SPEC_B]
    assert report.store_only == [SPEC_C]
    assert not report.in_sync


@pytest.mark.parametrize("branch", [None, "main", "develop"])
def test_null_or_integration_branch_is_not_orphaned(
    store: JsonStore, specs_dir: Path, branch: str | None
) -> None:
    store.insert_spec(_record(SPEC_C, branch=branch))
    report = _checker(store).check(specs_dir)
    assert report.store_only == []
    assert report.total_store_records == 1


def test_custom_integration_branches(store: JsonStore, specs_dir: Path) -> None:
    store.insert_spec(_record(SPEC_C, branch="develop"))
    cache = BranchCache(FakeGit({HEAD: "feature/x"}), clock=FakeClock())
    report = IntegrityChecker(store, cache, integration_branches=["main"]).check(specs_dir)
    assert report.store_only == [SPEC_C]


def test_mismatch_lists_each_field(store: JsonStore, specs_dir: Path) -> None:
    write_spec_file(specs_dir, SPEC_A, title="File name", phase="tasks")
    store.insert_spec(
        _record(SPEC_A, name="Store name", phase="design", updated_at="2025-11-21T00:00:00")
    )

    report = _checker(store).check(specs_dir)

    assert [m.id for m in report.mismatch] == [SPEC_A]
    diffs = report.mismatch[0].differences
    assert diffs == [
        'Name mismatch: file="File name" store="Store name"',
        'Phase mismatch: file="tasks" store="design"',
        'Updated time mismatch: file="2025-11-20T08:00:00" store="2025-11-21T00:00:00"',
    ]


def test_subsecond_and_timezone_differences_are_ignored(
    store: JsonStore, specs_dir: Path
) -> None:
    write_spec_file(specs_dir, SPEC_A)
    store.insert_spec(_record(SPEC_A, updated_at="2025-11-20T08:00:00.987Z"))
    write_spec_file(specs_dir, SPEC_B)
    store.insert_spec(_record(SPEC_B, updated_at="2025-11-20T10:00:00+02:00"))

    report = _checker(store).check(specs_dir)

    assert report.synced == [SPEC_A, SPEC_B]
    assert report.mismatch == []


def test_parse_error_is_recorded_as_mismatch(store: JsonStore, specs_dir: Path) -> None:
    (specs_dir / f"{SPEC_A}.md").write_bytes(b"\xff\xfe\x00 not utf-8")
    store.insert_spec(_record(SPEC_A))

    report = _checker(store).check(specs_dir)

    assert report.mismatch[0].id == SPEC_A
    assert report.mismatch[0].differences[0].startswith("Parse error: ")


def test_sync_rate_seventy_five_percent(store: JsonStore, specs_dir: Path) -> None:
    for spec_id in (SPEC_A, SPEC_B, SPEC_C, SPEC_D):
        write_spec_file(specs_dir, spec_id)
        store.insert_spec(_record(spec_id))
    store.update_spec(SPEC_D, name="Drifted", updated_at="2025-11-20T08:00:00")

    report = _checker(store).check(specs_dir)

    assert len(report.synced) == 3
    assert len(report.mismatch) == 1
    assert report.sync_rate == 75


def test_empty_directory_has_zero_sync_rate(store: JsonStore, specs_dir: Path) -> None:
    report = _checker(store).check(specs_dir)
    assert report.total_files == 0
    assert report.sync_rate == 0
    assert report.in_sync


def test_compute_sync_rate_rounds_half_up() -> None:
    assert compute_sync_rate(1, 8) == 13
    assert compute_sync_rate(5, 8) == 63
    assert compute_sync_rate(0, 0) == 0


def test_report_dict_and_formatting(store: JsonStore, specs_dir: Path) -> None:
    write_spec_file(specs_dir, SPEC_B)
    report = _checker(store).check(specs_dir)
    data = report.to_dict()
    assert data["files_only"] == [SPEC_B]
    assert data["in_sync"] is False
    lines = format_integrity_report(report)
    assert lines[0].startswith("[check] files=1 store=0")
    assert any(SPEC_B in line and "files-only" in line for line in lines)
