"""Spec <-> GitHub issue link health.

Four routines over the structured store:

``GitHubSyncChecker.check``
    steady-state report: how many specs carry an issue link, which sync
    records are in ``failed`` state, and the link rate.
``reconcile_links`` / ``repair_links``
    cross-check ``Spec.github_issue_id`` against the ``spec`` sync records
    and classify disagreements (``missing-in-sync``, ``number-mismatch``,
    ``missing-in-spec``). Reconciliation never mutates; ``repair_links``
    does, treating the sync table as authoritative for issue numbers.
``cleanup_ghost_links``
    asks GitHub about every linked issue, one at a time, and clears links
    whose issue is gone (404 / 410). Each clearance is logged before the
    store is touched.
``deduplicate_sync_records``
    back-fills missing ``github_number`` values from numeric ``github_id``
    and collapses duplicate records for the same entity.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, Protocol

from .errors import GitHubAPIError, GitHubNotFoundError, redact
from .logging import get_logger
from .models import GitHubSyncRecord, Spec, parse_timestamp
from .store import JsonStore, new_record_id

UNKNOWN_SPEC_NAME = "Unknown"

LinkPattern = Literal["missing-in-sync", "number-mismatch", "missing-in-spec"]


class IssueReader(Protocol):
    def get_issue(self, number: int) -> dict[str, Any]: ...  # pragma: no cover - structural


def _rate(part: int, total: int) -> int:
    return int(100 * part / total + 0.5) if total > 0 else 0


def effective_number(record: GitHubSyncRecord) -> int | None:
    """Issue number of a sync record, falling back to a numeric ``github_id``."""
    if record.github_number is not None:
        return record.github_number
    if record.github_id.isdigit():
        return int(record.github_id)
    return None


def _sync_time(record: GitHubSyncRecord) -> datetime:
    try:
        return parse_timestamp(record.last_synced_at)
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)


# ---- steady-state check -------------------------------------------------
@dataclass
class SyncErrorEntry:
    spec_id: str
    spec_name: str
    error_message: str


@dataclass
class GitHubSyncReport:
    synced: int = 0
    not_synced: int = 0
    sync_errors: list[SyncErrorEntry] = field(default_factory=list)
    sync_rate: int = 0
    not_synced_spec_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class GitHubSyncChecker:
    def __init__(self, store: JsonStore):
        self.store = store

    def check(self) -> GitHubSyncReport:
        specs = self.store.list_specs()
        names = {spec.id: spec.name for spec in specs}
        linked = [s for s in specs if s.github_issue_id is not None]
        unlinked = [s for s in specs if s.github_issue_id is None]
        errors = [
            SyncErrorEntry(
                spec_id=record.entity_id,
                spec_name=names.get(record.entity_id, UNKNOWN_SPEC_NAME),
                error_message=redact(record.error_message or "Unknown error"),
            )
            for record in self.store.list_sync_records(entity_type="spec", sync_status="failed")
        ]
        report = GitHubSyncReport(
            synced=len(linked),
            not_synced=len(unlinked),
            sync_errors=errors,
            sync_rate=_rate(len(linked), len(specs)),
            not_synced_spec_ids=[s.id for s in unlinked],
        )
        get_logger().log_operation(
            "github_status",
            synced=report.synced,
            not_synced=report.not_synced,
            failed_records=len(errors),
            sync_rate=report.sync_rate,
        )
        return report


def format_github_sync_report(report: GitHubSyncReport) -> list[str]:
    lines = [
        f"[github-status] linked={report.synced} unlinked={report.not_synced} "
        f"rate={report.sync_rate}%"
    ]
    for spec_id in report.not_synced_spec_ids:
        lines.append(f"  unlinked  {spec_id}")
    for err in report.sync_errors:
        lines.append(f"  failed    {err.spec_id} ({err.spec_name}): {err.error_message}")
    return lines


# ---- link reconciliation --------------------------------------------------
@dataclass
class LinkInconsistency:
    pattern: LinkPattern
    spec_id: str
    spec_name: str
    spec_issue_number: int | None
    sync_issue_number: int | None
    sync_record_id: str | None = None

    def describe(self) -> str:
        return (
            f"{self.pattern}: {self.spec_id} ({self.spec_name}) "
            f"spec=#{self.spec_issue_number} sync=#{self.sync_issue_number}"
        )


@dataclass
class LinkReconciliationReport:
    checked_specs: int = 0
    checked_records: int = 0
    inconsistencies: list[LinkInconsistency] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.inconsistencies

    def by_pattern(self, pattern: LinkPattern) -> list[LinkInconsistency]:
        return [i for i in self.inconsistencies if i.pattern == pattern]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["consistent"] = self.consistent
        return data


def reconcile_links(store: JsonStore) -> LinkReconciliationReport:
    """Classify disagreements between spec links and spec sync records (read-only)."""
    specs = store.list_specs()
    records = store.list_sync_records(entity_type="spec")
    by_entity: dict[str, list[GitHubSyncRecord]] = defaultdict(list)
    for record in records:
        by_entity[record.entity_id].append(record)
    report = LinkReconciliationReport(checked_specs=len(specs), checked_records=len(records))

    for spec in specs:
        linked = by_entity.get(spec.id, [])
        current = max(linked, key=_sync_time) if linked else None
        sync_number = effective_number(current) if current else None
        record_id = current.id if current else None
        if spec.github_issue_id is not None and sync_number is None:
            # no record at all, or a record without a usable issue number
            report.inconsistencies.append(
                LinkInconsistency(
                    "missing-in-sync", spec.id, spec.name, spec.github_issue_id, None, record_id
                )
            )
        elif spec.github_issue_id is not None and spec.github_issue_id != sync_number:
            report.inconsistencies.append(
                LinkInconsistency(
                    "number-mismatch",
                    spec.id,
                    spec.name,
                    spec.github_issue_id,
                    sync_number,
                    record_id,
                )
            )
        elif spec.github_issue_id is None and sync_number is not None:
            report.inconsistencies.append(
                LinkInconsistency(
                    "missing-in-spec", spec.id, spec.name, None, sync_number, record_id
                )
            )

    known = {spec.id for spec in specs}
    for entity_id, linked in by_entity.items():
        if entity_id in known:
            continue
        current = max(linked, key=_sync_time)
        number = effective_number(current)
        if number is not None:
            report.inconsistencies.append(
                LinkInconsistency(
                    "missing-in-spec", entity_id, UNKNOWN_SPEC_NAME, None, number, current.id
                )
            )
    return report


@dataclass
class LinkRepairResult:
    repaired: list[LinkInconsistency] = field(default_factory=list)
    skipped: list[LinkInconsistency] = field(default_factory=list)
    dry_run: bool = False


def _record_spec_number(
    store: JsonStore, spec_id: str, number: int, record_id: str | None
) -> None:
    if record_id is not None:
        store.update_sync_record(record_id, github_number=number, sync_status="pending")
        return
    store.insert_sync_record(
        GitHubSyncRecord(
            id=new_record_id(),
            entity_type="spec",
            entity_id=spec_id,
            github_id=str(number),
            github_number=number,
            sync_status="pending",
        )
    )


def repair_links(
    store: JsonStore, report: LinkReconciliationReport, *, dry_run: bool = False
) -> LinkRepairResult:
    """Bring spec links and sync records back into agreement.

    - ``missing-in-sync``: record the spec's number as a ``pending`` sync record,
      on the existing record when it lacks a usable number
    - ``number-mismatch`` / ``missing-in-spec``: copy the sync number onto the spec

    Inconsistencies about specs that no longer exist are skipped.
    """
    logger = get_logger()
    result = LinkRepairResult(dry_run=dry_run)
    for item in report.inconsistencies:
        spec = store.get_spec(item.spec_id)
        if spec is None:
            result.skipped.append(item)
            continue
        if item.pattern == "missing-in-sync":
            number = item.spec_issue_number
            logger.log_link_action(
                "recorded", spec.id, number, reason=item.pattern, dry_run=dry_run
            )
            if not dry_run and number is not None:
                _record_spec_number(store, spec.id, number, item.sync_record_id)
        else:
            number = item.sync_issue_number
            logger.log_link_action(
                "relinked", spec.id, number, reason=item.pattern, dry_run=dry_run
            )
            if not dry_run:
                store.update_spec(spec.id, github_issue_id=number)
        result.repaired.append(item)
    return result


# ---- ghost link cleanup -----------------------------------------------------
@dataclass
class GhostLink:
    spec_id: str
    issue_number: int
    reason: str


@dataclass
class RemoteCheckFailure:
    spec_id: str
    issue_number: int
    error: str


@dataclass
class GhostCleanupResult:
    checked: int = 0
    cleared: list[GhostLink] = field(default_factory=list)
    failures: list[RemoteCheckFailure] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _linked_issue_numbers(store: JsonStore) -> list[tuple[Spec, int]]:
    out: list[tuple[Spec, int]] = []
    for spec in store.list_specs():
        number = spec.github_issue_id
        if number is None:
            record = store.get_sync_record("spec", spec.id)
            number = effective_number(record) if record else None
        if number is not None:
            out.append((spec, number))
    return out


def cleanup_ghost_links(
    store: JsonStore, client: IssueReader, *, dry_run: bool = False
) -> GhostCleanupResult:
    """Clear links to issues GitHub reports as deleted.

    Remote calls run sequentially. A not-found/gone answer clears
    ``Spec.github_issue_id`` and deletes the spec's sync records so the
    spec can be re-linked; any other remote error, unreachable GitHub
    included, is recorded for that spec and the scan continues.
    """
    logger = get_logger()
    result = GhostCleanupResult(dry_run=dry_run)
    for spec, number in _linked_issue_numbers(store):
        result.checked += 1
        try:
            client.get_issue(number)
        except GitHubNotFoundError as exc:
            reason = f"issue not found (HTTP {exc.status})" if exc.status else "issue not found"
            logger.log_link_action("cleared", spec.id, number, reason=reason, dry_run=dry_run)
            result.cleared.append(GhostLink(spec.id, number, reason))
            if not dry_run:
                if spec.github_issue_id is not None:
                    store.update_spec(spec.id, github_issue_id=None)
                for record in store.list_sync_records(entity_type="spec"):
                    if record.entity_id == spec.id:
                        store.delete_sync_record(record.id)
        except GitHubAPIError as exc:
            logger.log_error(
                "remote issue check failed", error=redact(str(exc)), spec_id=spec.id
            )
            result.failures.append(RemoteCheckFailure(spec.id, number, redact(str(exc))))
    logger.log_operation(
        "ghost_cleanup",
        checked=result.checked,
        cleared=len(result.cleared),
        remote_failures=len(result.failures),
        dry_run=dry_run,
    )
    return result


# ---- duplicate sync records ---------------------------------------------------
@dataclass
class DeduplicationResult:
    backfilled: list[str] = field(default_factory=list)
    kept: list[GitHubSyncRecord] = field(default_factory=list)
    removed: list[GitHubSyncRecord] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _choose_survivor(records: list[GitHubSyncRecord]) -> GitHubSyncRecord:
    ordered = sorted(records, key=_sync_time)
    valid = [r for r in ordered if r.github_number is not None]
    # newest record with a number; otherwise the oldest record
    return valid[-1] if valid else ordered[0]


def deduplicate_sync_records(store: JsonStore, *, dry_run: bool = False) -> DeduplicationResult:
    """Back-fill numbers, then keep one record per ``(entity_type, entity_id)``."""
    logger = get_logger()
    result = DeduplicationResult(dry_run=dry_run)
    records = store.list_sync_records()

    for index, record in enumerate(records):
        if record.github_number is None and record.github_id.isdigit():
            number = int(record.github_id)
            logger.log_link_action(
                "backfilled",
                record.entity_id,
                number,
                reason="github_number from github_id",
                dry_run=dry_run,
            )
            result.backfilled.append(record.id)
            # last_synced_at is left as is; survivors are ranked on it below
            records[index] = replace(record, github_number=number)
            if not dry_run:
                store.update_sync_record(record.id, github_number=number)

    groups: dict[tuple[str, str], list[GitHubSyncRecord]] = defaultdict(list)
    for record in records:
        groups[(record.entity_type, record.entity_id)].append(record)

    for (entity_type, entity_id), group in groups.items():
        if len(group) < 2:
            continue
        survivor = _choose_survivor(group)
        result.kept.append(survivor)
        for record in group:
            if record.id == survivor.id:
                continue
            logger.log_link_action(
                "deleted",
                entity_id,
                record.github_number,
                reason=f"duplicate {entity_type} sync record; kept #{survivor.github_number}",
                dry_run=dry_run,
            )
            result.removed.append(record)
            if not dry_run:
                store.delete_sync_record(record.id)
    logger.log_operation(
        "dedupe_sync_records",
        backfilled=len(result.backfilled),
        removed=len(result.removed),
        dry_run=dry_run,
    )
    return result


__all__ = [
    "DeduplicationResult",
    "GhostCleanupResult",
    "GhostLink",
    "GitHubSyncChecker",
    "GitHubSyncReport",
    "IssueReader",
    "LinkInconsistency",
    "LinkReconciliationReport",
    "LinkRepairResult",
    "RemoteCheckFailure",
    "SyncErrorEntry",
    "cleanup_ghost_links",
    "deduplicate_sync_records",
    "effective_number",
    "format_github_sync_report",
    "reconcile_links",
    "repair_links",
]
