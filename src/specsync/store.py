"""JSON-file structured store for specs and GitHub sync records.

Two documents live under the meta directory:

- ``specs.json``: array of :class:`~specsync.models.Spec` objects
- ``github-sync.json``: array of :class:`~specsync.models.GitHubSyncRecord` objects

Every mutation rewrites the whole document through a temporary file and
``replace`` so a reader never observes a half-written file. Entries that
fail validation on load are skipped with a warning and written back untouched
on the next mutation; a document that is not a JSON array is a setup-level
failure and raises :class:`StoreError`.
"""

from __future__ import annotations

import json
import os
import uuid
from collections.abc import Callable, Iterable
from dataclasses import replace
from pathlib import Path
from typing import Any, TypeVar

from .errors import StoreError, SyncConflictError
from .logging import get_logger
from .models import EntityType, GitHubSyncRecord, Spec, SyncStatus, utc_now_iso

SPECS_FILE = "specs.json"
SYNC_FILE = "github-sync.json"

_IMMUTABLE_SPEC_FIELDS = frozenset({"id", "created_at"})
_IMMUTABLE_SYNC_FIELDS = frozenset({"id", "entity_type", "entity_id"})

R = TypeVar("R")


def _read_array(
    path: Path, factory: Callable[[dict[str, Any]], R], label: str
) -> tuple[list[R], list[Any]]:
    """Return ``(items, unreadable)``; ``unreadable`` holds the raw rows that failed validation."""
    if not path.exists():
        return [], []
    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8") or "[]")
    except (OSError, ValueError) as exc:
        raise StoreError(f"Failed to read {label} store {path}: {exc}") from exc
    if not isinstance(raw, list):
        raise StoreError(f"{label} store {path} is not a JSON array")
    items: list[R] = []
    unreadable: list[Any] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            get_logger().warning(f"skipping non-object {label} entry", path=str(path), index=index)
            unreadable.append(entry)
            continue
        try:
            items.append(factory(entry))
        except ValueError as exc:
            get_logger().warning(
                f"skipping invalid {label} entry", path=str(path), index=index, error=str(exc)
            )
            unreadable.append(entry)
    return items, unreadable


def _persist_array(path: Path, items: Iterable[Any], unreadable: Iterable[Any] = ()) -> None:
    # rows that failed validation are kept verbatim after the valid ones
    payload = [item.to_dict() for item in items]
    payload.extend(unreadable)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    tmp.replace(path)


class JsonStore:
    def __init__(self, meta_dir: str | os.PathLike[str]):
        self.meta_dir = Path(meta_dir)

    @property
    def specs_path(self) -> Path:
        return self.meta_dir / SPECS_FILE

    @property
    def sync_path(self) -> Path:
        return self.meta_dir / SYNC_FILE

    def _read_specs(self) -> tuple[list[Spec], list[Any]]:
        return _read_array(self.specs_path, Spec.from_dict, "spec")

    def _read_sync(self) -> tuple[list[GitHubSyncRecord], list[Any]]:
        return _read_array(self.sync_path, GitHubSyncRecord.from_dict, "github sync")

    # ---- specs --------------------------------------------------------
    def list_specs(self) -> list[Spec]:
        return self._read_specs()[0]

    def get_spec(self, spec_id: str) -> Spec | None:
        return next((s for s in self.list_specs() if s.id == spec_id), None)

    def find_spec_by_prefix(self, prefix: str) -> Spec | None:
        """Return the single spec whose id starts with ``prefix``; None if zero or ambiguous."""
        if not prefix:
            return None
        matches = [s for s in self.list_specs() if s.id.startswith(prefix)]
        return matches[0] if len(matches) == 1 else None

    def insert_spec(self, spec: Spec) -> Spec:
        specs, unreadable = self._read_specs()
        if any(s.id == spec.id for s in specs):
            raise SyncConflictError(f"specs.id={spec.id}")
        specs.append(spec)
        _persist_array(self.specs_path, specs, unreadable)
        return spec

    def update_spec(self, spec_id: str, **changes: Any) -> Spec:
        """Apply ``changes`` to one spec; ``updated_at`` is bumped unless supplied."""
        bad = _IMMUTABLE_SPEC_FIELDS.intersection(changes)
        if bad:
            raise ValueError(f"cannot change immutable spec field(s): {', '.join(sorted(bad))}")
        specs, unreadable = self._read_specs()
        for index, current in enumerate(specs):
            if current.id == spec_id:
                changes.setdefault("updated_at", utc_now_iso())
                updated = replace(current, **changes)
                specs[index] = updated
                _persist_array(self.specs_path, specs, unreadable)
                return updated
        raise StoreError(f"Spec not found: {spec_id}")

    # ---- github sync records -----------------------------------------
    def list_sync_records(
        self,
        entity_type: EntityType | None = None,
        sync_status: SyncStatus | None = None,
    ) -> list[GitHubSyncRecord]:
        records = self._read_sync()[0]
        return [
            r
            for r in records
            if (entity_type is None or r.entity_type == entity_type)
            and (sync_status is None or r.sync_status == sync_status)
        ]

    def get_sync_record(self, entity_type: EntityType, entity_id: str) -> GitHubSyncRecord | None:
        return next(
            (
                r
                for r in self.list_sync_records(entity_type=entity_type)
                if r.entity_id == entity_id
            ),
            None,
        )

    def insert_sync_record(self, record: GitHubSyncRecord) -> GitHubSyncRecord:
        records, unreadable = self._read_sync()
        for existing in records:
            if existing.id == record.id or (
                existing.entity_type == record.entity_type
                and existing.entity_id == record.entity_id
            ):
                raise SyncConflictError(
                    f"github_sync({record.entity_type}, {record.entity_id})"
                )
        records.append(record)
        _persist_array(self.sync_path, records, unreadable)
        return record

    def update_sync_record(self, record_id: str, **changes: Any) -> GitHubSyncRecord:
        bad = _IMMUTABLE_SYNC_FIELDS.intersection(changes)
        if bad:
            raise ValueError(f"cannot change immutable sync field(s): {', '.join(sorted(bad))}")
        records, unreadable = self._read_sync()
        for index, current in enumerate(records):
            if current.id == record_id:
                updated = replace(current, **changes)
                records[index] = updated
                _persist_array(self.sync_path, records, unreadable)
                return updated
        raise StoreError(f"Sync record not found: {record_id}")

    def delete_sync_record(self, record_id: str) -> bool:
        records, unreadable = self._read_sync()
        kept = [r for r in records if r.id != record_id]
        if len(kept) == len(records):
            return False
        _persist_array(self.sync_path, kept, unreadable)
        return True

    def save_sync_records(self, records: Iterable[GitHubSyncRecord]) -> None:
        """Replace the valid rows of the sync table (no uniqueness check)."""
        _persist_array(self.sync_path, list(records), self._read_sync()[1])


def new_record_id() -> str:
    return str(uuid.uuid4())


__all__ = ["JsonStore", "SPECS_FILE", "SYNC_FILE", "new_record_id"]
