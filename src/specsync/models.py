from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, cast

SpecPhase = Literal["requirements", "design", "tasks", "implementation", "testing", "completed"]
EntityType = Literal["spec", "task", "issue", "project", "sub_issue"]
SyncStatus = Literal["pending", "success", "failed"]

PHASES: tuple[SpecPhase, ...] = (
    "requirements",
    "design",
    "tasks",
    "implementation",
    "testing",
    "completed",
)
DEFAULT_PHASE: SpecPhase = "requirements"
ENTITY_TYPES: tuple[EntityType, ...] = ("spec", "task", "issue", "project", "sub_issue")
SYNC_STATUSES: tuple[SyncStatus, ...] = ("pending", "success", "failed")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def truncate_to_seconds(value: str) -> str:
    """Normalise a timestamp to ``YYYY-MM-DDTHH:MM:SS`` (UTC)."""
    return parse_timestamp(value).strftime("%Y-%m-%dT%H:%M:%S")


def is_phase(value: Any) -> bool:
    return isinstance(value, str) and value in PHASES


def _int_or_none(value: Any) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


@dataclass
class Spec:
    """A tracked feature specification as held by the structured store."""

    id: str
    name: str
    phase: SpecPhase
    description: str | None = None
    branch_name: str | None = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    github_issue_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Spec:
        spec_id = raw.get("id")
        name = raw.get("name")
        phase = raw.get("phase")
        if not isinstance(spec_id, str) or not spec_id:
            raise ValueError("spec record is missing 'id'")
        if not isinstance(name, str) or not name:
            raise ValueError(f"spec {spec_id} is missing 'name'")
        if not is_phase(phase):
            raise ValueError(f"spec {spec_id} has unknown phase {phase!r}")
        return cls(
            id=spec_id,
            name=name,
            phase=cast(SpecPhase, phase),
            description=raw.get("description") if isinstance(raw.get("description"), str) else None,
            branch_name=raw.get("branch_name") if isinstance(raw.get("branch_name"), str) else None,
            created_at=str(raw.get("created_at") or utc_now_iso()),
            updated_at=str(raw.get("updated_at") or utc_now_iso()),
            github_issue_id=_int_or_none(raw.get("github_issue_id")),
        )


@dataclass
class GitHubSyncRecord:
    """Link between one local entity and one remote GitHub object."""

    id: str
    entity_type: EntityType
    entity_id: str
    github_id: str
    github_number: int | None = None
    github_node_id: str | None = None
    last_synced_at: str = field(default_factory=utc_now_iso)
    sync_status: SyncStatus = "pending"
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> GitHubSyncRecord:
        record_id = raw.get("id")
        entity_type = raw.get("entity_type")
        entity_id = raw.get("entity_id")
        if not isinstance(record_id, str) or not record_id:
            raise ValueError("sync record is missing 'id'")
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"sync record {record_id} has unknown entity_type {entity_type!r}")
        if not isinstance(entity_id, str) or not entity_id:
            raise ValueError(f"sync record {record_id} is missing 'entity_id'")
        status = raw.get("sync_status", "pending")
        if status not in SYNC_STATUSES:
            raise ValueError(f"sync record {record_id} has unknown sync_status {status!r}")
        number = raw.get("github_number")
        node_id = raw.get("github_node_id")
        message = raw.get("error_message")
        return cls(
            id=record_id,
            entity_type=cast(EntityType, entity_type),
            entity_id=entity_id,
            github_id=str(raw.get("github_id") or ""),
            github_number=_int_or_none(number),
            github_node_id=node_id if isinstance(node_id, str) else None,
            last_synced_at=str(raw.get("last_synced_at") or utc_now_iso()),
            sync_status=cast(SyncStatus, status),
            error_message=message if isinstance(message, str) else None,
        )


@dataclass
class SpecMetadata:
    """Metadata extracted from a spec file."""

    id: str
    name: str
    phase: SpecPhase
    created_at: str
    updated_at: str


__all__ = [
    "DEFAULT_PHASE",
    "ENTITY_TYPES",
    "EntityType",
    "GitHubSyncRecord",
    "PHASES",
    "SYNC_STATUSES",
    "Spec",
    "SpecMetadata",
    "SpecPhase",
    "SyncStatus",
    "is_phase",
    "parse_timestamp",
    "truncate_to_seconds",
    "utc_now_iso",
]
