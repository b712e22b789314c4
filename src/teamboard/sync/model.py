"""Records owned by the sync engine: mappings, the sync log, and user mappings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..task_engine.model import _enum, _known_fields, _serialize
from ..utils import _generate_id, _now_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SyncStatus(str, Enum):
    SYNCED = "SYNCED"
    PENDING = "PENDING"
    CONFLICT = "CONFLICT"
    ERROR = "ERROR"


class SyncDirection(str, Enum):
    PUSH = "PUSH"
    PULL = "PULL"


class SyncType(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    LINK = "LINK"
    UNLINK = "UNLINK"


class SyncLogStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CONFLICT = "CONFLICT"


class SyncTrigger(str, Enum):
    WEBHOOK = "WEBHOOK"
    MANUAL = "MANUAL"
    AUTO = "AUTO"


class ConflictResolution(str, Enum):
    KEEP_LOCAL = "KEEP_LOCAL"
    KEEP_EXTERNAL = "KEEP_EXTERNAL"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class ExternalMapping:
    """One-to-one link between a task and an issue in the team's repository.

    ``pending_external`` holds label-derived values (``workflow_status``/``priority``)
    deferred by a conflicting pull until the conflict is resolved.
    """

    task_id: str
    team_id: str
    issue_number: int
    issue_url: Optional[str] = None
    id: str = field(default_factory=lambda: _generate_id("map"))
    sync_status: SyncStatus = SyncStatus.SYNCED
    last_synced_at: Optional[str] = None
    local_updated_at: Optional[str] = None
    external_updated_at: Optional[str] = None
    pending_external: dict[str, Optional[str]] = field(default_factory=dict)
    created_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExternalMapping":
        d = _known_fields(cls, data)
        d["issue_number"] = int(d["issue_number"])
        d["sync_status"] = _enum(SyncStatus, d.get("sync_status"), SyncStatus.SYNCED)
        d["pending_external"] = dict(d.get("pending_external") or {})
        return cls(**d)


@dataclass
class SyncLogEntry:
    """Append-only audit record of one sync action."""

    task_id: Optional[str]
    direction: SyncDirection
    sync_type: SyncType
    team_id: Optional[str] = None
    issue_number: Optional[int] = None
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    status: SyncLogStatus = SyncLogStatus.SUCCESS
    trigger: SyncTrigger = SyncTrigger.MANUAL
    delivery_id: Optional[str] = None
    error_message: Optional[str] = None
    id: str = field(default_factory=lambda: _generate_id("log"))
    created_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncLogEntry":
        d = _known_fields(cls, data)
        d["direction"] = _enum(SyncDirection, d.get("direction"), SyncDirection.PULL)
        d["sync_type"] = _enum(SyncType, d.get("sync_type"), SyncType.UPDATE)
        d["status"] = _enum(SyncLogStatus, d.get("status"), SyncLogStatus.SUCCESS)
        d["trigger"] = _enum(SyncTrigger, d.get("trigger"), SyncTrigger.MANUAL)
        d.setdefault("task_id", None)
        return cls(**d)


@dataclass
class UserMapping:
    """Pairs a board member with their login on the issue tracker, per team."""

    team_id: str
    member_id: str
    github_username: str

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserMapping":
        return cls(**_known_fields(cls, data))


@dataclass
class BulkSyncResult:
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def record_failure(self, issue_or_task: Any, exc: Exception) -> None:
        self.failed += 1
        self.errors.append(f"#{issue_or_task}: {exc}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
        }
