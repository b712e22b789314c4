"""Task model for the team board.

Defines the task record, its assignee/verifier role rows, and the minimal
team directory records (teams, members, columns, prefix rules) the lifecycle
and sync engines need.  Every record serializes to a plain dict for the YAML
store.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Optional, TypeVar

from ..utils import _generate_id, _now_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class WorkflowStatus(str, Enum):
    """Consensus-driven lifecycle status of a task."""

    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    DONE = "DONE"
    REJECTED = "REJECTED"
    DECLINED = "DECLINED"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.DONE, WorkflowStatus.DECLINED)


class Priority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

E = TypeVar("E", bound=Enum)


def _enum(enum_cls: type[E], raw: Any, default: Optional[E]) -> Optional[E]:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw).upper())
    except ValueError:
        return default


def _serialize(record: Any) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for k, v in asdict(record).items():
        data[k] = v.value if isinstance(v, Enum) else v
    return data


def _known_fields(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


# ---------------------------------------------------------------------------
# Task and role rows
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A card on a team board whose status is driven by member consensus."""

    id: str = field(default_factory=lambda: _generate_id("task"))
    team_id: str = ""
    title: str = ""
    description: str = ""
    workflow_status: WorkflowStatus = WorkflowStatus.WAITING
    priority: Optional[Priority] = None
    column_id: Optional[str] = None
    due_date: Optional[str] = None  # YYYY-MM-DD
    rejection_reason: Optional[str] = None
    rejected_by: Optional[str] = None
    created_by: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def touch(self) -> None:
        self.updated_at = _now_iso()

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        d = _known_fields(cls, data)
        d["workflow_status"] = _enum(WorkflowStatus, d.get("workflow_status"), WorkflowStatus.WAITING)
        d["priority"] = _enum(Priority, d.get("priority"), None)
        return cls(**d)


@dataclass
class Assignee:
    task_id: str
    member_id: str
    accepted: bool = False
    completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Assignee":
        d = _known_fields(cls, data)
        return cls(
            task_id=str(d["task_id"]),
            member_id=str(d["member_id"]),
            accepted=bool(d.get("accepted", False)),
            completed=bool(d.get("completed", False)),
        )


@dataclass
class Verifier:
    task_id: str
    member_id: str
    approved: bool = False
    rejection_reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Verifier":
        d = _known_fields(cls, data)
        return cls(
            task_id=str(d["task_id"]),
            member_id=str(d["member_id"]),
            approved=bool(d.get("approved", False)),
            rejection_reason=d.get("rejection_reason"),
        )


# ---------------------------------------------------------------------------
# Directory records
# ---------------------------------------------------------------------------

@dataclass
class Team:
    id: str = field(default_factory=lambda: _generate_id("team"))
    name: str = ""
    leader_id: Optional[str] = None
    repo_url: Optional[str] = None
    issue_sync_enabled: bool = False
    default_column_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Team":
        return cls(**_known_fields(cls, data))


@dataclass
class Member:
    """A board user. ``github_token`` is the credential used for pushes."""

    id: str
    name: str = ""
    github_token: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Member":
        return cls(**_known_fields(cls, data))


@dataclass
class Column:
    id: str = field(default_factory=lambda: _generate_id("col"))
    team_id: str = ""
    title: str = ""
    position: int = 0

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Column":
        d = _known_fields(cls, data)
        d["position"] = int(d.get("position", 0) or 0)
        return cls(**d)


@dataclass
class ColumnPrefixRule:
    """Routes issues whose title starts with ``prefix`` (e.g. ``[Bug]``) to a column."""

    column_id: str
    team_id: str
    prefix: str

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ColumnPrefixRule":
        return cls(**_known_fields(cls, data))
