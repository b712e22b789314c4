"""File-based board store with cross-process locking.

Stores every board collection (teams, members, columns, tasks, role rows,
external mappings, user mappings, and the sync log) in a single YAML file
(``board.yaml``) inside the ``.teamboard/`` directory.  All reads and writes go
through :meth:`BoardStore.transaction`, which holds an exclusive file lock so
that a read-check-write sequence (consensus check then transition, duplicate
delivery check then apply) is atomic across threads and worker processes.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TypeVar

from filelock import FileLock

from ..constants import LOCK_FILE, LOCK_TIMEOUT_SECONDS, STORE_FILE, STORE_VERSION
from ..errors import DuplicateMapping, NotFound
from ..io_utils import _atomic_write_yaml, _load_data_with_error
from ..sync.model import ExternalMapping, SyncLogEntry, SyncStatus, UserMapping
from . import consensus
from .model import Assignee, Column, ColumnPrefixRule, Member, Task, Team, Verifier

T = TypeVar("T")

# collection name -> record class
_COLLECTIONS: dict[str, Any] = {
    "teams": Team,
    "members": Member,
    "columns": Column,
    "prefix_rules": ColumnPrefixRule,
    "tasks": Task,
    "assignees": Assignee,
    "verifiers": Verifier,
    "mappings": ExternalMapping,
    "user_mappings": UserMapping,
    "sync_log": SyncLogEntry,
}


def normalize_repo_url(url: Optional[str]) -> str:
    """Strip a trailing ``/`` and ``.git`` so clone and browse URLs compare equal."""
    value = (url or "").strip()
    if value.endswith("/"):
        value = value[:-1]
    if value.endswith(".git"):
        value = value[:-4]
    return value.lower()


# ---------------------------------------------------------------------------
# BoardStore
# ---------------------------------------------------------------------------

class BoardStore:
    """Thread- and process-safe, file-backed store for board records.

    Parameters
    ----------
    state_dir:
        Path to the ``.teamboard/`` directory.
    """

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir
        self._store_path = state_dir / STORE_FILE
        self._file_lock = FileLock(str(state_dir / LOCK_FILE), timeout=LOCK_TIMEOUT_SECONDS)
        self._lock = threading.RLock()

    def _load(self) -> dict[str, list[Any]]:
        data, err = _load_data_with_error(self._store_path, {})
        if err:
            raise RuntimeError(f"Refusing to use unreadable board store: {err}")
        state: dict[str, list[Any]] = {}
        for name, record_cls in _COLLECTIONS.items():
            raw = data.get(name)
            items = raw if isinstance(raw, list) else []
            state[name] = [record_cls.from_dict(item) for item in items if isinstance(item, dict)]
        return state

    def _save(self, state: dict[str, list[Any]]) -> None:
        payload: dict[str, Any] = {"version": STORE_VERSION}
        for name in _COLLECTIONS:
            payload[name] = [record.to_dict() for record in state[name]]
        _atomic_write_yaml(self._store_path, payload)

    @contextmanager
    def transaction(self) -> Iterator["BoardTx"]:
        """Acquire the lock, load the board, yield a transaction, and save on exit.

        Usage::

            with store.transaction() as tx:
                task = tx.require_task("task-abc123")
                task.title = "Renamed"
                tx.save_task(task)
                # saved on exit when something changed

        Nothing is written when the block raises.
        """
        with self._lock, self._file_lock:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            tx = BoardTx(self._load())
            yield tx
            if tx.dirty:
                self._save(tx.state)

    def read(self, fn: Callable[["BoardTx"], T]) -> T:
        """Run a read-only query under the lock."""
        with self.transaction() as tx:
            return fn(tx)


class BoardTx:
    """In-memory view of the board collections for one transaction."""

    def __init__(self, state: dict[str, list[Any]]) -> None:
        self.state = state
        self.dirty = False

    def _touch(self) -> None:
        self.dirty = True

    # -- teams / members ----------------------------------------------------

    def get_team(self, team_id: str) -> Optional[Team]:
        return next((t for t in self.state["teams"] if t.id == team_id), None)

    def require_team(self, team_id: str) -> Team:
        team = self.get_team(team_id)
        if team is None:
            raise NotFound(f"Team {team_id} not found")
        return team

    def list_teams(self) -> list[Team]:
        return list(self.state["teams"])

    def find_team_by_repo(self, repo_url: str) -> Optional[Team]:
        wanted = normalize_repo_url(repo_url)
        for team in self.state["teams"]:
            if team.repo_url and normalize_repo_url(team.repo_url) == wanted:
                return team
        return None

    def add_team(self, team: Team) -> Team:
        if self.get_team(team.id) is not None:
            raise ValueError(f"Team {team.id} already exists")
        self.state["teams"].append(team)
        self._touch()
        return team

    def save_team(self, team: Team) -> Team:
        self._touch()
        return team

    def get_member(self, member_id: str) -> Optional[Member]:
        return next((m for m in self.state["members"] if m.id == member_id), None)

    def upsert_member(self, member: Member) -> Member:
        members = self.state["members"]
        for idx, existing in enumerate(members):
            if existing.id == member.id:
                members[idx] = member
                break
        else:
            members.append(member)
        self._touch()
        return member

    # -- columns ------------------------------------------------------------

    def list_columns(self, team_id: str) -> list[Column]:
        cols = [c for c in self.state["columns"] if c.team_id == team_id]
        return sorted(cols, key=lambda c: c.position)

    def get_column(self, column_id: str) -> Optional[Column]:
        return next((c for c in self.state["columns"] if c.id == column_id), None)

    def add_column(self, column: Column) -> Column:
        self.state["columns"].append(column)
        self._touch()
        return column

    def list_prefix_rules(self, team_id: str) -> list[ColumnPrefixRule]:
        return [r for r in self.state["prefix_rules"] if r.team_id == team_id]

    def add_prefix_rule(self, rule: ColumnPrefixRule) -> ColumnPrefixRule:
        self.state["prefix_rules"].append(rule)
        self._touch()
        return rule

    # -- tasks --------------------------------------------------------------

    def get_task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.state["tasks"] if t.id == task_id), None)

    def require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found")
        return task

    def list_tasks(self, team_id: Optional[str] = None) -> list[Task]:
        return [t for t in self.state["tasks"] if team_id is None or t.team_id == team_id]

    def add_task(self, task: Task) -> Task:
        if self.get_task(task.id) is not None:
            raise ValueError(f"Task {task.id} already exists")
        self.state["tasks"].append(task)
        self._touch()
        return task

    def save_task(self, task: Task) -> Task:
        task.touch()
        self._touch()
        return task

    # -- assignees / verifiers ----------------------------------------------

    def list_assignees(self, task_id: str) -> list[Assignee]:
        return [a for a in self.state["assignees"] if a.task_id == task_id]

    def list_verifiers(self, task_id: str) -> list[Verifier]:
        return [v for v in self.state["verifiers"] if v.task_id == task_id]

    def add_assignee(self, task_id: str, member_id: str) -> Assignee:
        for row in self.list_assignees(task_id):
            if row.member_id == member_id:
                return row
        row = Assignee(task_id=task_id, member_id=member_id)
        self.state["assignees"].append(row)
        self._touch()
        return row

    def remove_assignee(self, task_id: str, member_id: str) -> bool:
        before = len(self.state["assignees"])
        self.state["assignees"] = [
            a for a in self.state["assignees"] if not (a.task_id == task_id and a.member_id == member_id)
        ]
        removed = len(self.state["assignees"]) != before
        if removed:
            self._touch()
        return removed

    def add_verifier(self, task_id: str, member_id: str) -> Verifier:
        for row in self.list_verifiers(task_id):
            if row.member_id == member_id:
                return row
        row = Verifier(task_id=task_id, member_id=member_id)
        self.state["verifiers"].append(row)
        self._touch()
        return row

    def remove_verifier(self, task_id: str, member_id: str) -> bool:
        before = len(self.state["verifiers"])
        self.state["verifiers"] = [
            v for v in self.state["verifiers"] if not (v.task_id == task_id and v.member_id == member_id)
        ]
        removed = len(self.state["verifiers"]) != before
        if removed:
            self._touch()
        return removed

    def replace_roles(self, task_id: str, assignees: list[Assignee], verifiers: list[Verifier]) -> None:
        """Swap the task's role rows for the given lists (used after a transition)."""
        self.state["assignees"] = [a for a in self.state["assignees"] if a.task_id != task_id] + list(assignees)
        self.state["verifiers"] = [v for v in self.state["verifiers"] if v.task_id != task_id] + list(verifiers)
        self._touch()

    def all_assignees_accepted(self, task_id: str) -> bool:
        return consensus.all_accepted(self.list_assignees(task_id))

    def all_assignees_completed(self, task_id: str) -> bool:
        return consensus.all_completed(self.list_assignees(task_id))

    def all_verifiers_approved(self, task_id: str) -> bool:
        return consensus.all_approved(self.list_verifiers(task_id))

    # -- external mappings --------------------------------------------------

    def mapping_for_task(self, task_id: str) -> Optional[ExternalMapping]:
        return next((m for m in self.state["mappings"] if m.task_id == task_id), None)

    def require_mapping(self, task_id: str) -> ExternalMapping:
        mapping = self.mapping_for_task(task_id)
        if mapping is None:
            raise NotFound(f"Task {task_id} is not linked to an issue")
        return mapping

    def mapping_for_issue(self, team_id: str, issue_number: int) -> Optional[ExternalMapping]:
        for m in self.state["mappings"]:
            if m.team_id == team_id and m.issue_number == issue_number:
                return m
        return None

    def list_mappings(self, team_id: str, status: Optional[SyncStatus] = None) -> list[ExternalMapping]:
        return [
            m for m in self.state["mappings"]
            if m.team_id == team_id and (status is None or m.sync_status == status)
        ]

    def add_mapping(self, mapping: ExternalMapping) -> ExternalMapping:
        if self.mapping_for_task(mapping.task_id) is not None:
            raise DuplicateMapping(f"Task {mapping.task_id} is already linked to an issue")
        if self.mapping_for_issue(mapping.team_id, mapping.issue_number) is not None:
            raise DuplicateMapping(
                f"Issue #{mapping.issue_number} is already linked to a task in team {mapping.team_id}"
            )
        self.state["mappings"].append(mapping)
        self._touch()
        return mapping

    def save_mapping(self, mapping: ExternalMapping) -> ExternalMapping:
        self._touch()
        return mapping

    def remove_mapping(self, task_id: str) -> bool:
        before = len(self.state["mappings"])
        self.state["mappings"] = [m for m in self.state["mappings"] if m.task_id != task_id]
        removed = len(self.state["mappings"]) != before
        if removed:
            self._touch()
        return removed

    # -- user mappings ------------------------------------------------------

    def list_user_mappings(self, team_id: str) -> list[UserMapping]:
        return [u for u in self.state["user_mappings"] if u.team_id == team_id]

    def set_user_mapping(self, mapping: UserMapping) -> UserMapping:
        self.state["user_mappings"] = [
            u for u in self.state["user_mappings"]
            if not (u.team_id == mapping.team_id and u.member_id == mapping.member_id)
        ]
        self.state["user_mappings"].append(mapping)
        self._touch()
        return mapping

    def remove_user_mapping(self, team_id: str, member_id: str) -> bool:
        before = len(self.state["user_mappings"])
        self.state["user_mappings"] = [
            u for u in self.state["user_mappings"] if not (u.team_id == team_id and u.member_id == member_id)
        ]
        removed = len(self.state["user_mappings"]) != before
        if removed:
            self._touch()
        return removed

    def username_for_member(self, team_id: str, member_id: str) -> Optional[str]:
        for u in self.list_user_mappings(team_id):
            if u.member_id == member_id:
                return u.github_username
        return None

    def member_for_username(self, team_id: str, username: str) -> Optional[str]:
        wanted = username.lower()
        for u in self.list_user_mappings(team_id):
            if u.github_username.lower() == wanted:
                return u.member_id
        return None

    # -- sync log (append-only) ---------------------------------------------

    def append_log(self, entry: SyncLogEntry) -> SyncLogEntry:
        self.state["sync_log"].append(entry)
        self._touch()
        return entry

    def has_delivery(self, delivery_id: str) -> bool:
        return any(e.delivery_id == delivery_id for e in self.state["sync_log"])

    def logs_for_task(self, task_id: str) -> list[SyncLogEntry]:
        return [e for e in reversed(self.state["sync_log"]) if e.task_id == task_id]

    def logs_for_delivery(self, delivery_id: str) -> list[SyncLogEntry]:
        return [e for e in self.state["sync_log"] if e.delivery_id == delivery_id]
