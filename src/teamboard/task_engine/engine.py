"""Workflow engine: the command entry point for task lifecycle changes.

Each command runs as one unit of work: inside a single store transaction it
reads the task and its role rows, applies the pure state machine, and writes
the outcome back.  After the commit it hands the outcome's notices to the
notification dispatcher, announces the change on the team board channel, and,
when the task is linked to an issue, pushes it.  A failed push is reported on
the result and never undoes the committed change.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from loguru import logger

from ..errors import NotFound
from ..notifications import (
    BOARD_TASK_CREATED,
    BOARD_TASK_UPDATED,
    EventBus,
    NotificationDispatcher,
    RecordingDispatcher,
    team_channel,
)
from . import consensus, workflow
from .model import Assignee, Column, Member, Priority, Task, Team, Verifier
from .store import BoardStore, BoardTx
from .workflow import Command, Outcome, TaskSnapshot

if TYPE_CHECKING:
    from ..sync.engine import SyncEngine


def snapshot_for(tx: BoardTx, task: Task) -> TaskSnapshot:
    team = tx.get_team(task.team_id)
    return TaskSnapshot(
        task=task,
        assignees=tx.list_assignees(task.id),
        verifiers=tx.list_verifiers(task.id),
        leader_id=team.leader_id if team else None,
    )


def commit_outcome(tx: BoardTx, task: Task, outcome: Outcome) -> None:
    """Write a state machine outcome back to the store."""
    task.workflow_status = outcome.status
    task.rejection_reason = outcome.rejection_reason
    task.rejected_by = outcome.rejected_by
    tx.replace_roles(task.id, outcome.assignees, outcome.verifiers)
    tx.save_task(task)


@dataclass
class CommandResult:
    task: Task
    assignees: list[Assignee]
    verifiers: list[Verifier]
    outcome: Outcome
    changed: bool = False
    sync_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "assignees": [a.to_dict() for a in self.assignees],
            "verifiers": [v.to_dict() for v in self.verifiers],
            "previous_status": self.outcome.previous.value,
            "changed": self.changed,
            "notices": [n.to_dict() for n in self.outcome.notices],
            "sync_error": self.sync_error,
        }


class WorkflowEngine:
    """Run lifecycle commands against the board store.

    Parameters
    ----------
    store:
        The board store.
    dispatcher:
        Receives notices after each commit.
    events:
        Board event bus for ``TASK_CREATED`` / ``TASK_UPDATED``.
    sync:
        Optional sync engine; when set, changes to linked tasks are pushed.
    """

    def __init__(
        self,
        store: BoardStore,
        *,
        dispatcher: Optional[NotificationDispatcher] = None,
        events: Optional[EventBus] = None,
        sync: Optional["SyncEngine"] = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher or RecordingDispatcher()
        self.events = events or EventBus()
        self.sync = sync

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    def create_team(
        self,
        name: str,
        leader_id: Optional[str] = None,
        repo_url: Optional[str] = None,
        issue_sync_enabled: bool = False,
    ) -> Team:
        team = Team(name=name, leader_id=leader_id, repo_url=repo_url, issue_sync_enabled=issue_sync_enabled)
        with self.store.transaction() as tx:
            tx.add_team(team)
        logger.info("Created team {} ({})", team.id, name)
        return team

    def register_member(self, member_id: str, name: str = "", github_token: Optional[str] = None) -> Member:
        with self.store.transaction() as tx:
            return tx.upsert_member(Member(id=member_id, name=name or member_id, github_token=github_token))

    def create_column(self, team_id: str, title: str) -> Column:
        with self.store.transaction() as tx:
            tx.require_team(team_id)
            positions = [c.position for c in tx.list_columns(team_id)]
            column = Column(team_id=team_id, title=title, position=max(positions) + 1 if positions else 0)
            return tx.add_column(column)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        team_id: str,
        title: str,
        *,
        description: str = "",
        priority: Optional[Priority] = None,
        column_id: Optional[str] = None,
        due_date: Optional[str] = None,
        created_by: Optional[str] = None,
        assignee_ids: tuple[str, ...] = (),
        verifier_ids: tuple[str, ...] = (),
    ) -> Task:
        with self.store.transaction() as tx:
            team = tx.require_team(team_id)
            if column_id is not None and tx.get_column(column_id) is None:
                raise NotFound(f"Column {column_id} not found")
            task = Task(
                team_id=team_id,
                title=title,
                description=description,
                priority=priority,
                column_id=column_id or team.default_column_id,
                due_date=due_date,
                created_by=created_by,
            )
            tx.add_task(task)
            for member_id in assignee_ids:
                tx.add_assignee(task.id, member_id)
            for member_id in verifier_ids:
                tx.add_verifier(task.id, member_id)
        logger.info("Created task {}: {}", task.id, title)
        self._publish(BOARD_TASK_CREATED, task)
        return task

    def get_task_detail(self, task_id: str) -> dict[str, Any]:
        with self.store.transaction() as tx:
            task = tx.require_task(task_id)
            assignees = tx.list_assignees(task_id)
            verifiers = tx.list_verifiers(task_id)
            mapping = tx.mapping_for_task(task_id)
            return {
                "task": task.to_dict(),
                "assignees": [a.to_dict() for a in assignees],
                "verifiers": [v.to_dict() for v in verifiers],
                "consensus": consensus.summarize(assignees, verifiers),
                "mapping": mapping.to_dict() if mapping else None,
            }

    # -- role set mutations (each followed by a recalculation) ------------

    def add_assignee(self, task_id: str, member_id: str, actor_id: Optional[str] = None) -> CommandResult:
        return self._run(Command.RECALCULATE, task_id, actor_id, mutate=lambda tx: tx.add_assignee(task_id, member_id))

    def remove_assignee(self, task_id: str, member_id: str, actor_id: Optional[str] = None) -> CommandResult:
        return self._run(Command.RECALCULATE, task_id, actor_id, mutate=lambda tx: tx.remove_assignee(task_id, member_id))

    def add_verifier(self, task_id: str, member_id: str, actor_id: Optional[str] = None) -> CommandResult:
        return self._run(Command.RECALCULATE, task_id, actor_id, mutate=lambda tx: tx.add_verifier(task_id, member_id))

    def remove_verifier(self, task_id: str, member_id: str, actor_id: Optional[str] = None) -> CommandResult:
        return self._run(Command.RECALCULATE, task_id, actor_id, mutate=lambda tx: tx.remove_verifier(task_id, member_id))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def accept(self, task_id: str, actor_id: str) -> CommandResult:
        return self._run(Command.ACCEPT, task_id, actor_id)

    def complete(self, task_id: str, actor_id: str) -> CommandResult:
        return self._run(Command.COMPLETE, task_id, actor_id)

    def approve(self, task_id: str, actor_id: str) -> CommandResult:
        return self._run(Command.APPROVE, task_id, actor_id)

    def reject(self, task_id: str, actor_id: str, reason: Optional[str] = None) -> CommandResult:
        return self._run(Command.REJECT, task_id, actor_id, reason=reason)

    def decline(self, task_id: str, actor_id: str, reason: Optional[str] = None) -> CommandResult:
        return self._run(Command.DECLINE, task_id, actor_id, reason=reason)

    def restart(self, task_id: str, actor_id: str) -> CommandResult:
        return self._run(Command.RESTART, task_id, actor_id)

    def force_complete(self, task_id: str, actor_id: str) -> CommandResult:
        return self._run(Command.FORCE_COMPLETE, task_id, actor_id)

    def recalculate_status(self, task_id: str, actor_id: Optional[str] = None) -> CommandResult:
        return self._run(Command.RECALCULATE, task_id, actor_id)

    def execute(self, command: Command, task_id: str, actor_id: Optional[str], reason: Optional[str] = None) -> CommandResult:
        """Dispatch a command by verb (used by the HTTP layer)."""
        return self._run(command, task_id, actor_id, reason=reason)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(
        self,
        command: Command,
        task_id: str,
        actor_id: Optional[str],
        *,
        reason: Optional[str] = None,
        mutate: Optional[Callable[[BoardTx], Any]] = None,
    ) -> CommandResult:
        linked = False
        with self.store.transaction() as tx:
            task = tx.require_task(task_id)
            if mutate is not None:
                mutate(tx)
            roles_mutated = tx.dirty
            outcome = workflow.apply(command, snapshot_for(tx, task), actor_id, reason)
            if outcome.changed:
                commit_outcome(tx, task, outcome)
            changed = outcome.changed or roles_mutated
            if changed and self.sync is not None:
                linked = self.sync.note_local_change(tx, task_id) is not None
            result = CommandResult(
                task=task,
                assignees=tx.list_assignees(task_id),
                verifiers=tx.list_verifiers(task_id),
                outcome=outcome,
                changed=changed,
            )

        if not changed:
            logger.debug("{} on {} by {} changed nothing", command.value, task_id, actor_id)
            return result
        if outcome.status_changed:
            logger.info(
                "Task {} moved {} -> {} via {} by {}",
                task_id, outcome.previous.value, outcome.status.value, command.value, actor_id,
            )
        self.dispatcher.dispatch(outcome.notices)
        self._publish(BOARD_TASK_UPDATED, task)
        if linked and self.sync is not None:
            result.sync_error = self.sync.auto_push(task_id, actor_id)
        return result

    def _publish(self, event_type: str, task: Task) -> None:
        self.events.emit(
            channel=team_channel(task.team_id),
            event_type=event_type,
            entity_id=task.id,
            payload=task.to_dict(),
        )
