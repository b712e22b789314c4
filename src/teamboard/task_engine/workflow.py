"""Workflow state machine for consensus-driven tasks.

``apply`` is a pure function: it takes a snapshot of a task and its role
rows, applies one command, and returns an :class:`Outcome` holding the new
status, the updated role rows, and the notices to deliver.  Persisting the
outcome and delivering notices is the engine's job.

    WAITING --accept(all)--> IN_PROGRESS --complete(all)--> REVIEW --approve(all)--> DONE
       |                          ^   \\--complete(all), no verifiers--------------> DONE
    decline                    restart      REVIEW --reject--> REJECTED
       v                          |                               |
    DECLINED                      +-------------------------------+
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional

from ..errors import Forbidden, PreconditionFailed
from . import consensus
from .model import Assignee, Task, Verifier, WorkflowStatus


# ---------------------------------------------------------------------------
# Commands and notices
# ---------------------------------------------------------------------------

class Command(str, Enum):
    ACCEPT = "accept"
    COMPLETE = "complete"
    APPROVE = "approve"
    REJECT = "reject"
    DECLINE = "decline"
    RESTART = "restart"
    FORCE_COMPLETE = "force_complete"
    RECALCULATE = "recalculate"


class NoticeKind(str, Enum):
    TASK_ACCEPTED = "TASK_ACCEPTED"
    TASK_REVIEW = "TASK_REVIEW"
    TASK_APPROVED = "TASK_APPROVED"
    TASK_REJECTED = "TASK_REJECTED"
    TASK_DECLINED = "TASK_DECLINED"
    TASK_FORCE_COMPLETE = "TASK_FORCE_COMPLETE"


@dataclass(frozen=True)
class Notice:
    """One (recipient, event, entity) tuple for the notification dispatcher."""

    recipient_id: str
    kind: NoticeKind
    task_id: str
    actor_id: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Optional[str]]:
        return {
            "recipient_id": self.recipient_id,
            "kind": self.kind.value,
            "task_id": self.task_id,
            "actor_id": self.actor_id,
            "reason": self.reason,
        }


# Status each command requires; FORCE_COMPLETE and RECALCULATE check their own.
REQUIRED_STATUS: dict[Command, WorkflowStatus] = {
    Command.ACCEPT: WorkflowStatus.WAITING,
    Command.COMPLETE: WorkflowStatus.IN_PROGRESS,
    Command.APPROVE: WorkflowStatus.REVIEW,
    Command.REJECT: WorkflowStatus.REVIEW,
    Command.DECLINE: WorkflowStatus.WAITING,
    Command.RESTART: WorkflowStatus.REJECTED,
}


# ---------------------------------------------------------------------------
# Snapshot / outcome
# ---------------------------------------------------------------------------

@dataclass
class TaskSnapshot:
    task: Task
    assignees: list[Assignee]
    verifiers: list[Verifier]
    leader_id: Optional[str] = None


@dataclass
class Outcome:
    task_id: str
    previous: WorkflowStatus
    status: WorkflowStatus
    assignees: list[Assignee]
    verifiers: list[Verifier]
    rejection_reason: Optional[str] = None
    rejected_by: Optional[str] = None
    notices: list[Notice] = field(default_factory=list)
    changed: bool = False

    @property
    def status_changed(self) -> bool:
        return self.previous != self.status


class _Draft:
    """Working copy of a snapshot that handlers mutate."""

    def __init__(self, snapshot: TaskSnapshot, actor_id: Optional[str], reason: Optional[str]) -> None:
        task = snapshot.task
        self.task = task
        self.leader_id = snapshot.leader_id
        self.actor_id = actor_id
        self.reason = reason
        self.status = task.workflow_status
        self.assignees = [replace(a) for a in snapshot.assignees]
        self.verifiers = [replace(v) for v in snapshot.verifiers]
        self.rejection_reason = task.rejection_reason
        self.rejected_by = task.rejected_by
        self.notices: list[Notice] = []
        self.changed = False

    def assignee(self, member_id: Optional[str]) -> Optional[Assignee]:
        return next((a for a in self.assignees if a.member_id == member_id), None)

    def verifier(self, member_id: Optional[str]) -> Optional[Verifier]:
        return next((v for v in self.verifiers if v.member_id == member_id), None)

    def move(self, status: WorkflowStatus) -> None:
        if status != self.status:
            self.status = status
            self.changed = True

    def notify(self, recipients: list[str], kind: NoticeKind) -> None:
        seen: set[str] = set()
        for recipient in recipients:
            if not recipient or recipient == self.actor_id or recipient in seen:
                continue
            seen.add(recipient)
            self.notices.append(
                Notice(recipient, kind, self.task.id, actor_id=self.actor_id, reason=self.reason)
            )

    def outcome(self) -> Outcome:
        return Outcome(
            task_id=self.task.id,
            previous=self.task.workflow_status,
            status=self.status,
            assignees=self.assignees,
            verifiers=self.verifiers,
            rejection_reason=self.rejection_reason,
            rejected_by=self.rejected_by,
            notices=self.notices,
            changed=self.changed,
        )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def _finish_assignee_round(draft: _Draft) -> None:
    """IN_PROGRESS -> REVIEW/DONE once every assignee has completed."""
    if not consensus.all_completed(draft.assignees):
        return
    if draft.verifiers:
        draft.move(WorkflowStatus.REVIEW)
        draft.notify([v.member_id for v in draft.verifiers], NoticeKind.TASK_REVIEW)
    else:
        draft.move(WorkflowStatus.DONE)


def _accept(draft: _Draft) -> None:
    row = draft.assignee(draft.actor_id)
    if row is None:
        return
    if not row.accepted:
        row.accepted = True
        draft.changed = True
    if consensus.all_accepted(draft.assignees):
        draft.move(WorkflowStatus.IN_PROGRESS)
        draft.notify([draft.task.created_by or ""], NoticeKind.TASK_ACCEPTED)


def _complete(draft: _Draft) -> None:
    row = draft.assignee(draft.actor_id)
    if row is None:
        return
    if not row.completed:
        # completed implies accepted, even for an assignee added mid-flight
        row.accepted = True
        row.completed = True
        draft.changed = True
    _finish_assignee_round(draft)


def _approve(draft: _Draft) -> None:
    row = draft.verifier(draft.actor_id)
    if row is None:
        return
    if not row.approved:
        row.approved = True
        row.rejection_reason = None
        draft.changed = True
    if consensus.all_approved(draft.verifiers):
        draft.move(WorkflowStatus.DONE)
        draft.notify([a.member_id for a in draft.assignees], NoticeKind.TASK_APPROVED)


def _reject(draft: _Draft) -> None:
    row = draft.verifier(draft.actor_id)
    if row is None:
        return
    row.approved = False
    row.rejection_reason = draft.reason
    for assignee in draft.assignees:
        assignee.completed = False
    draft.rejection_reason = draft.reason
    draft.rejected_by = draft.actor_id
    draft.changed = True
    draft.move(WorkflowStatus.REJECTED)
    draft.notify([a.member_id for a in draft.assignees], NoticeKind.TASK_REJECTED)


def _decline(draft: _Draft) -> None:
    draft.rejection_reason = draft.reason
    draft.rejected_by = draft.actor_id
    draft.changed = True
    draft.move(WorkflowStatus.DECLINED)
    draft.notify([a.member_id for a in draft.assignees], NoticeKind.TASK_DECLINED)


def _restart(draft: _Draft) -> None:
    for verifier in draft.verifiers:
        verifier.approved = False
    draft.changed = True
    draft.move(WorkflowStatus.IN_PROGRESS)


def _force_complete(draft: _Draft) -> None:
    actor = draft.actor_id
    if actor is None or actor not in (draft.leader_id, draft.task.created_by):
        raise Forbidden(
            f"Member {actor} cannot force-complete task {draft.task.id}: "
            "requires the team leader or the task creator",
            actor_id=actor,
            required="team leader or task creator",
        )
    if draft.status == WorkflowStatus.DONE:
        raise PreconditionFailed(
            f"Cannot force-complete task {draft.task.id}: status must not be DONE, but is DONE",
            expected="any status except DONE",
            actual=WorkflowStatus.DONE.value,
        )
    for assignee in draft.assignees:
        assignee.accepted = True
        assignee.completed = True
    for verifier in draft.verifiers:
        verifier.approved = True
    draft.changed = True
    draft.move(WorkflowStatus.DONE)
    draft.notify([a.member_id for a in draft.assignees], NoticeKind.TASK_FORCE_COMPLETE)


def _recalculate(draft: _Draft) -> None:
    # Forward only; REJECTED, DECLINED and DONE are left alone.
    while True:
        before = draft.status
        if draft.status == WorkflowStatus.WAITING and consensus.all_accepted(draft.assignees):
            draft.move(WorkflowStatus.IN_PROGRESS)
        elif draft.status == WorkflowStatus.IN_PROGRESS:
            _finish_assignee_round(draft)
        elif draft.status == WorkflowStatus.REVIEW:
            if consensus.all_approved(draft.verifiers) or (
                not draft.verifiers and consensus.all_completed(draft.assignees)
            ):
                draft.move(WorkflowStatus.DONE)
        if draft.status == before:
            return


_HANDLERS: dict[Command, Callable[[_Draft], None]] = {
    Command.ACCEPT: _accept,
    Command.COMPLETE: _complete,
    Command.APPROVE: _approve,
    Command.REJECT: _reject,
    Command.DECLINE: _decline,
    Command.RESTART: _restart,
    Command.FORCE_COMPLETE: _force_complete,
    Command.RECALCULATE: _recalculate,
}


def apply(
    command: Command,
    snapshot: TaskSnapshot,
    actor_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> Outcome:
    """Apply *command* to *snapshot* and return the resulting outcome.

    Raises:
        PreconditionFailed: The task is not in the status the command requires.
        Forbidden: A force-complete by someone other than the leader or creator.
    """
    required = REQUIRED_STATUS.get(command)
    current = snapshot.task.workflow_status
    if required is not None and current != required:
        raise PreconditionFailed.for_status(snapshot.task.id, command.value, required.value, current.value)
    draft = _Draft(snapshot, actor_id, reason)
    _HANDLERS[command](draft)
    return draft.outcome()
