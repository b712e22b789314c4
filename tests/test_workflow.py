"""Tests for the pure workflow state machine (task_engine/workflow.py)."""

from __future__ import annotations

import pytest

from teamboard.errors import Forbidden, PreconditionFailed
from teamboard.task_engine import consensus, workflow
from teamboard.task_engine.model import Assignee, Task, Verifier, WorkflowStatus
from teamboard.task_engine.workflow import Command, NoticeKind, TaskSnapshot, apply


def _snapshot(
    status: WorkflowStatus = WorkflowStatus.WAITING,
    assignees: tuple[str, ...] = ("alice", "bob"),
    verifiers: tuple[str, ...] = ("vera",),
    *,
    accepted: tuple[str, ...] = (),
    completed: tuple[str, ...] = (),
    approved: tuple[str, ...] = (),
    created_by: str = "creator",
    leader_id: str = "lead",
) -> TaskSnapshot:
    task = Task(id="task-1", team_id="team-1", title="Ship it", workflow_status=status, created_by=created_by)
    return TaskSnapshot(
        task=task,
        assignees=[
            Assignee(task_id=task.id, member_id=m, accepted=m in accepted or m in completed, completed=m in completed)
            for m in assignees
        ],
        verifiers=[Verifier(task_id=task.id, member_id=m, approved=m in approved) for m in verifiers],
        leader_id=leader_id,
    )


# ---------------------------------------------------------------------------
# Consensus predicates
# ---------------------------------------------------------------------------

class TestHandlerTable:
    def test_every_command_has_a_handler(self) -> None:
        assert set(workflow._HANDLERS) == set(Command)


class TestConsensus:
    def test_empty_sets_are_never_unanimous(self) -> None:
        assert consensus.all_accepted([]) is False
        assert consensus.all_completed([]) is False
        assert consensus.all_approved([]) is False

    def test_summarize_counts(self) -> None:
        snap = _snapshot(accepted=("alice",), approved=("vera",))
        summary = consensus.summarize(snap.assignees, snap.verifiers)
        assert summary["assignees"] == 2
        assert summary["accepted"] == 1
        assert summary["all_accepted"] is False
        assert summary["all_approved"] is True


# ---------------------------------------------------------------------------
# Accept / complete
# ---------------------------------------------------------------------------

class TestAcceptAndComplete:
    def test_partial_accept_keeps_waiting(self) -> None:
        out = apply(Command.ACCEPT, _snapshot(), "alice")
        assert out.status == WorkflowStatus.WAITING
        assert out.changed is True
        assert [a.accepted for a in out.assignees] == [True, False]
        assert out.notices == []

    def test_last_accept_moves_to_in_progress_and_notifies_creator(self) -> None:
        out = apply(Command.ACCEPT, _snapshot(accepted=("alice",)), "bob")
        assert out.status == WorkflowStatus.IN_PROGRESS
        assert out.status_changed
        assert [(n.recipient_id, n.kind) for n in out.notices] == [("creator", NoticeKind.TASK_ACCEPTED)]

    def test_accept_by_non_assignee_is_noop(self) -> None:
        out = apply(Command.ACCEPT, _snapshot(), "mallory")
        assert out.changed is False
        assert out.status == WorkflowStatus.WAITING

    def test_accept_outside_waiting_fails_with_message(self) -> None:
        with pytest.raises(PreconditionFailed) as excinfo:
            apply(Command.ACCEPT, _snapshot(WorkflowStatus.IN_PROGRESS), "alice")
        assert excinfo.value.message == "Cannot accept task task-1: status must be WAITING, but is IN_PROGRESS"
        assert excinfo.value.expected == "WAITING"
        assert excinfo.value.actual == "IN_PROGRESS"

    def test_last_complete_with_verifiers_goes_to_review(self) -> None:
        snap = _snapshot(WorkflowStatus.IN_PROGRESS, accepted=("alice", "bob"), completed=("alice",))
        out = apply(Command.COMPLETE, snap, "bob")
        assert out.status == WorkflowStatus.REVIEW
        assert [(n.recipient_id, n.kind) for n in out.notices] == [("vera", NoticeKind.TASK_REVIEW)]

    def test_last_complete_without_verifiers_goes_to_done(self) -> None:
        snap = _snapshot(WorkflowStatus.IN_PROGRESS, verifiers=(), accepted=("alice", "bob"), completed=("alice",))
        out = apply(Command.COMPLETE, snap, "bob")
        assert out.status == WorkflowStatus.DONE

    def test_complete_marks_accepted_too(self) -> None:
        snap = _snapshot(WorkflowStatus.IN_PROGRESS, assignees=("alice",))
        out = apply(Command.COMPLETE, snap, "alice")
        assert out.assignees[0].accepted is True
        assert out.assignees[0].completed is True

    def test_snapshot_rows_are_not_mutated(self) -> None:
        snap = _snapshot(accepted=("alice",))
        apply(Command.ACCEPT, snap, "bob")
        assert snap.assignees[1].accepted is False
        assert snap.task.workflow_status == WorkflowStatus.WAITING


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------

class TestReview:
    def test_partial_approval_stays_in_review(self) -> None:
        snap = _snapshot(WorkflowStatus.REVIEW, verifiers=("vera", "vic"), completed=("alice", "bob"))
        out = apply(Command.APPROVE, snap, "vera")
        assert out.status == WorkflowStatus.REVIEW
        assert out.notices == []

    def test_unanimous_approval_notifies_assignees(self) -> None:
        snap = _snapshot(WorkflowStatus.REVIEW, completed=("alice", "bob"))
        out = apply(Command.APPROVE, snap, "vera")
        assert out.status == WorkflowStatus.DONE
        assert {n.recipient_id for n in out.notices} == {"alice", "bob"}
        assert {n.kind for n in out.notices} == {NoticeKind.TASK_APPROVED}

    def test_reject_resets_completion_and_records_reason(self) -> None:
        snap = _snapshot(WorkflowStatus.REVIEW, completed=("alice", "bob"))
        out = apply(Command.REJECT, snap, "vera", reason="tests missing")
        assert out.status == WorkflowStatus.REJECTED
        assert out.rejection_reason == "tests missing"
        assert out.rejected_by == "vera"
        assert all(not a.completed for a in out.assignees)
        assert all(a.accepted for a in out.assignees)
        assert out.verifiers[0].rejection_reason == "tests missing"
        assert {n.recipient_id for n in out.notices} == {"alice", "bob"}
        assert all(n.reason == "tests missing" for n in out.notices)

    def test_restart_clears_approvals(self) -> None:
        snap = _snapshot(WorkflowStatus.REJECTED, verifiers=("vera", "vic"), accepted=("alice", "bob"), approved=("vic",))
        out = apply(Command.RESTART, snap, "alice")
        assert out.status == WorkflowStatus.IN_PROGRESS
        assert all(not v.approved for v in out.verifiers)

    def test_restart_requires_rejected(self) -> None:
        with pytest.raises(PreconditionFailed):
            apply(Command.RESTART, _snapshot(WorkflowStatus.REVIEW), "alice")


# ---------------------------------------------------------------------------
# Decline / force-complete / recalculate
# ---------------------------------------------------------------------------

class TestPrivilegedAndRecalculate:
    def test_decline_from_waiting(self) -> None:
        out = apply(Command.DECLINE, _snapshot(), "alice", reason="no capacity")
        assert out.status == WorkflowStatus.DECLINED
        assert out.rejected_by == "alice"
        # the actor is never notified about their own action
        assert [n.recipient_id for n in out.notices] == ["bob"]

    def test_force_complete_by_leader(self) -> None:
        out = apply(Command.FORCE_COMPLETE, _snapshot(WorkflowStatus.IN_PROGRESS), "lead")
        assert out.status == WorkflowStatus.DONE
        assert all(a.accepted and a.completed for a in out.assignees)
        assert all(v.approved for v in out.verifiers)
        assert {n.kind for n in out.notices} == {NoticeKind.TASK_FORCE_COMPLETE}

    def test_force_complete_by_creator(self) -> None:
        out = apply(Command.FORCE_COMPLETE, _snapshot(WorkflowStatus.DECLINED), "creator")
        assert out.status == WorkflowStatus.DONE

    @pytest.mark.parametrize("status", list(WorkflowStatus))
    def test_force_complete_by_outsider_is_forbidden_in_any_status(self, status: WorkflowStatus) -> None:
        with pytest.raises(Forbidden):
            apply(Command.FORCE_COMPLETE, _snapshot(status), "alice")

    def test_force_complete_on_done_fails(self) -> None:
        with pytest.raises(PreconditionFailed):
            apply(Command.FORCE_COMPLETE, _snapshot(WorkflowStatus.DONE), "lead")

    def test_recalculate_reaches_fixpoint(self) -> None:
        snap = _snapshot(WorkflowStatus.WAITING, verifiers=(), completed=("alice", "bob"))
        out = apply(Command.RECALCULATE, snap)
        assert out.status == WorkflowStatus.DONE

    def test_recalculate_without_assignees_changes_nothing(self) -> None:
        out = apply(Command.RECALCULATE, _snapshot(assignees=()))
        assert out.changed is False
        assert out.status == WorkflowStatus.WAITING

    def test_recalculate_leaves_rejected_alone(self) -> None:
        snap = _snapshot(WorkflowStatus.REJECTED, completed=("alice", "bob"), approved=("vera",))
        out = apply(Command.RECALCULATE, snap)
        assert out.status == WorkflowStatus.REJECTED

    def test_review_without_verifiers_recalculates_to_done(self) -> None:
        snap = _snapshot(WorkflowStatus.REVIEW, verifiers=(), completed=("alice", "bob"))
        assert apply(Command.RECALCULATE, snap).status == WorkflowStatus.DONE
