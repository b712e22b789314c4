"""Tests for pushing tasks to GitHub issues (sync/engine.py, push side)."""

from __future__ import annotations

import pytest

from teamboard.config import BoardSettings
from teamboard.errors import DuplicateMapping, ExternalUnavailable, Forbidden, NotFound, PreconditionFailed
from teamboard.sync.engine import SyncEngine
from teamboard.sync.github import IssueRecord
from teamboard.sync.model import SyncLogStatus, SyncStatus, SyncTrigger, SyncType
from teamboard.task_engine.engine import WorkflowEngine
from teamboard.task_engine.model import Priority, WorkflowStatus

from fakes import OWNER, REPO, FakeGitHub


@pytest.fixture
def task(engine: WorkflowEngine, team):
    return engine.create_task(
        team.id,
        "Fix flaky upload",
        description="Uploads time out on slow links.",
        priority=Priority.MEDIUM,
        created_by="lead",
        assignee_ids=("alice", "bob"),
    )


class TestCreateAndLink:
    def test_create_issue_from_task(self, sync: SyncEngine, github: FakeGitHub, task) -> None:
        sync.set_user_mapping(task.team_id, "alice", "alice-gh")
        mapping = sync.create_external_from_task(task.id, "lead")

        assert mapping.sync_status == SyncStatus.SYNCED
        issue = github.issue(OWNER, REPO, mapping.issue_number)
        assert issue.title == "Fix flaky upload"
        assert issue.body == f"Uploads time out on slow links.\n\n---\n*Synced from Task #{task.id}*"
        assert issue.labels == ["status:waiting", "priority:medium"]
        # bob has no user mapping and is left off the issue
        assert issue.assignees == ["alice-gh"]
        assert github.tokens == ["tok-lead"]
        assert ("acme", "widgets") in github.repo_labels

        log = sync.sync_log(task.id)
        assert log[0].sync_type == SyncType.CREATE
        assert log[0].new_value == f"#{mapping.issue_number}"

    def test_create_for_done_task_closes_issue(self, sync: SyncEngine, engine: WorkflowEngine, github, task) -> None:
        engine.force_complete(task.id, "lead")
        mapping = sync.create_external_from_task(task.id, "lead")
        assert github.issue(OWNER, REPO, mapping.issue_number).state == "closed"

    def test_create_twice_is_duplicate(self, sync: SyncEngine, task) -> None:
        sync.create_external_from_task(task.id, "lead")
        with pytest.raises(DuplicateMapping):
            sync.create_external_from_task(task.id, "lead")

    def test_member_without_token_is_forbidden(self, sync: SyncEngine, task) -> None:
        with pytest.raises(Forbidden):
            sync.create_external_from_task(task.id, "bob")

    def test_failed_create_is_logged_and_raised(self, sync: SyncEngine, github: FakeGitHub, task) -> None:
        github.fail = True
        with pytest.raises(ExternalUnavailable):
            sync.create_external_from_task(task.id, "lead")
        assert sync.get_mapping(task.id) is None
        assert sync.sync_log(task.id)[0].status == SyncLogStatus.FAILED

    def test_link_existing_issue(self, sync: SyncEngine, github: FakeGitHub, task) -> None:
        github.seed_issue(
            OWNER, REPO,
            IssueRecord(number=12, title="Upload", html_url="https://github.com/acme/widgets/issues/12",
                        updated_at="2026-03-01T09:00:00Z"),
        )
        mapping = sync.link_to_external(task.id, 12, "alice")
        assert mapping.issue_number == 12
        assert mapping.issue_url.endswith("/issues/12")
        assert mapping.external_updated_at == "2026-03-01T09:00:00Z"

    def test_link_missing_issue_is_not_found(self, sync: SyncEngine, task) -> None:
        with pytest.raises(NotFound):
            sync.link_to_external(task.id, 404, "lead")
        assert sync.get_mapping(task.id) is None

    def test_issue_already_linked_elsewhere(self, sync: SyncEngine, engine: WorkflowEngine, github, task, team) -> None:
        github.seed_issue(OWNER, REPO, IssueRecord(number=5))
        sync.link_to_external(task.id, 5, "lead")
        other = engine.create_task(team.id, "Other")
        with pytest.raises(DuplicateMapping):
            sync.link_to_external(other.id, 5, "lead")

    def test_unlink_then_relink(self, sync: SyncEngine, github, task) -> None:
        github.seed_issue(OWNER, REPO, IssueRecord(number=5))
        sync.link_to_external(task.id, 5, "lead")
        sync.unlink_from_external(task.id, "lead")
        assert sync.get_mapping(task.id) is None
        assert sync.sync_log(task.id)[0].sync_type == SyncType.UNLINK
        sync.link_to_external(task.id, 5, "lead")

    def test_unlink_unlinked_task(self, sync: SyncEngine, task) -> None:
        with pytest.raises(NotFound):
            sync.unlink_from_external(task.id)

    def test_team_without_repository(self, sync: SyncEngine, engine: WorkflowEngine) -> None:
        bare = engine.create_team("bare", leader_id="lead")
        task = engine.create_task(bare.id, "Local only")
        with pytest.raises(PreconditionFailed, match="Invalid GitHub repository URL"):
            sync.create_external_from_task(task.id, "lead")


class TestPush:
    def test_explicit_push_updates_issue(self, sync: SyncEngine, engine: WorkflowEngine, github, task) -> None:
        mapping = sync.create_external_from_task(task.id, "lead")
        engine.force_complete(task.id, "lead")

        issue = github.issue(OWNER, REPO, mapping.issue_number)
        assert issue.state == "closed"
        assert sorted(issue.labels) == ["priority:medium", "status:done"]
        assert sync.get_mapping(task.id).sync_status == SyncStatus.SYNCED

        pushed = sync.sync_to_external(task.id, "alice")
        assert pushed.sync_status == SyncStatus.SYNCED
        assert github.tokens[-1] == "tok-alice"

    def test_push_failure_marks_error_but_keeps_local_change(
        self, sync: SyncEngine, engine: WorkflowEngine, github: FakeGitHub, task
    ) -> None:
        sync.create_external_from_task(task.id, "lead")
        github.fail = True
        result = engine.force_complete(task.id, "lead")

        assert result.task.workflow_status == WorkflowStatus.DONE
        assert result.sync_error is not None and "503" in result.sync_error
        assert engine.store.read(lambda tx: tx.require_task(task.id).workflow_status) == WorkflowStatus.DONE
        assert sync.get_mapping(task.id).sync_status == SyncStatus.ERROR
        failed = sync.sync_log(task.id)[0]
        assert failed.status == SyncLogStatus.FAILED
        assert failed.trigger == SyncTrigger.AUTO

        github.fail = False
        sync.sync_to_external(task.id, "lead")
        assert sync.get_mapping(task.id).sync_status == SyncStatus.SYNCED

    def test_auto_push_without_credentials_leaves_pending(self, sync: SyncEngine, engine: WorkflowEngine, github, task) -> None:
        sync.create_external_from_task(task.id, "lead")
        calls_before = len(github.calls)
        result = engine.accept(task.id, "bob")
        assert result.sync_error is None
        assert sync.get_mapping(task.id).sync_status == SyncStatus.PENDING
        assert len(github.calls) == calls_before

    def test_auto_push_disabled(self, store, github, clock, task, engine: WorkflowEngine) -> None:
        quiet = SyncEngine(store, settings=BoardSettings(auto_push=False), client_factory=github.factory, clock=clock)
        engine.sync = quiet
        quiet.create_external_from_task(task.id, "lead")
        engine.accept(task.id, "alice")
        assert quiet.get_mapping(task.id).sync_status == SyncStatus.PENDING

    def test_push_unlinked_task(self, sync: SyncEngine, task) -> None:
        with pytest.raises(NotFound):
            sync.sync_to_external(task.id, "lead")

    def test_unchanged_command_does_not_touch_mapping(self, sync: SyncEngine, engine: WorkflowEngine, task) -> None:
        sync.create_external_from_task(task.id, "lead")
        engine.accept(task.id, "mallory")
        assert sync.get_mapping(task.id).sync_status == SyncStatus.SYNCED


class TestUserMappingsAndCounts:
    def test_set_list_remove(self, sync: SyncEngine, team) -> None:
        sync.set_user_mapping(team.id, "alice", "alice-gh")
        assert [u.github_username for u in sync.list_user_mappings(team.id)] == ["alice-gh"]
        sync.remove_user_mapping(team.id, "alice")
        assert sync.list_user_mappings(team.id) == []
        with pytest.raises(NotFound):
            sync.remove_user_mapping(team.id, "alice")

    def test_unlinked_counts(self, sync: SyncEngine, github: FakeGitHub, task) -> None:
        github.seed_issue(OWNER, REPO, IssueRecord(number=1))
        github.seed_issue(OWNER, REPO, IssueRecord(number=2))
        sync.link_to_external(task.id, 1, "lead")
        counts = sync.unlinked_counts(task.team_id, "lead")
        assert counts == {"unlinked_tasks": 0, "unlinked_issues": 1}

    def test_ensure_labels(self, sync: SyncEngine, team) -> None:
        assert len(sync.ensure_labels(team.id, "lead")) == 10
        assert sync.ensure_labels(team.id, "lead") == []
