"""Sync engine: mirror tasks to GitHub issues and apply issue webhooks back.

Push (local -> GitHub) runs after a local change has been committed: it reads
the task in one transaction, talks to GitHub without holding the store lock,
and records the result on the mapping in a second transaction.  A failed call
marks the mapping ERROR and propagates; the local change stays committed.

Pull (GitHub -> local) is webhook-driven and purely local, so each delivery is
handled inside a single transaction.  The delivery id is checked against the
sync log first, which makes replays no-ops.

Label-driven changes go through the conflict policy: when the mapping holds
an unpushed local change and both sides changed within the tolerance window,
the mapping is flagged CONFLICT and the external values are parked on it until
someone resolves the conflict.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from loguru import logger

from ..config import BoardSettings
from ..constants import SYNC_FOOTER
from ..errors import BoardError, Conflict, DuplicateMapping, Forbidden, NotFound, PreconditionFailed
from ..notifications import (
    BOARD_TASK_CREATED,
    BOARD_TASK_UPDATED,
    EventBus,
    NotificationDispatcher,
    RecordingDispatcher,
    team_channel,
)
from ..task_engine import workflow
from ..task_engine.engine import commit_outcome, snapshot_for
from ..task_engine.model import Priority, Task, Team, WorkflowStatus
from ..task_engine.store import BoardStore, BoardTx
from ..task_engine.workflow import Command, Notice
from ..utils import _now, _parse_iso, _to_iso
from .columns import ColumnRouter, Route, extract_prefix, strip_prefix
from .github import ClientFactory, IssueRecord, make_client_factory, parse_repo_url
from .labels import DEFAULT_LABELS, LabelMapper
from .model import (
    BulkSyncResult,
    ConflictResolution,
    ExternalMapping,
    SyncDirection,
    SyncLogEntry,
    SyncLogStatus,
    SyncStatus,
    SyncTrigger,
    SyncType,
    UserMapping,
)
from .webhook import IssueAction, IssueEvent, IssuePayload


# ---------------------------------------------------------------------------
# Conflict policy
# ---------------------------------------------------------------------------

_UNPUSHED = (SyncStatus.PENDING, SyncStatus.ERROR, SyncStatus.CONFLICT)


def detect_conflict(
    local_updated_at: Optional[datetime],
    external_updated_at: Optional[datetime],
    window: timedelta,
) -> bool:
    if local_updated_at is None or external_updated_at is None:
        return False
    return abs(external_updated_at - local_updated_at) <= window


def should_apply_external(
    local_updated_at: Optional[datetime],
    external_updated_at: Optional[datetime],
) -> bool:
    """Most recently updated side wins; a missing timestamp lets the pull through."""
    if local_updated_at is None or external_updated_at is None:
        return True
    return external_updated_at >= local_updated_at


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class WebhookResult:
    status: str  # processed | duplicate | ignored | conflict
    task_id: Optional[str] = None
    changes: list[str] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "task_id": self.task_id,
            "changes": list(self.changes),
            "message": self.message,
        }


@dataclass
class _Scope:
    team: Team
    owner: str
    repo: str
    token: str


class _Pull:
    """Per-delivery state shared by the webhook handlers."""

    def __init__(
        self,
        tx: BoardTx,
        team: Team,
        event: IssueEvent,
        action: IssueAction,
        delivery_id: Optional[str],
        external_at: datetime,
        now: datetime,
    ) -> None:
        self.tx = tx
        self.team = team
        self.issue: IssuePayload = event.issue
        self.action = action
        self.delivery_id = delivery_id
        self.trigger = SyncTrigger.WEBHOOK if delivery_id else SyncTrigger.MANUAL
        self.external_at = external_at
        self.now = now
        self.mapping = tx.mapping_for_issue(team.id, event.issue.number)
        self.task: Optional[Task] = tx.get_task(self.mapping.task_id) if self.mapping else None
        self.changes: list[str] = []
        self.notices: list[Notice] = []
        self.created = False

    def log(
        self,
        sync_type: SyncType,
        field_name: Optional[str] = None,
        old: Optional[str] = None,
        new: Optional[str] = None,
        status: SyncLogStatus = SyncLogStatus.SUCCESS,
    ) -> None:
        self.tx.append_log(SyncLogEntry(
            task_id=self.task.id if self.task else None,
            direction=SyncDirection.PULL,
            sync_type=sync_type,
            team_id=self.team.id,
            issue_number=self.issue.number,
            field_name=field_name,
            old_value=old,
            new_value=new,
            status=status,
            trigger=self.trigger,
            delivery_id=self.delivery_id,
        ))
        if field_name and status == SyncLogStatus.SUCCESS:
            self.changes.append(field_name)

    def stamp(self, mapping: ExternalMapping) -> None:
        mapping.external_updated_at = _to_iso(self.external_at)
        mapping.last_synced_at = _to_iso(self.now)
        self.tx.save_mapping(mapping)


def _value(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    return raw.value if hasattr(raw, "value") else str(raw)


def _refresh_parked(mapping: ExternalMapping, observed: dict[str, Optional[str]]) -> None:
    """Align parked external values with a newer pull for the same fields.

    ``observed`` maps field names to what GitHub now shows; ``None`` means the
    issue no longer carries a value for that field, so the parked one is dropped.
    """
    if mapping.sync_status != SyncStatus.CONFLICT:
        return
    for field_name, value in observed.items():
        if field_name not in mapping.pending_external:
            continue
        if value is None:
            del mapping.pending_external[field_name]
        else:
            mapping.pending_external[field_name] = value


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class SyncEngine:
    """Orchestrate push, pull, conflict handling and bulk import/export.

    Parameters
    ----------
    store:
        The board store shared with the workflow engine.
    settings:
        Sync settings (API base, tolerance window, paging, auto-push).
    client_factory:
        Builds a :class:`GitHubIssueClient` for a member's token.
    labels:
        Label mapper; the shared default tables unless overridden.
    clock:
        Returns the current UTC time.
    """

    def __init__(
        self,
        store: BoardStore,
        *,
        settings: Optional[BoardSettings] = None,
        client_factory: Optional[ClientFactory] = None,
        labels: LabelMapper = DEFAULT_LABELS,
        dispatcher: Optional[NotificationDispatcher] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.store = store
        self.settings = settings or BoardSettings()
        self.client_factory = client_factory or make_client_factory(
            self.settings.api_base, self.settings.timeout_seconds
        )
        self.labels = labels
        self.dispatcher = dispatcher or RecordingDispatcher()
        self.events = events or EventBus()
        self.clock = clock
        # opened is handled separately: it is the only action valid for an unlinked issue
        self._pull_handlers: dict[IssueAction, Callable[[_Pull, Task, ExternalMapping], None]] = {
            IssueAction.EDITED: self._pull_edited,
            IssueAction.CLOSED: self._pull_closed,
            IssueAction.REOPENED: self._pull_reopened,
            IssueAction.LABELED: self._pull_labels,
            IssueAction.UNLABELED: self._pull_labels,
            IssueAction.ASSIGNED: self._pull_assignees,
            IssueAction.UNASSIGNED: self._pull_assignees,
            IssueAction.MILESTONED: self._pull_milestone,
            IssueAction.DEMILESTONED: self._pull_milestone,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now_iso(self) -> str:
        return self.clock().isoformat()

    def _scope(self, tx: BoardTx, team_id: str, actor_id: Optional[str]) -> _Scope:
        team = tx.require_team(team_id)
        owner, repo = parse_repo_url(team.repo_url)
        member = tx.get_member(actor_id) if actor_id else None
        if member is None or not member.github_token:
            raise Forbidden(
                f"Member {actor_id} has no linked GitHub account",
                actor_id=actor_id,
                required="GitHub credentials",
            )
        return _Scope(team=team, owner=owner, repo=repo, token=member.github_token)

    @staticmethod
    def _issue_body(task: Task) -> str:
        return (task.description or "") + SYNC_FOOTER.format(task_id=task.id)

    @staticmethod
    def _strip_footer(body: str, task_id: str) -> str:
        footer = SYNC_FOOTER.format(task_id=task_id)
        return body[: -len(footer)] if body.endswith(footer) else body

    def _assignee_logins(self, tx: BoardTx, team_id: str, task_id: str) -> list[str]:
        logins = []
        for row in tx.list_assignees(task_id):
            login = tx.username_for_member(team_id, row.member_id)
            if login:
                logins.append(login)
            else:
                logger.debug("Member {} has no GitHub user mapping in team {}", row.member_id, team_id)
        return logins

    def _push_log(
        self,
        tx: BoardTx,
        task_id: str,
        team_id: str,
        issue_number: Optional[int],
        sync_type: SyncType,
        *,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
        status: SyncLogStatus = SyncLogStatus.SUCCESS,
        field_name: Optional[str] = None,
        old: Optional[str] = None,
        new: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        tx.append_log(SyncLogEntry(
            task_id=task_id,
            direction=SyncDirection.PUSH,
            sync_type=sync_type,
            team_id=team_id,
            issue_number=issue_number,
            field_name=field_name,
            old_value=old,
            new_value=new,
            status=status,
            trigger=trigger,
            error_message=error,
        ))

    def _publish(self, event_type: str, task: Task) -> None:
        self.events.emit(
            channel=team_channel(task.team_id),
            event_type=event_type,
            entity_id=task.id,
            payload=task.to_dict(),
        )

    # ------------------------------------------------------------------
    # Link / unlink / create
    # ------------------------------------------------------------------

    def link_to_external(self, task_id: str, issue_number: int, actor_id: str) -> ExternalMapping:
        """Link a task to an existing issue in its team's repository."""
        with self.store.transaction() as tx:
            task = tx.require_task(task_id)
            if tx.mapping_for_task(task_id) is not None:
                raise DuplicateMapping(f"Task {task_id} is already linked to an issue")
            if tx.mapping_for_issue(task.team_id, issue_number) is not None:
                raise DuplicateMapping(f"Issue #{issue_number} is already linked to another task")
            scope = self._scope(tx, task.team_id, actor_id)

        with self.client_factory(scope.token) as client:
            issue = client.get_issue(scope.owner, scope.repo, issue_number)

        now = self._now_iso()
        with self.store.transaction() as tx:
            mapping = tx.add_mapping(ExternalMapping(
                task_id=task_id,
                team_id=task.team_id,
                issue_number=issue.number,
                issue_url=issue.html_url,
                sync_status=SyncStatus.SYNCED,
                last_synced_at=now,
                external_updated_at=issue.updated_at or now,
            ))
            self._push_log(tx, task_id, task.team_id, issue.number, SyncType.LINK, new=f"#{issue.number}")
        logger.info("Linked task {} to {}/{}#{}", task_id, scope.owner, scope.repo, issue.number)
        return mapping

    def unlink_from_external(self, task_id: str, actor_id: Optional[str] = None) -> None:
        with self.store.transaction() as tx:
            mapping = tx.require_mapping(task_id)
            self._push_log(
                tx, task_id, mapping.team_id, mapping.issue_number, SyncType.UNLINK, old=f"#{mapping.issue_number}"
            )
            tx.remove_mapping(task_id)
        logger.info("Unlinked task {} from issue #{} (by {})", task_id, mapping.issue_number, actor_id)

    def create_external_from_task(self, task_id: str, actor_id: str) -> ExternalMapping:
        """Open a new issue mirroring the task and link the two."""
        with self.store.transaction() as tx:
            task = tx.require_task(task_id)
            if tx.mapping_for_task(task_id) is not None:
                raise DuplicateMapping(f"Task {task_id} is already linked to an issue")
            scope = self._scope(tx, task.team_id, actor_id)
            assignees = self._assignee_logins(tx, task.team_id, task_id)
            task = replace(task)

        try:
            issue = self._create_issue(scope, task, assignees, ensure_labels=True)
        except BoardError as exc:
            with self.store.transaction() as tx:
                self._push_log(
                    tx, task_id, task.team_id, None, SyncType.CREATE,
                    status=SyncLogStatus.FAILED, error=exc.message,
                )
            raise

        with self.store.transaction() as tx:
            mapping = self._insert_created_mapping(tx, task, issue)
        logger.info("Created issue {}/{}#{} from task {}", scope.owner, scope.repo, issue.number, task_id)
        return mapping

    def _create_issue(self, scope: _Scope, task: Task, assignees: list[str], *, ensure_labels: bool) -> IssueRecord:
        with self.client_factory(scope.token) as client:
            if ensure_labels:
                self.labels.ensure_all_labels(client, scope.owner, scope.repo)
            issue = client.create_issue(
                scope.owner,
                scope.repo,
                task.title,
                self._issue_body(task),
                self.labels.labels_for(task.workflow_status, task.priority),
                assignees,
            )
            if task.workflow_status == WorkflowStatus.DONE:
                issue = client.update_issue(scope.owner, scope.repo, issue.number, state="closed")
        return issue

    def _insert_created_mapping(self, tx: BoardTx, task: Task, issue: IssueRecord) -> ExternalMapping:
        now = self._now_iso()
        mapping = tx.add_mapping(ExternalMapping(
            task_id=task.id,
            team_id=task.team_id,
            issue_number=issue.number,
            issue_url=issue.html_url,
            sync_status=SyncStatus.SYNCED,
            last_synced_at=now,
            local_updated_at=now,
            external_updated_at=now,
        ))
        self._push_log(tx, task.id, task.team_id, issue.number, SyncType.CREATE, new=f"#{issue.number}")
        return mapping

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def note_local_change(self, tx: BoardTx, task_id: str) -> Optional[ExternalMapping]:
        """Mark a linked task's mapping PENDING inside the caller's transaction."""
        mapping = tx.mapping_for_task(task_id)
        if mapping is None:
            return None
        if mapping.sync_status != SyncStatus.CONFLICT:
            mapping.sync_status = SyncStatus.PENDING
        mapping.local_updated_at = self._now_iso()
        tx.save_mapping(mapping)
        return mapping

    def auto_push(self, task_id: str, actor_id: Optional[str]) -> Optional[str]:
        """Push after a committed local change; return the error message, if any."""
        if not self.settings.auto_push:
            return None
        with self.store.transaction() as tx:
            mapping = tx.mapping_for_task(task_id)
            if mapping is None:
                return None
            if mapping.sync_status == SyncStatus.CONFLICT:
                logger.info("Task {} is in conflict; not pushing until it is resolved", task_id)
                return None
            member = tx.get_member(actor_id) if actor_id else None
            if member is None or not member.github_token:
                logger.warning("Task {} left PENDING: {} has no GitHub credentials", task_id, actor_id)
                return None
        try:
            self.sync_to_external(task_id, actor_id, trigger=SyncTrigger.AUTO)
        except BoardError as exc:
            return exc.message
        return None

    def sync_to_external(
        self,
        task_id: str,
        actor_id: Optional[str],
        *,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
    ) -> ExternalMapping:
        """Push title, body, labels and open/closed state to the linked issue."""
        with self.store.transaction() as tx:
            task = replace(tx.require_task(task_id))
            mapping = tx.require_mapping(task_id)
            if mapping.sync_status == SyncStatus.CONFLICT:
                raise Conflict(
                    f"Task {task_id} conflicts with issue #{mapping.issue_number}; resolve it before pushing"
                )
            scope = self._scope(tx, mapping.team_id, actor_id)
            number = mapping.issue_number

        state = "closed" if task.workflow_status == WorkflowStatus.DONE else "open"
        try:
            with self.client_factory(scope.token) as client:
                current = client.get_issue(scope.owner, scope.repo, number).labels
                current = self.labels.update_status_label(
                    client, scope.owner, scope.repo, number, task.workflow_status, current
                )
                self.labels.update_priority_label(client, scope.owner, scope.repo, number, task.priority, current)
                client.update_issue(
                    scope.owner, scope.repo, number,
                    title=task.title, body=self._issue_body(task), state=state,
                )
        except BoardError as exc:
            logger.error("Push of task {} to #{} failed: {}", task_id, number, exc.message)
            with self.store.transaction() as tx:
                failed = tx.mapping_for_task(task_id)
                if failed is not None:
                    failed.sync_status = SyncStatus.ERROR
                    tx.save_mapping(failed)
                self._push_log(
                    tx, task_id, scope.team.id, number, SyncType.UPDATE,
                    trigger=trigger, status=SyncLogStatus.FAILED, error=exc.message,
                )
            raise

        now = self._now_iso()
        with self.store.transaction() as tx:
            mapping = tx.require_mapping(task_id)
            mapping.sync_status = SyncStatus.SYNCED
            mapping.local_updated_at = now
            mapping.last_synced_at = now
            mapping.pending_external = {}
            tx.save_mapping(mapping)
            self._push_log(
                tx, task_id, scope.team.id, number, SyncType.UPDATE,
                trigger=trigger, field_name="workflow_status", new=task.workflow_status.value,
            )
        logger.info("Pushed task {} to {}/{}#{} ({})", task_id, scope.owner, scope.repo, number, state)
        return mapping

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def list_conflicts(self, team_id: str) -> list[ExternalMapping]:
        return self.store.read(lambda tx: tx.list_mappings(team_id, SyncStatus.CONFLICT))

    def resolve_conflict(
        self,
        task_id: str,
        resolution: ConflictResolution,
        actor_id: Optional[str] = None,
    ) -> ExternalMapping:
        """Settle a CONFLICT mapping by re-pushing local state or applying the parked pull."""
        with self.store.transaction() as tx:
            mapping = tx.require_mapping(task_id)
            if mapping.sync_status != SyncStatus.CONFLICT:
                raise PreconditionFailed(
                    f"Cannot resolve task {task_id}: sync status must be CONFLICT, but is {mapping.sync_status.value}",
                    expected=SyncStatus.CONFLICT.value,
                    actual=mapping.sync_status.value,
                )
            if resolution == ConflictResolution.KEEP_EXTERNAL:
                task = tx.require_task(task_id)
                self._apply_parked(tx, task, mapping)
                mapping.sync_status = SyncStatus.SYNCED
                mapping.last_synced_at = self._now_iso()
                mapping.pending_external = {}
                tx.save_mapping(mapping)
                resolved = mapping
        if resolution == ConflictResolution.KEEP_EXTERNAL:
            logger.info("Conflict on task {} resolved with external values by {}", task_id, actor_id)
            self._publish(BOARD_TASK_UPDATED, task)
            return resolved

        with self.store.transaction() as tx:
            # let the push below see the mapping as an ordinary pending change
            mapping = tx.require_mapping(task_id)
            mapping.sync_status = SyncStatus.PENDING
            tx.save_mapping(mapping)
        logger.info("Conflict on task {} resolved with local values by {}", task_id, actor_id)
        return self.sync_to_external(task_id, actor_id)

    def _apply_parked(self, tx: BoardTx, task: Task, mapping: ExternalMapping) -> None:
        parked = mapping.pending_external
        if parked.get("workflow_status"):
            old = task.workflow_status
            task.workflow_status = WorkflowStatus(parked["workflow_status"])
            self._resolution_log(tx, mapping, "workflow_status", old.value, task.workflow_status.value)
        if parked.get("priority"):
            old_priority = task.priority
            task.priority = Priority(parked["priority"])
            self._resolution_log(tx, mapping, "priority", _value(old_priority), task.priority.value)
        tx.save_task(task)

    @staticmethod
    def _resolution_log(tx: BoardTx, mapping: ExternalMapping, field_name: str, old: Optional[str], new: str) -> None:
        tx.append_log(SyncLogEntry(
            task_id=mapping.task_id,
            direction=SyncDirection.PULL,
            sync_type=SyncType.UPDATE,
            team_id=mapping.team_id,
            issue_number=mapping.issue_number,
            field_name=field_name,
            old_value=old,
            new_value=new,
            trigger=SyncTrigger.MANUAL,
        ))

    # ------------------------------------------------------------------
    # Status queries and user mappings
    # ------------------------------------------------------------------

    def get_mapping(self, task_id: str) -> Optional[ExternalMapping]:
        return self.store.read(lambda tx: tx.mapping_for_task(task_id))

    def sync_log(self, task_id: str, limit: int = 50) -> list[SyncLogEntry]:
        return self.store.read(lambda tx: tx.logs_for_task(task_id)[:limit])

    def set_user_mapping(self, team_id: str, member_id: str, github_username: str) -> UserMapping:
        with self.store.transaction() as tx:
            tx.require_team(team_id)
            mapping = tx.set_user_mapping(UserMapping(team_id=team_id, member_id=member_id, github_username=github_username))
        logger.info("Mapped member {} to GitHub user {} in team {}", member_id, github_username, team_id)
        return mapping

    def list_user_mappings(self, team_id: str) -> list[UserMapping]:
        return self.store.read(lambda tx: tx.list_user_mappings(team_id))

    def remove_user_mapping(self, team_id: str, member_id: str) -> None:
        with self.store.transaction() as tx:
            if not tx.remove_user_mapping(team_id, member_id):
                raise NotFound(f"Member {member_id} has no GitHub user mapping in team {team_id}")

    def ensure_labels(self, team_id: str, actor_id: str) -> list[str]:
        with self.store.transaction() as tx:
            scope = self._scope(tx, team_id, actor_id)
        with self.client_factory(scope.token) as client:
            return self.labels.ensure_all_labels(client, scope.owner, scope.repo)

    def unlinked_counts(self, team_id: str, actor_id: str) -> dict[str, int]:
        """Count local tasks and remote issues that are not linked yet."""
        with self.store.transaction() as tx:
            scope = self._scope(tx, team_id, actor_id)
            linked_numbers = {m.issue_number for m in tx.list_mappings(team_id)}
            unlinked_tasks = sum(1 for t in tx.list_tasks(team_id) if tx.mapping_for_task(t.id) is None)
        issues = self._list_all_issues(scope)
        return {
            "unlinked_tasks": unlinked_tasks,
            "unlinked_issues": sum(1 for issue in issues if issue.number not in linked_numbers),
        }

    # ------------------------------------------------------------------
    # Bulk import / export
    # ------------------------------------------------------------------

    def _list_all_issues(self, scope: _Scope) -> list[IssueRecord]:
        issues: list[IssueRecord] = []
        per_page = self.settings.import_page_size
        with self.client_factory(scope.token) as client:
            for page in range(1, self.settings.import_max_pages + 1):
                batch = client.list_issues(scope.owner, scope.repo, state="all", page=page, per_page=per_page)
                issues.extend(batch)
                if len(batch) < per_page:
                    break
        return issues

    def import_all_from_external(self, team_id: str, actor_id: str) -> BulkSyncResult:
        """Create a task for every issue of the team's repository not linked yet."""
        with self.store.transaction() as tx:
            scope = self._scope(tx, team_id, actor_id)
        issues = self._list_all_issues(scope)

        result = BulkSyncResult()
        created: list[Task] = []
        with self.store.transaction() as tx:
            team = tx.require_team(team_id)
            fresh = []
            for issue in issues:
                if tx.mapping_for_issue(team_id, issue.number) is not None:
                    result.skipped += 1
                else:
                    fresh.append(issue)
            # One router for the whole batch so a new prefix yields one column.
            router = ColumnRouter(tx, team)
            routes = {issue.number: router.route(issue.title) for issue in fresh}
            for issue in fresh:
                try:
                    created.append(self._task_from_issue(tx, team, issue, routes[issue.number]))
                    result.succeeded += 1
                except BoardError as exc:
                    logger.warning("Import of #{} failed: {}", issue.number, exc.message)
                    result.record_failure(issue.number, exc)

        for task in created:
            self._publish(BOARD_TASK_CREATED, task)
        logger.info(
            "Imported {}/{} into team {}: {} created, {} skipped, {} failed",
            scope.owner, scope.repo, team_id, result.succeeded, result.skipped, result.failed,
        )
        return result

    def _task_from_issue(self, tx: BoardTx, team: Team, issue: IssueRecord, route: Route) -> Task:
        if tx.mapping_for_issue(team.id, issue.number) is not None:
            raise DuplicateMapping(f"Issue #{issue.number} is already linked to a task")
        status = self.labels.status_from_labels(issue.labels)
        if status is None:
            status = WorkflowStatus.DONE if issue.is_closed else WorkflowStatus.WAITING
        task = Task(
            team_id=team.id,
            title=route.title,
            description=issue.body,
            workflow_status=status,
            priority=self.labels.priority_from_labels(issue.labels),
            column_id=route.column_id,
            due_date=issue.milestone_due_on[:10] if issue.milestone_due_on else None,
            created_by=team.leader_id,
        )
        tx.add_task(task)
        for login in issue.assignees:
            member_id = tx.member_for_username(team.id, login)
            if member_id:
                tx.add_assignee(task.id, member_id)
        now = self._now_iso()
        tx.add_mapping(ExternalMapping(
            task_id=task.id,
            team_id=team.id,
            issue_number=issue.number,
            issue_url=issue.html_url,
            sync_status=SyncStatus.SYNCED,
            last_synced_at=now,
            external_updated_at=issue.updated_at or now,
        ))
        tx.append_log(SyncLogEntry(
            task_id=task.id,
            direction=SyncDirection.PULL,
            sync_type=SyncType.CREATE,
            team_id=team.id,
            issue_number=issue.number,
            new_value=task.title,
            trigger=SyncTrigger.MANUAL,
        ))
        return task

    def export_all_to_external(self, team_id: str, actor_id: str) -> BulkSyncResult:
        """Open an issue for every team task that is not linked yet."""
        with self.store.transaction() as tx:
            scope = self._scope(tx, team_id, actor_id)
            pending = [
                (replace(task), self._assignee_logins(tx, team_id, task.id))
                for task in tx.list_tasks(team_id)
                if tx.mapping_for_task(task.id) is None
            ]

        result = BulkSyncResult()
        with self.client_factory(scope.token) as client:
            self.labels.ensure_all_labels(client, scope.owner, scope.repo)
        for task, assignees in pending:
            try:
                issue = self._create_issue(scope, task, assignees, ensure_labels=False)
                with self.store.transaction() as tx:
                    self._insert_created_mapping(tx, task, issue)
                result.succeeded += 1
            except BoardError as exc:
                logger.warning("Export of task {} failed: {}", task.id, exc.message)
                result.record_failure(task.id, exc)
        logger.info(
            "Exported team {} to {}/{}: {} created, {} failed",
            team_id, scope.owner, scope.repo, result.succeeded, result.failed,
        )
        return result

    # ------------------------------------------------------------------
    # Pull (webhooks)
    # ------------------------------------------------------------------

    def process_issue_event(self, event: IssueEvent, delivery_id: Optional[str] = None) -> WebhookResult:
        """Apply one ``issues`` webhook delivery to the board."""
        now = self.clock()
        external_at = _parse_iso(event.issue.updated_at) or now
        touched: Optional[Task] = None
        with self.store.transaction() as tx:
            if delivery_id and tx.has_delivery(delivery_id):
                logger.warning("Discarding duplicate delivery {}", delivery_id)
                return WebhookResult(status="duplicate", message=f"delivery {delivery_id} already processed")
            team = tx.find_team_by_repo(event.repository.html_url)
            if team is None:
                return WebhookResult(status="ignored", message=f"no team for {event.repository.html_url}")
            action = event.kind
            if action is None:
                return WebhookResult(status="ignored", message=f"unsupported action {event.action!r}")

            pull = _Pull(tx, team, event, action, delivery_id, external_at, now)
            result = self._dispatch_pull(pull)
            if delivery_id and not tx.logs_for_delivery(delivery_id):
                # nothing changed, but remember the delivery for the duplicate guard
                pull.log(SyncType.UPDATE)
            if pull.task is not None and pull.changes:
                touched = pull.task

        if touched is not None:
            self.dispatcher.dispatch(pull.notices)
            self._publish(BOARD_TASK_CREATED if pull.created else BOARD_TASK_UPDATED, touched)
        return result

    def _dispatch_pull(self, pull: _Pull) -> WebhookResult:
        if pull.action == IssueAction.OPENED:
            self._pull_opened(pull)
        elif pull.task is None or pull.mapping is None:
            return WebhookResult(status="ignored", message=f"issue #{pull.issue.number} is not linked")
        else:
            self._pull_handlers[pull.action](pull, pull.task, pull.mapping)
        status = "conflict" if pull.mapping and pull.mapping.sync_status == SyncStatus.CONFLICT else "processed"
        if pull.action == IssueAction.OPENED and not pull.created:
            status = "ignored"
        logger.info(
            "Pulled {} for #{} in team {}: {}",
            pull.action.value, pull.issue.number, pull.team.id, ", ".join(pull.changes) or "no changes",
        )
        return WebhookResult(status=status, task_id=pull.task.id if pull.task else None, changes=list(pull.changes))

    def _pull_opened(self, pull: _Pull) -> None:
        if pull.mapping is not None:
            return
        if not pull.team.issue_sync_enabled:
            logger.info("Issue sync disabled for team {}; not importing #{}", pull.team.id, pull.issue.number)
            return
        issue = pull.issue
        route = ColumnRouter(pull.tx, pull.team).route(issue.title)
        task = Task(
            team_id=pull.team.id,
            title=route.title,
            description=issue.body or "",
            workflow_status=self.labels.status_from_labels(issue.label_names) or WorkflowStatus.WAITING,
            priority=self.labels.priority_from_labels(issue.label_names),
            column_id=route.column_id,
            due_date=issue.due_date,
            created_by=pull.team.leader_id,
        )
        pull.tx.add_task(task)
        for login in issue.assignee_logins:
            member_id = pull.tx.member_for_username(pull.team.id, login)
            if member_id:
                pull.tx.add_assignee(task.id, member_id)
            else:
                logger.warning("No member mapped to GitHub user {} in team {}", login, pull.team.id)
        pull.mapping = pull.tx.add_mapping(ExternalMapping(
            task_id=task.id,
            team_id=pull.team.id,
            issue_number=issue.number,
            issue_url=issue.html_url,
            sync_status=SyncStatus.SYNCED,
            last_synced_at=_to_iso(pull.now),
            external_updated_at=_to_iso(pull.external_at),
        ))
        pull.task = task
        pull.created = True
        pull.log(SyncType.CREATE, "task", None, task.title)

    def _pull_edited(self, pull: _Pull, task: Task, mapping: ExternalMapping) -> None:
        title = pull.issue.title
        prefix = extract_prefix(title)
        if prefix and any(r.prefix.lower() == prefix.lower() for r in pull.tx.list_prefix_rules(pull.team.id)):
            title = strip_prefix(title, prefix)
        body = self._strip_footer(pull.issue.body or "", task.id)
        if title and title != task.title:
            pull.log(SyncType.UPDATE, "title", task.title, title)
            task.title = title
        if body != task.description:
            pull.log(SyncType.UPDATE, "description", task.description, body)
            task.description = body
        if pull.changes:
            pull.tx.save_task(task)
        pull.stamp(mapping)

    def _pull_closed(self, pull: _Pull, task: Task, mapping: ExternalMapping) -> None:
        # Closing is authoritative: no consensus guards apply.
        self._override_status(pull, task, mapping, WorkflowStatus.DONE, only_from=None)

    def _pull_reopened(self, pull: _Pull, task: Task, mapping: ExternalMapping) -> None:
        self._override_status(pull, task, mapping, WorkflowStatus.WAITING, only_from=WorkflowStatus.DONE)

    def _override_status(
        self,
        pull: _Pull,
        task: Task,
        mapping: ExternalMapping,
        target: WorkflowStatus,
        only_from: Optional[WorkflowStatus],
    ) -> None:
        current = task.workflow_status
        applied = current != target and (only_from is None or current == only_from)
        if applied:
            task.workflow_status = target
            pull.tx.save_task(task)
            pull.log(SyncType.UPDATE, "workflow_status", current.value, target.value)
        if applied or only_from is None:
            _refresh_parked(mapping, {"workflow_status": target.value})
        pull.stamp(mapping)

    def _pull_labels(self, pull: _Pull, task: Task, mapping: ExternalMapping) -> None:
        names = pull.issue.label_names
        status = self.labels.status_from_labels(names)
        priority = self.labels.priority_from_labels(names)
        observed = {"workflow_status": _value(status), "priority": _value(priority)}
        wanted: dict[str, tuple[Optional[str], str]] = {}
        if status is not None and status != task.workflow_status:
            wanted["workflow_status"] = (task.workflow_status.value, status.value)
        if priority is not None and priority != task.priority:
            wanted["priority"] = (_value(task.priority), priority.value)
        if not wanted:
            _refresh_parked(mapping, observed)
            pull.stamp(mapping)
            return

        local_at = _parse_iso(mapping.local_updated_at)
        if mapping.sync_status in _UNPUSHED and detect_conflict(
            local_at, pull.external_at, self.settings.conflict_window
        ):
            logger.warning(
                "Conflict on task {}: local change at {} vs GitHub change at {}",
                task.id, mapping.local_updated_at, _to_iso(pull.external_at),
            )
            mapping.sync_status = SyncStatus.CONFLICT
            _refresh_parked(mapping, observed)
            for field_name, (old, new) in wanted.items():
                mapping.pending_external[field_name] = new
                pull.log(SyncType.UPDATE, field_name, old, new, status=SyncLogStatus.CONFLICT)
            mapping.external_updated_at = _to_iso(pull.external_at)
            pull.tx.save_mapping(mapping)
            return

        if not should_apply_external(local_at, pull.external_at):
            logger.warning(
                "Skipping stale label change on task {}: GitHub {} is older than local {}",
                task.id, _to_iso(pull.external_at), mapping.local_updated_at,
            )
            return

        if status is not None:
            task.workflow_status = status
        if priority is not None:
            task.priority = priority
        pull.tx.save_task(task)
        for field_name, (old, new) in wanted.items():
            pull.log(SyncType.UPDATE, field_name, old, new)
        _refresh_parked(mapping, observed)
        pull.stamp(mapping)

    def _pull_assignees(self, pull: _Pull, task: Task, mapping: ExternalMapping) -> None:
        tx = pull.tx
        desired: set[str] = set()
        for login in pull.issue.assignee_logins:
            member_id = tx.member_for_username(pull.team.id, login)
            if member_id:
                desired.add(member_id)
            else:
                logger.warning("No member mapped to GitHub user {} in team {}", login, pull.team.id)
        current = {row.member_id for row in tx.list_assignees(task.id)}
        if desired != current:
            for member_id in desired - current:
                tx.add_assignee(task.id, member_id)
            for member_id in current - desired:
                tx.remove_assignee(task.id, member_id)
            pull.log(SyncType.UPDATE, "assignees", ",".join(sorted(current)), ",".join(sorted(desired)))
            outcome = workflow.apply(Command.RECALCULATE, snapshot_for(tx, task))
            if outcome.changed:
                commit_outcome(tx, task, outcome)
                pull.notices.extend(outcome.notices)
                pull.log(SyncType.UPDATE, "workflow_status", outcome.previous.value, outcome.status.value)
        pull.stamp(mapping)

    def _pull_milestone(self, pull: _Pull, task: Task, mapping: ExternalMapping) -> None:
        due = pull.issue.due_date if pull.action == IssueAction.MILESTONED else None
        if due != task.due_date:
            pull.log(SyncType.UPDATE, "due_date", task.due_date, due)
            task.due_date = due
            pull.tx.save_task(task)
        pull.stamp(mapping)
