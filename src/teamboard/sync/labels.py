"""Bidirectional mapping between task status/priority and issue labels.

The tables are immutable and shared process-wide.  Callers receive a
:class:`LabelMapper` by reference (the sync engine takes one in its
constructor), so tests can inject their own tables.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from loguru import logger

from ..task_engine.model import Priority, WorkflowStatus

if TYPE_CHECKING:
    from .github import GitHubIssueClient

STATUS_PREFIX = "status:"
PRIORITY_PREFIX = "priority:"


@dataclass(frozen=True)
class LabelSpec:
    name: str
    color: str
    description: str


STATUS_LABELS: Mapping[WorkflowStatus, LabelSpec] = MappingProxyType({
    WorkflowStatus.WAITING: LabelSpec("status:waiting", "94a3b8", "Task is waiting to be started"),
    WorkflowStatus.IN_PROGRESS: LabelSpec("status:in-progress", "3b82f6", "Task is in progress"),
    WorkflowStatus.REVIEW: LabelSpec("status:review", "f59e0b", "Task is under review"),
    WorkflowStatus.DONE: LabelSpec("status:done", "10b981", "Task is completed"),
    WorkflowStatus.REJECTED: LabelSpec("status:rejected", "ef4444", "Task was rejected during review"),
    WorkflowStatus.DECLINED: LabelSpec("status:declined", "6b7280", "Task was declined"),
})

PRIORITY_LABELS: Mapping[Priority, LabelSpec] = MappingProxyType({
    Priority.CRITICAL: LabelSpec("priority:critical", "dc2626", "Critical priority"),
    Priority.HIGH: LabelSpec("priority:high", "f97316", "High priority"),
    Priority.MEDIUM: LabelSpec("priority:medium", "eab308", "Medium priority"),
    Priority.LOW: LabelSpec("priority:low", "22c55e", "Low priority"),
})


class LabelMapper:
    """Translate between enums and label names; maintain labels on issues."""

    def __init__(
        self,
        status_labels: Mapping[WorkflowStatus, LabelSpec] = STATUS_LABELS,
        priority_labels: Mapping[Priority, LabelSpec] = PRIORITY_LABELS,
    ) -> None:
        self._status_labels = status_labels
        self._priority_labels = priority_labels
        self._status_by_name = {spec.name.lower(): status for status, spec in status_labels.items()}
        self._priority_by_name = {spec.name.lower(): prio for prio, spec in priority_labels.items()}
        if len(self._status_by_name) != len(status_labels) or len(self._priority_by_name) != len(priority_labels):
            raise ValueError("Label tables must map one label per value")

    # -- pure mapping -------------------------------------------------------

    def status_label(self, status: WorkflowStatus) -> str:
        return self._status_labels[status].name

    def priority_label(self, priority: Optional[Priority]) -> Optional[str]:
        if priority is None:
            return None
        return self._priority_labels[priority].name

    def status_for_label(self, name: str) -> Optional[WorkflowStatus]:
        return self._status_by_name.get(name.strip().lower())

    def priority_for_label(self, name: str) -> Optional[Priority]:
        return self._priority_by_name.get(name.strip().lower())

    def status_from_labels(self, names: Iterable[str]) -> Optional[WorkflowStatus]:
        """First recognised status label wins; unknown labels are ignored."""
        for name in names:
            status = self.status_for_label(name)
            if status is not None:
                return status
        return None

    def priority_from_labels(self, names: Iterable[str]) -> Optional[Priority]:
        for name in names:
            priority = self.priority_for_label(name)
            if priority is not None:
                return priority
        return None

    def labels_for(self, status: WorkflowStatus, priority: Optional[Priority]) -> list[str]:
        labels = [self.status_label(status)]
        priority_name = self.priority_label(priority)
        if priority_name:
            labels.append(priority_name)
        return labels

    def all_specs(self) -> list[LabelSpec]:
        return [*self._status_labels.values(), *self._priority_labels.values()]

    # -- remote maintenance -------------------------------------------------

    def ensure_all_labels(self, client: "GitHubIssueClient", owner: str, repo: str) -> list[str]:
        """Create any missing labels in the repository; return the names created."""
        existing = {name.lower() for name in client.list_labels(owner, repo)}
        created: list[str] = []
        for spec in self.all_specs():
            if spec.name.lower() in existing:
                continue
            client.create_label(owner, repo, spec.name, spec.color, spec.description)
            created.append(spec.name)
        if created:
            logger.info("Created {} labels in {}/{}: {}", len(created), owner, repo, ", ".join(created))
        return created

    def update_status_label(
        self,
        client: "GitHubIssueClient",
        owner: str,
        repo: str,
        number: int,
        status: WorkflowStatus,
        current: list[str],
    ) -> list[str]:
        return self._replace_category(
            client, owner, repo, number, STATUS_PREFIX, self.status_label(status), current
        )

    def update_priority_label(
        self,
        client: "GitHubIssueClient",
        owner: str,
        repo: str,
        number: int,
        priority: Optional[Priority],
        current: list[str],
    ) -> list[str]:
        return self._replace_category(
            client, owner, repo, number, PRIORITY_PREFIX, self.priority_label(priority), current
        )

    def _replace_category(
        self,
        client: "GitHubIssueClient",
        owner: str,
        repo: str,
        number: int,
        prefix: str,
        wanted: Optional[str],
        current: list[str],
    ) -> list[str]:
        """Remove stale labels of one category before adding the wanted one."""
        labels = list(current)
        for name in list(labels):
            if not name.lower().startswith(prefix):
                continue
            if wanted is not None and name.lower() == wanted.lower():
                continue
            client.remove_label(owner, repo, number, name)
            labels.remove(name)
        if wanted is not None and wanted.lower() not in {name.lower() for name in labels}:
            client.add_labels(owner, repo, number, [wanted])
            labels.append(wanted)
        return labels


DEFAULT_LABELS = LabelMapper()
