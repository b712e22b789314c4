"""Consensus predicates over a task's role rows.

Computed fresh from the rows on every check.  An empty role set never counts
as unanimous: a task with no assignees never leaves WAITING, and a task with
no verifiers never reaches DONE through approval.
"""

from __future__ import annotations

from typing import Iterable

from .model import Assignee, Verifier


def all_accepted(assignees: Iterable[Assignee]) -> bool:
    rows = list(assignees)
    return bool(rows) and all(a.accepted for a in rows)


def all_completed(assignees: Iterable[Assignee]) -> bool:
    rows = list(assignees)
    return bool(rows) and all(a.completed for a in rows)


def all_approved(verifiers: Iterable[Verifier]) -> bool:
    rows = list(verifiers)
    return bool(rows) and all(v.approved for v in rows)


def summarize(assignees: list[Assignee], verifiers: list[Verifier]) -> dict[str, object]:
    """Counts and predicate results, as shown on the task detail view."""
    return {
        "assignees": len(assignees),
        "accepted": sum(1 for a in assignees if a.accepted),
        "completed": sum(1 for a in assignees if a.completed),
        "verifiers": len(verifiers),
        "approved": sum(1 for v in verifiers if v.approved),
        "all_accepted": all_accepted(assignees),
        "all_completed": all_completed(assignees),
        "all_approved": all_approved(verifiers),
    }
