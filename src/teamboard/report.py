"""Plain-text rendering of a task's lifecycle and sync state for the terminal."""

from __future__ import annotations

import io
from typing import Any

from rich.console import Console
from rich.table import Table


def _mark(flag: bool) -> str:
    return "yes" if flag else "-"


def format_task_detail(detail: dict[str, Any]) -> str:
    """Format a ``WorkflowEngine.get_task_detail`` payload as rich text.

    Args:
        detail: Task detail (task, assignees, verifiers, consensus, mapping).

    Returns:
        Formatted text.
    """
    task = detail["task"]
    console = Console(record=True, width=80, file=io.StringIO())

    console.print()
    console.print(f"[bold]Task: {task['id']}[/bold]  {task['title']}")
    console.print("━" * 80)

    summary = Table(show_header=False, box=None)
    summary.add_row("Status:", task["workflow_status"])
    summary.add_row("Priority:", task.get("priority") or "none")
    if task.get("due_date"):
        summary.add_row("Due:", task["due_date"])
    if task.get("rejection_reason"):
        summary.add_row("Rejected:", f"{task['rejection_reason']} ({task.get('rejected_by')})")
    console.print(summary)

    if detail["assignees"]:
        assignees = Table(title="Assignees", box=None)
        assignees.add_column("Member")
        assignees.add_column("Accepted")
        assignees.add_column("Completed")
        for row in detail["assignees"]:
            assignees.add_row(row["member_id"], _mark(row["accepted"]), _mark(row["completed"]))
        console.print(assignees)

    if detail["verifiers"]:
        verifiers = Table(title="Verifiers", box=None)
        verifiers.add_column("Member")
        verifiers.add_column("Approved")
        for row in detail["verifiers"]:
            verifiers.add_row(row["member_id"], _mark(row["approved"]))
        console.print(verifiers)

    mapping = detail.get("mapping")
    if mapping:
        console.print(f"\n[bold]Issue:[/bold] #{mapping['issue_number']} ({mapping['sync_status']})")
        for field_name, value in (mapping.get("pending_external") or {}).items():
            console.print(f"  [dim]pending {field_name}: {value}[/dim]")
    else:
        console.print("\n[dim]Not linked to an issue[/dim]")

    console.print("━" * 80)
    return console.export_text()
