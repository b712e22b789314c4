"""Board API: teams, members, columns, tasks, and lifecycle commands.

Lifecycle commands are mounted as ``POST /api/tasks/{task_id}/{command}``
where ``command`` is one of accept, complete, approve, reject, decline,
restart, force-complete or recalculate.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..container import BoardContainer
from ..task_engine.model import Priority
from ..task_engine.workflow import Command


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

class CreateTeamRequest(BaseModel):
    name: str
    leader_id: Optional[str] = None
    repo_url: Optional[str] = None
    issue_sync_enabled: bool = False


class RegisterMemberRequest(BaseModel):
    id: str
    name: str = ""
    github_token: Optional[str] = None


class CreateColumnRequest(BaseModel):
    title: str


class CreateTaskRequest(BaseModel):
    team_id: str
    title: str
    description: str = ""
    priority: Optional[str] = None
    column_id: Optional[str] = None
    due_date: Optional[str] = None
    created_by: Optional[str] = None
    assignee_ids: list[str] = Field(default_factory=list)
    verifier_ids: list[str] = Field(default_factory=list)


class RoleRequest(BaseModel):
    member_id: str
    actor_id: Optional[str] = None


class CommandRequest(BaseModel):
    actor_id: Optional[str] = None
    reason: Optional[str] = None


def _parse_priority(raw: Optional[str]) -> Optional[Priority]:
    if raw is None:
        return None
    try:
        return Priority(raw.upper())
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"priority must be one of {[p.value for p in Priority]}, got {raw!r}",
        ) from None


def _parse_command(raw: str) -> Command:
    try:
        return Command(raw.replace("-", "_"))
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown command: {raw}") from None


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_board_router(get_container: Callable[[], BoardContainer]) -> APIRouter:
    """Create the board API router.

    Parameters
    ----------
    get_container:
        Returns the :class:`BoardContainer` serving the request.
    """
    router = APIRouter(prefix="/api", tags=["board"])

    # -- directory ----------------------------------------------------------

    @router.post("/teams", status_code=201)
    def create_team(body: CreateTeamRequest) -> dict[str, Any]:
        team = get_container().workflow.create_team(
            body.name,
            leader_id=body.leader_id,
            repo_url=body.repo_url,
            issue_sync_enabled=body.issue_sync_enabled,
        )
        return {"team": team.to_dict()}

    @router.get("/teams")
    def list_teams() -> dict[str, Any]:
        teams = get_container().store.read(lambda tx: tx.list_teams())
        return {"teams": [t.to_dict() for t in teams]}

    @router.post("/members", status_code=201)
    def register_member(body: RegisterMemberRequest) -> dict[str, Any]:
        member = get_container().workflow.register_member(body.id, body.name, body.github_token)
        return {"member": {"id": member.id, "name": member.name, "has_github_token": bool(member.github_token)}}

    @router.post("/teams/{team_id}/columns", status_code=201)
    def create_column(team_id: str, body: CreateColumnRequest) -> dict[str, Any]:
        column = get_container().workflow.create_column(team_id, body.title)
        return {"column": column.to_dict()}

    @router.get("/teams/{team_id}/columns")
    def list_columns(team_id: str) -> dict[str, Any]:
        columns = get_container().store.read(lambda tx: tx.list_columns(team_id))
        return {"columns": [c.to_dict() for c in columns]}

    @router.get("/teams/{team_id}/tasks")
    def list_team_tasks(team_id: str) -> dict[str, Any]:
        tasks = get_container().store.read(lambda tx: tx.list_tasks(team_id))
        return {"tasks": [t.to_dict() for t in tasks], "total": len(tasks)}

    # -- tasks --------------------------------------------------------------

    @router.post("/tasks", status_code=201)
    def create_task(body: CreateTaskRequest) -> dict[str, Any]:
        container = get_container()
        task = container.workflow.create_task(
            body.team_id,
            body.title,
            description=body.description,
            priority=_parse_priority(body.priority),
            column_id=body.column_id,
            due_date=body.due_date,
            created_by=body.created_by,
            assignee_ids=tuple(body.assignee_ids),
            verifier_ids=tuple(body.verifier_ids),
        )
        return container.workflow.get_task_detail(task.id)

    @router.get("/tasks/{task_id}")
    def get_task(task_id: str) -> dict[str, Any]:
        return get_container().workflow.get_task_detail(task_id)

    @router.post("/tasks/{task_id}/assignees")
    def add_assignee(task_id: str, body: RoleRequest) -> dict[str, Any]:
        return get_container().workflow.add_assignee(task_id, body.member_id, body.actor_id).to_dict()

    @router.delete("/tasks/{task_id}/assignees/{member_id}")
    def remove_assignee(task_id: str, member_id: str, actor_id: Optional[str] = None) -> dict[str, Any]:
        return get_container().workflow.remove_assignee(task_id, member_id, actor_id).to_dict()

    @router.post("/tasks/{task_id}/verifiers")
    def add_verifier(task_id: str, body: RoleRequest) -> dict[str, Any]:
        return get_container().workflow.add_verifier(task_id, body.member_id, body.actor_id).to_dict()

    @router.delete("/tasks/{task_id}/verifiers/{member_id}")
    def remove_verifier(task_id: str, member_id: str, actor_id: Optional[str] = None) -> dict[str, Any]:
        return get_container().workflow.remove_verifier(task_id, member_id, actor_id).to_dict()

    # -- lifecycle commands -------------------------------------------------

    @router.post("/tasks/{task_id}/{command}")
    def run_command(task_id: str, command: str, body: CommandRequest) -> dict[str, Any]:
        parsed = _parse_command(command)
        if parsed != Command.RECALCULATE and not body.actor_id:
            raise HTTPException(status_code=400, detail=f"actor_id is required for {command}")
        result = get_container().workflow.execute(parsed, task_id, body.actor_id, body.reason)
        return result.to_dict()

    return router
