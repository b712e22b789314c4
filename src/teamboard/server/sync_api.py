"""GitHub issue sync endpoints, mounted under ``/api/github/issues``."""

from __future__ import annotations

from typing import Any, Callable

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..container import BoardContainer
from ..sync.model import ConflictResolution


class TaskActionRequest(BaseModel):
    task_id: str
    actor_id: str


class LinkRequest(TaskActionRequest):
    issue_number: int


class ResolveRequest(TaskActionRequest):
    resolution: str


class TeamActionRequest(BaseModel):
    team_id: str
    actor_id: str


class UserMappingRequest(BaseModel):
    team_id: str
    member_id: str
    github_username: str


def create_sync_router(get_container: Callable[[], BoardContainer]) -> APIRouter:
    """Create the issue sync router.

    The handlers are plain ``def`` functions: pushes and bulk operations block
    on GitHub, so FastAPI runs them in its threadpool.
    """
    router = APIRouter(prefix="/api/github/issues", tags=["github-sync"])

    @router.post("/link", status_code=201)
    def link(body: LinkRequest) -> dict[str, Any]:
        mapping = get_container().sync.link_to_external(body.task_id, body.issue_number, body.actor_id)
        return {"mapping": mapping.to_dict()}

    @router.post("/unlink")
    def unlink(body: TaskActionRequest) -> dict[str, Any]:
        get_container().sync.unlink_from_external(body.task_id, body.actor_id)
        return {"unlinked": True, "task_id": body.task_id}

    @router.post("/create-from-task", status_code=201)
    def create_from_task(body: TaskActionRequest) -> dict[str, Any]:
        mapping = get_container().sync.create_external_from_task(body.task_id, body.actor_id)
        return {"mapping": mapping.to_dict()}

    @router.post("/push")
    def push(body: TaskActionRequest) -> dict[str, Any]:
        mapping = get_container().sync.sync_to_external(body.task_id, body.actor_id)
        return {"mapping": mapping.to_dict()}

    @router.get("/status/{task_id}")
    def status(task_id: str, limit: int = 20) -> dict[str, Any]:
        sync = get_container().sync
        mapping = sync.get_mapping(task_id)
        return {
            "linked": mapping is not None,
            "mapping": mapping.to_dict() if mapping else None,
            "log": [entry.to_dict() for entry in sync.sync_log(task_id, limit)],
        }

    @router.get("/conflicts")
    def conflicts(team_id: str) -> dict[str, Any]:
        mappings = get_container().sync.list_conflicts(team_id)
        return {"conflicts": [m.to_dict() for m in mappings], "total": len(mappings)}

    @router.post("/resolve")
    def resolve(body: ResolveRequest) -> dict[str, Any]:
        try:
            resolution = ConflictResolution(body.resolution.upper())
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"resolution must be one of {[r.value for r in ConflictResolution]}",
            ) from None
        mapping = get_container().sync.resolve_conflict(body.task_id, resolution, body.actor_id)
        return {"mapping": mapping.to_dict()}

    # -- user mappings ------------------------------------------------------

    @router.get("/user-mappings")
    def list_user_mappings(team_id: str) -> dict[str, Any]:
        return {"user_mappings": [u.to_dict() for u in get_container().sync.list_user_mappings(team_id)]}

    @router.put("/user-mappings")
    def set_user_mapping(body: UserMappingRequest) -> dict[str, Any]:
        mapping = get_container().sync.set_user_mapping(body.team_id, body.member_id, body.github_username)
        return {"user_mapping": mapping.to_dict()}

    @router.delete("/user-mappings/{team_id}/{member_id}")
    def remove_user_mapping(team_id: str, member_id: str) -> dict[str, Any]:
        get_container().sync.remove_user_mapping(team_id, member_id)
        return {"removed": True}

    # -- bulk ---------------------------------------------------------------

    @router.post("/labels")
    def ensure_labels(body: TeamActionRequest) -> dict[str, Any]:
        return {"created": get_container().sync.ensure_labels(body.team_id, body.actor_id)}

    @router.post("/import")
    def import_all(body: TeamActionRequest) -> dict[str, Any]:
        return get_container().sync.import_all_from_external(body.team_id, body.actor_id).to_dict()

    @router.post("/export")
    def export_all(body: TeamActionRequest) -> dict[str, Any]:
        return get_container().sync.export_all_to_external(body.team_id, body.actor_id).to_dict()

    @router.get("/unlinked-counts")
    def unlinked_counts(team_id: str, actor_id: str) -> dict[str, Any]:
        return get_container().sync.unlinked_counts(team_id, actor_id)

    return router
