"""GitHub webhook endpoint."""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, Header, HTTPException, Request
from loguru import logger
from starlette.concurrency import run_in_threadpool

from ..container import BoardContainer
from ..sync.webhook import parse_issue_event, verify_signature


def create_webhook_router(get_container: Callable[[], BoardContainer]) -> APIRouter:
    router = APIRouter(prefix="/api/webhook", tags=["webhook"])

    @router.post("/github")
    async def github_webhook(
        request: Request,
        x_github_event: Optional[str] = Header(default=None),
        x_github_delivery: Optional[str] = Header(default=None),
        x_hub_signature_256: Optional[str] = Header(default=None),
    ) -> dict[str, Any]:
        container = get_container()
        body = await request.body()

        secret = container.settings.webhook_secret
        if secret and not verify_signature(secret, body, x_hub_signature_256):
            logger.warning("Rejected webhook delivery {} with a bad signature", x_github_delivery)
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

        if x_github_event == "ping":
            return {"status": "pong"}
        if x_github_event != "issues":
            return {"status": "ignored", "message": f"event {x_github_event!r} is not handled"}

        # MalformedPayload propagates to the app's BoardError handler (400).
        event = parse_issue_event(body)
        result = await run_in_threadpool(container.sync.process_issue_event, event, x_github_delivery)
        return result.to_dict()

    return router
