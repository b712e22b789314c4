"""FastAPI application factory for the team board."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..config import BoardSettings
from ..container import BoardContainer
from ..errors import BoardError
from ..notifications import NotificationDispatcher
from ..sync.github import ClientFactory
from .board_api import create_board_router
from .sync_api import create_sync_router
from .webhook_api import create_webhook_router


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
    settings: Optional[BoardSettings] = None,
    client_factory: Optional[ClientFactory] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        project_dir: Directory holding ``.teamboard/`` (default: current directory).
        enable_cors: Whether to enable CORS.
        settings: Settings override; loaded from the project config when omitted.
        client_factory: GitHub client factory override (tests inject a fake transport).
        dispatcher: Notification dispatcher override.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Team Board",
        description="Consensus task lifecycle with GitHub issue sync",
        version="1.0.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    container = BoardContainer(
        project_dir or Path.cwd(),
        settings=settings,
        client_factory=client_factory,
        dispatcher=dispatcher,
    )
    app.state.container = container

    def get_container() -> BoardContainer:
        return app.state.container

    @app.exception_handler(BoardError)
    async def board_error_handler(request: Request, exc: BoardError) -> JSONResponse:
        logger.info("{} {} -> {}: {}", request.method, request.url.path, type(exc).__name__, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": type(exc).__name__},
        )

    @app.get("/")
    async def root():
        return {"name": "Team Board", "version": "1.0.0", "status": "running"}

    app.include_router(create_board_router(get_container))
    app.include_router(create_sync_router(get_container))
    app.include_router(create_webhook_router(get_container))
    return app
