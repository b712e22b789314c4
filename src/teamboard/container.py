from __future__ import annotations

from pathlib import Path
from typing import Optional

from .config import BoardSettings, load_settings
from .constants import EVENTS_FILE, NOTIFICATIONS_FILE, STATE_DIR_NAME
from .notifications import EventBus, FileNotificationDispatcher, NotificationDispatcher
from .sync.engine import SyncEngine
from .sync.github import ClientFactory
from .task_engine.engine import WorkflowEngine
from .task_engine.store import BoardStore


class BoardContainer:
    """Wire the store, engines, dispatcher and event bus for one project directory."""

    def __init__(
        self,
        project_dir: Path,
        *,
        settings: Optional[BoardSettings] = None,
        client_factory: Optional[ClientFactory] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> None:
        self.project_dir = project_dir.resolve()
        self.state_dir = self.project_dir / STATE_DIR_NAME
        self.settings = settings or load_settings(self.project_dir)

        self.store = BoardStore(self.state_dir)
        self.events = EventBus(self.state_dir / EVENTS_FILE)
        self.dispatcher = dispatcher or FileNotificationDispatcher(self.state_dir / NOTIFICATIONS_FILE)
        self.sync = SyncEngine(
            self.store,
            settings=self.settings,
            client_factory=client_factory,
            dispatcher=self.dispatcher,
            events=self.events,
        )
        self.workflow = WorkflowEngine(
            self.store,
            dispatcher=self.dispatcher,
            events=self.events,
            sync=self.sync,
        )
