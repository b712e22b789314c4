"""Shared fixtures: a temp board store, both engines wired to a fake GitHub, and a seeded team."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from teamboard.config import BoardSettings
from teamboard.notifications import EventBus, RecordingDispatcher
from teamboard.sync.engine import SyncEngine
from teamboard.task_engine.engine import WorkflowEngine
from teamboard.task_engine.model import Team
from teamboard.task_engine.store import BoardStore

from fakes import REPO_URL, FakeGitHub, FrozenClock


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".teamboard"
    d.mkdir()
    return d


@pytest.fixture
def store(state_dir: Path) -> BoardStore:
    return BoardStore(state_dir)


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def settings() -> BoardSettings:
    return BoardSettings()


@pytest.fixture
def sync(store, github, clock, dispatcher, events, settings) -> SyncEngine:
    return SyncEngine(
        store,
        settings=settings,
        client_factory=github.factory,
        dispatcher=dispatcher,
        events=events,
        clock=clock,
    )


@pytest.fixture
def engine(store, sync, dispatcher, events) -> WorkflowEngine:
    return WorkflowEngine(store, dispatcher=dispatcher, events=events, sync=sync)


@pytest.fixture
def team(engine: WorkflowEngine) -> Team:
    """Team ``widgets`` led by ``lead``; lead and alice hold GitHub tokens."""
    engine.register_member("lead", "Lead", github_token="tok-lead")
    engine.register_member("alice", "Alice", github_token="tok-alice")
    engine.register_member("bob", "Bob")
    engine.register_member("vera", "Vera")
    return engine.create_team("widgets", leader_id="lead", repo_url=REPO_URL, issue_sync_enabled=True)
