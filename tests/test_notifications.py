"""Tests for notice dispatch and the board event bus."""

from __future__ import annotations

from pathlib import Path

from teamboard.notifications import EventBus, FileNotificationDispatcher, team_channel
from teamboard.task_engine.workflow import Notice, NoticeKind


def test_file_dispatcher_appends_jsonl(tmp_path: Path) -> None:
    dispatcher = FileNotificationDispatcher(tmp_path / "notifications.jsonl")
    dispatcher.dispatch([
        Notice("alice", NoticeKind.TASK_REJECTED, "task-1", actor_id="vera", reason="tests missing"),
        Notice("bob", NoticeKind.TASK_REJECTED, "task-1", actor_id="vera", reason="tests missing"),
    ])
    recent = dispatcher.recent()
    assert [r["recipient_id"] for r in recent] == ["alice", "bob"]
    assert recent[0]["kind"] == "TASK_REJECTED"
    assert "ts" in recent[0]


def test_event_bus_persists_and_unsubscribes(tmp_path: Path) -> None:
    bus = EventBus(tmp_path / "events.jsonl")
    seen: list[dict] = []
    unsubscribe = bus.subscribe(seen.append)

    bus.emit(channel=team_channel("team-1"), event_type="TASK_UPDATED", entity_id="task-1", payload={"x": 1})
    unsubscribe()
    bus.emit(channel=team_channel("team-1"), event_type="TASK_UPDATED", entity_id="task-2", payload={})

    assert [e["entity_id"] for e in seen] == ["task-1"]
    assert [e["entity_id"] for e in bus.recent(limit=10)] == ["task-1", "task-2"]
    assert bus.recent()[0]["channel"] == "team:team-1"


def test_in_memory_bus_has_no_history() -> None:
    bus = EventBus()
    bus.emit(channel="team:t", event_type="TASK_CREATED", entity_id="task-1", payload={})
    assert bus.recent() == []
