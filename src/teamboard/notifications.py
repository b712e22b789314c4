"""Notice delivery and board events.

The workflow engine hands every committed outcome's notices to a
:class:`NotificationDispatcher` and announces the task change on the team's
board channel through the :class:`EventBus`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from loguru import logger

from .io_utils import _append_jsonl, _read_jsonl_tail
from .task_engine.workflow import Notice

BOARD_TASK_CREATED = "TASK_CREATED"
BOARD_TASK_UPDATED = "TASK_UPDATED"


def team_channel(team_id: str) -> str:
    return f"team:{team_id}"


class NotificationDispatcher(ABC):
    """Receives (recipient, event, entity) notices after a commit."""

    @abstractmethod
    def dispatch(self, notices: Iterable[Notice]) -> None:
        raise NotImplementedError


class FileNotificationDispatcher(NotificationDispatcher):
    """Log each notice and append it to ``notifications.jsonl``."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def dispatch(self, notices: Iterable[Notice]) -> None:
        for notice in notices:
            logger.info(
                "Notify {} of {} on {} (by {})",
                notice.recipient_id,
                notice.kind.value,
                notice.task_id,
                notice.actor_id,
            )
            _append_jsonl(self.path, notice.to_dict())

    def recent(self, limit: int = 100) -> list[dict[str, Any]]:
        return _read_jsonl_tail(self.path, limit)


class RecordingDispatcher(NotificationDispatcher):
    """Keep notices in memory; handy for embedding and tests."""

    def __init__(self) -> None:
        self.notices: list[Notice] = []

    def dispatch(self, notices: Iterable[Notice]) -> None:
        self.notices.extend(notices)


Subscriber = Callable[[dict[str, Any]], None]


class EventBus:
    """Append board events to a JSONL file and fan them out to in-process subscribers."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path
        self._subscribers: list[Subscriber] = []

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        self._subscribers.append(fn)
        return lambda: self._subscribers.remove(fn)

    def emit(self, *, channel: str, event_type: str, entity_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        event = {
            "channel": channel,
            "type": event_type,
            "entity_id": entity_id,
            "payload": payload,
        }
        if self._path is not None:
            _append_jsonl(self._path, event)
        for fn in list(self._subscribers):
            try:
                fn(event)
            except Exception:
                # A broken subscriber must not undo a committed change.
                logger.exception("Board event subscriber failed for {} on {}", event_type, channel)
        return event

    def recent(self, limit: int = 100) -> list[dict[str, Any]]:
        if self._path is None:
            return []
        return _read_jsonl_tail(self._path, limit)
