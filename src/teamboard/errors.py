"""Error taxonomy shared by the workflow engine, sync engine, and HTTP layer."""

from __future__ import annotations

from typing import Optional


class BoardError(Exception):
    """Base class for all board errors surfaced to callers."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PreconditionFailed(BoardError):
    """The task (or mapping) is not in the state the operation requires."""

    status_code = 409

    def __init__(self, message: str, *, expected: Optional[str] = None, actual: Optional[str] = None) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual

    @classmethod
    def for_status(cls, task_id: str, action: str, expected: str, actual: str) -> "PreconditionFailed":
        return cls(
            f"Cannot {action} task {task_id}: status must be {expected}, but is {actual}",
            expected=expected,
            actual=actual,
        )


class Forbidden(BoardError):
    """The actor lacks the role required for a privileged operation."""

    status_code = 403

    def __init__(self, message: str, *, actor_id: Optional[str] = None, required: Optional[str] = None) -> None:
        super().__init__(message)
        self.actor_id = actor_id
        self.required = required


class NotFound(BoardError):
    status_code = 404


class DuplicateMapping(BoardError):
    status_code = 409


class ExternalUnavailable(BoardError):
    """An outbound call to the issue tracker failed.

    Local state has already been committed when this is raised; only the
    mapping's sync status reflects the failure.
    """

    status_code = 502


class Conflict(BoardError):
    status_code = 409


class MalformedPayload(BoardError):
    """Inbound webhook body could not be parsed."""

    status_code = 400
