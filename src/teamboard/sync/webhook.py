"""Inbound ``issues`` webhook payloads and delivery signature checks."""

from __future__ import annotations

import hashlib
import hmac
import json
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import MalformedPayload


class IssueAction(str, Enum):
    OPENED = "opened"
    EDITED = "edited"
    CLOSED = "closed"
    REOPENED = "reopened"
    LABELED = "labeled"
    UNLABELED = "unlabeled"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    MILESTONED = "milestoned"
    DEMILESTONED = "demilestoned"


# ---------------------------------------------------------------------------
# Payload models (only the fields the sync engine reads)
# ---------------------------------------------------------------------------

class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class LabelPayload(_Lenient):
    name: str


class UserPayload(_Lenient):
    login: str


class MilestonePayload(_Lenient):
    due_on: Optional[str] = None


class IssuePayload(_Lenient):
    number: int
    title: str = ""
    body: Optional[str] = None
    state: str = "open"
    labels: list[LabelPayload] = Field(default_factory=list)
    assignees: list[UserPayload] = Field(default_factory=list)
    milestone: Optional[MilestonePayload] = None
    html_url: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]

    @property
    def assignee_logins(self) -> list[str]:
        return [user.login for user in self.assignees]

    @property
    def due_date(self) -> Optional[str]:
        if self.milestone and self.milestone.due_on:
            return self.milestone.due_on[:10]
        return None


class RepositoryPayload(_Lenient):
    html_url: str


class IssueEvent(_Lenient):
    action: str
    issue: IssuePayload
    repository: RepositoryPayload

    @property
    def kind(self) -> Optional[IssueAction]:
        try:
            return IssueAction(self.action)
        except ValueError:
            return None


def parse_issue_event(body: Union[bytes, str, dict[str, Any]]) -> IssueEvent:
    """Parse an ``issues`` event body, raising MalformedPayload on bad input."""
    try:
        data = json.loads(body) if isinstance(body, (bytes, str)) else body
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedPayload(f"Webhook body is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedPayload("Webhook body must be a JSON object")
    try:
        return IssueEvent.model_validate(data)
    except ValidationError as exc:
        raise MalformedPayload(f"Webhook body is missing required fields: {exc.error_count()} error(s)") from exc


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw body."""
    if not signature or not signature.startswith("sha256="):
        return False
    expected = "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)
