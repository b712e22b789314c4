"""Synchronous GitHub REST client for the issue endpoints the sync engine uses."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx
from loguru import logger

from ..constants import DEFAULT_API_BASE, DEFAULT_TIMEOUT_SECONDS
from ..errors import ExternalUnavailable, NotFound, PreconditionFailed

_REPO_URL_RE = re.compile(r"https://github\.com/([^/]+)/([^/.]+)(?:\.git)?/?$")


def parse_repo_url(url: Optional[str]) -> tuple[str, str]:
    """Split ``https://github.com/<owner>/<repo>[.git]`` into ``(owner, repo)``."""
    match = _REPO_URL_RE.match((url or "").strip())
    if not match:
        raise PreconditionFailed(
            f"Invalid GitHub repository URL: {url!r}",
            expected="https://github.com/<owner>/<repo>",
            actual=str(url),
        )
    return match.group(1), match.group(2)


@dataclass
class IssueRecord:
    """The subset of an issue the sync engine reads."""

    number: int
    title: str = ""
    body: str = ""
    state: str = "open"
    labels: list[str] = field(default_factory=list)
    assignees: list[str] = field(default_factory=list)
    milestone_due_on: Optional[str] = None
    html_url: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.state.lower() == "closed"

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "IssueRecord":
        milestone = data.get("milestone") or {}
        return cls(
            number=int(data["number"]),
            title=data.get("title") or "",
            body=data.get("body") or "",
            state=data.get("state") or "open",
            labels=[str(lbl.get("name")) for lbl in data.get("labels") or [] if isinstance(lbl, dict) and lbl.get("name")],
            assignees=[str(u.get("login")) for u in data.get("assignees") or [] if isinstance(u, dict) and u.get("login")],
            milestone_due_on=milestone.get("due_on") if isinstance(milestone, dict) else None,
            html_url=data.get("html_url"),
            updated_at=data.get("updated_at"),
        )


class GitHubIssueClient:
    """Thin wrapper over ``httpx.Client`` authenticated with one member's token.

    Transport failures and non-success responses surface as
    :class:`ExternalUnavailable`; a missing issue surfaces as :class:`NotFound`.
    """

    def __init__(
        self,
        token: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=api_base.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"token {token}",
                "Accept": "application/vnd.github.v3+json",
            },
        )

    def __enter__(self) -> "GitHubIssueClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
        ok_statuses: tuple[int, ...] = (),
    ) -> httpx.Response:
        try:
            resp = self._client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            logger.error("GitHub {} {} failed: {}", method, path, exc)
            raise ExternalUnavailable(f"GitHub request failed: {method} {path}: {exc}") from exc
        if resp.status_code in ok_statuses or resp.is_success:
            return resp
        if resp.status_code == 404:
            raise NotFound(f"GitHub resource not found: {path}")
        logger.error("GitHub {} {} returned {}: {}", method, path, resp.status_code, resp.text[:200])
        raise ExternalUnavailable(f"GitHub returned {resp.status_code} for {method} {path}")

    # -- issues -------------------------------------------------------------

    def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        labels: list[str],
        assignees: list[str],
    ) -> IssueRecord:
        payload: dict[str, Any] = {"title": title, "body": body, "labels": labels}
        if assignees:
            payload["assignees"] = assignees
        resp = self._request("POST", f"/repos/{owner}/{repo}/issues", json=payload)
        return IssueRecord.from_payload(resp.json())

    def get_issue(self, owner: str, repo: str, number: int) -> IssueRecord:
        resp = self._request("GET", f"/repos/{owner}/{repo}/issues/{number}")
        return IssueRecord.from_payload(resp.json())

    def list_issues(
        self,
        owner: str,
        repo: str,
        *,
        state: str = "all",
        page: int = 1,
        per_page: int = 30,
    ) -> list[IssueRecord]:
        resp = self._request(
            "GET",
            f"/repos/{owner}/{repo}/issues",
            params={"state": state, "page": page, "per_page": per_page},
        )
        # The issues endpoint also returns pull requests.
        return [IssueRecord.from_payload(item) for item in resp.json() if "pull_request" not in item]

    def update_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        title: Optional[str] = None,
        body: Optional[str] = None,
        state: Optional[str] = None,
    ) -> IssueRecord:
        payload = {k: v for k, v in (("title", title), ("body", body), ("state", state)) if v is not None}
        resp = self._request("PATCH", f"/repos/{owner}/{repo}/issues/{number}", json=payload)
        return IssueRecord.from_payload(resp.json())

    # -- labels -------------------------------------------------------------

    def add_labels(self, owner: str, repo: str, number: int, names: list[str]) -> None:
        self._request("POST", f"/repos/{owner}/{repo}/issues/{number}/labels", json={"labels": names})

    def remove_label(self, owner: str, repo: str, number: int, name: str) -> None:
        try:
            self._request("DELETE", f"/repos/{owner}/{repo}/issues/{number}/labels/{quote(name, safe='')}")
        except NotFound:
            logger.debug("Label {} already absent from {}/{}#{}", name, owner, repo, number)

    def list_labels(self, owner: str, repo: str) -> list[str]:
        resp = self._request("GET", f"/repos/{owner}/{repo}/labels", params={"per_page": 100})
        return [str(item["name"]) for item in resp.json() if isinstance(item, dict) and item.get("name")]

    def create_label(self, owner: str, repo: str, name: str, color: str, description: str) -> None:
        # 422 means the label already exists.
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/labels",
            json={"name": name, "color": color, "description": description},
            ok_statuses=(422,),
        )


ClientFactory = Callable[[str], GitHubIssueClient]


def make_client_factory(
    api_base: str = DEFAULT_API_BASE,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    transport: Optional[httpx.BaseTransport] = None,
) -> ClientFactory:
    def factory(token: str) -> GitHubIssueClient:
        return GitHubIssueClient(token, api_base=api_base, timeout=timeout, transport=transport)

    return factory
