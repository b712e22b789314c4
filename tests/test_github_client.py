"""Tests for the GitHub REST client (sync/github.py) against an httpx mock transport."""

from __future__ import annotations

import json

import httpx
import pytest

from teamboard.errors import ExternalUnavailable, NotFound, PreconditionFailed
from teamboard.sync.github import GitHubIssueClient, IssueRecord, make_client_factory, parse_repo_url


ISSUE = {
    "number": 7,
    "title": "Crash on save",
    "body": None,
    "state": "open",
    "labels": [{"name": "status:review"}, {"name": "bug"}],
    "assignees": [{"login": "alice-gh"}],
    "milestone": {"due_on": "2026-04-01T07:00:00Z"},
    "html_url": "https://github.com/acme/widgets/issues/7",
    "updated_at": "2026-03-02T12:03:00Z",
}


class Recorder:
    def __init__(self, routes: dict[tuple[str, str], httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"message": "Not Found"})
        return self.routes[key]


def _client(recorder: Recorder) -> GitHubIssueClient:
    return GitHubIssueClient("tok-123", api_base="https://api.example.test", transport=httpx.MockTransport(recorder))


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://github.com/acme/widgets", ("acme", "widgets")),
        ("https://github.com/acme/widgets.git", ("acme", "widgets")),
        ("https://github.com/acme/widgets/", ("acme", "widgets")),
    ],
)
def test_parse_repo_url(url: str, expected: tuple[str, str]) -> None:
    assert parse_repo_url(url) == expected


@pytest.mark.parametrize("url", [None, "", "https://gitlab.com/acme/widgets", "git@github.com:acme/widgets.git"])
def test_parse_repo_url_rejects(url) -> None:
    with pytest.raises(PreconditionFailed):
        parse_repo_url(url)


def test_issue_record_from_payload() -> None:
    record = IssueRecord.from_payload(ISSUE)
    assert record.labels == ["status:review", "bug"]
    assert record.assignees == ["alice-gh"]
    assert record.body == ""
    assert record.milestone_due_on == "2026-04-01T07:00:00Z"
    assert record.is_closed is False


class TestGitHubIssueClient:
    def test_get_issue_sends_token_and_accept_header(self) -> None:
        recorder = Recorder({("GET", "/repos/acme/widgets/issues/7"): httpx.Response(200, json=ISSUE)})
        with _client(recorder) as client:
            issue = client.get_issue("acme", "widgets", 7)
        assert issue.number == 7
        sent = recorder.requests[0]
        assert sent.headers["Authorization"] == "token tok-123"
        assert sent.headers["Accept"] == "application/vnd.github.v3+json"

    def test_create_issue_payload(self) -> None:
        recorder = Recorder({("POST", "/repos/acme/widgets/issues"): httpx.Response(201, json=ISSUE)})
        with _client(recorder) as client:
            client.create_issue("acme", "widgets", "Crash on save", "body", ["status:waiting"], [])
        payload = json.loads(recorder.requests[0].content)
        assert payload == {"title": "Crash on save", "body": "body", "labels": ["status:waiting"]}

    def test_list_issues_drops_pull_requests(self) -> None:
        pr = dict(ISSUE, number=8, pull_request={"url": "..."})
        recorder = Recorder({("GET", "/repos/acme/widgets/issues"): httpx.Response(200, json=[ISSUE, pr])})
        with _client(recorder) as client:
            issues = client.list_issues("acme", "widgets", page=2, per_page=50)
        assert [i.number for i in issues] == [7]
        params = recorder.requests[0].url.params
        assert (params["state"], params["page"], params["per_page"]) == ("all", "2", "50")

    def test_update_issue_sends_only_given_fields(self) -> None:
        recorder = Recorder({("PATCH", "/repos/acme/widgets/issues/7"): httpx.Response(200, json=ISSUE)})
        with _client(recorder) as client:
            client.update_issue("acme", "widgets", 7, state="closed")
        assert json.loads(recorder.requests[0].content) == {"state": "closed"}

    def test_missing_issue_is_not_found(self) -> None:
        with _client(Recorder({})) as client:
            with pytest.raises(NotFound):
                client.get_issue("acme", "widgets", 99)

    def test_server_error_is_external_unavailable(self) -> None:
        recorder = Recorder({("GET", "/repos/acme/widgets/issues/7"): httpx.Response(503, text="unavailable")})
        with _client(recorder) as client:
            with pytest.raises(ExternalUnavailable, match="503"):
                client.get_issue("acme", "widgets", 7)

    def test_transport_error_is_external_unavailable(self) -> None:
        def broken(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = GitHubIssueClient("tok", transport=httpx.MockTransport(broken))
        with client:
            with pytest.raises(ExternalUnavailable):
                client.get_issue("acme", "widgets", 7)

    def test_remove_missing_label_is_tolerated(self) -> None:
        recorder = Recorder({})
        with _client(recorder) as client:
            client.remove_label("acme", "widgets", 7, "status:in progress")
        assert recorder.requests[0].url.path.endswith("/labels/status:in progress")

    def test_create_existing_label_is_tolerated(self) -> None:
        recorder = Recorder({("POST", "/repos/acme/widgets/labels"): httpx.Response(422, json={"message": "already_exists"})})
        with _client(recorder) as client:
            client.create_label("acme", "widgets", "status:done", "10b981", "Task is completed")

    def test_factory_builds_clients_per_token(self) -> None:
        recorder = Recorder({("GET", "/repos/acme/widgets/labels"): httpx.Response(200, json=[{"name": "bug"}])})
        factory = make_client_factory("https://api.example.test", transport=httpx.MockTransport(recorder))
        with factory("tok-a") as client:
            assert client.list_labels("acme", "widgets") == ["bug"]
        assert recorder.requests[0].headers["Authorization"] == "token tok-a"
