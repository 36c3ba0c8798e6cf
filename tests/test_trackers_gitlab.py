"""Unit tests for the GitLab tracker (mocked API)."""

from unittest.mock import Mock, patch

import pytest
import requests

from jigit.models import Issue, User
from jigit.trackers.base import RemoteCreateError, RemoteFetchError, Tracker
from jigit.trackers.gitlab import GitLabTracker


@pytest.fixture
def credentials() -> Mock:
    return Mock(return_value=("alice", "glpat-token"))


@pytest.fixture
def tracker(credentials: Mock) -> GitLabTracker:
    return GitLabTracker("https://gitlab.example.com/", credentials)


def _response(status: int = 200, data=None) -> Mock:
    resp = Mock()
    resp.status_code = status
    resp.text = ""
    resp.reason = ""
    resp.json.return_value = data
    return resp


ISSUE_DATA = {
    "iid": 42,
    "project_id": 12,
    "title": "Disk is full",
    "description": "Body",
    "state": "opened",
    "labels": ["ops"],
    "assignee": {"username": "alice"},
    "author": {"username": "bob"},
    "web_url": "https://gitlab.example.com/infra/-/issues/42",
    "created_at": "2024-01-15T10:00:00Z",
}


def test_session_built_lazily_with_private_token(tracker: GitLabTracker, credentials: Mock) -> None:
    """Credentials are only asked for on the first request."""
    credentials.assert_not_called()
    session = tracker._ensure_session()
    credentials.assert_called_once()
    assert session.headers["PRIVATE-TOKEN"] == "glpat-token"
    assert tracker._ensure_session() is session


def test_get_issue_success(tracker: GitLabTracker) -> None:
    with patch.object(tracker._ensure_session(), "request", return_value=_response(data=ISSUE_DATA)) as req:
        issue = tracker.get_issue("12", "42")

    assert isinstance(issue, Issue)
    assert issue.key == "42"
    assert issue.project_id == "12"
    assert issue.assignee == "alice"
    assert issue.author == "bob"
    assert issue.cache_key == "12#42"
    method, url = req.call_args[0]
    assert method == "GET"
    assert url == "https://gitlab.example.com/api/v4/projects/12/issues/42"


def test_get_issue_404_raises_fetch_error(tracker: GitLabTracker) -> None:
    resp = _response(404, {"message": "404 Not found"})
    with patch.object(tracker._ensure_session(), "request", return_value=resp):
        with pytest.raises(RemoteFetchError) as exc_info:
            tracker.get_issue("12", "999")
    assert exc_info.value.tracker == "gitlab"
    assert exc_info.value.entity == "12#999"
    assert "404" in str(exc_info.value)


def test_connection_error_raises_fetch_error(tracker: GitLabTracker) -> None:
    with patch.object(tracker._ensure_session(), "request", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(RemoteFetchError, match="refused"):
            tracker.current_user()


def test_current_user(tracker: GitLabTracker) -> None:
    data = {"id": 7, "username": "alice", "name": "Alice"}
    with patch.object(tracker._ensure_session(), "request", return_value=_response(data=data)):
        assert tracker.current_user() == User(id="7", login="alice", name="Alice")


def test_list_projects_passes_limit(tracker: GitLabTracker) -> None:
    data = [{"id": 12, "name": "infra", "path_with_namespace": "ops/infra"}]
    with patch.object(tracker._ensure_session(), "request", return_value=_response(data=data)) as req:
        projects = tracker.list_projects(5)
    assert projects[0].id == "12"
    assert projects[0].key == "ops/infra"
    assert req.call_args[1]["params"]["per_page"] == 5


def test_create_issue_assigns_user(tracker: GitLabTracker) -> None:
    with patch.object(tracker._ensure_session(), "request", return_value=_response(201, ISSUE_DATA)) as req:
        issue = tracker.create_issue("12", "Disk is full", "Body", assignee=User(id="7"), labels=["ops", "urgent"])
    assert issue.key == "42"
    payload = req.call_args[1]["json"]
    assert payload["assignee_ids"] == [7]
    assert payload["labels"] == "ops,urgent"


def test_create_issue_failure_raises_create_error(tracker: GitLabTracker) -> None:
    with patch.object(tracker._ensure_session(), "request", return_value=_response(403, {"message": "Forbidden"})):
        with pytest.raises(RemoteCreateError, match="Forbidden"):
            tracker.create_issue("12", "t", "d")


def test_close_issue_updates_description(tracker: GitLabTracker) -> None:
    closed = dict(ISSUE_DATA, state="closed", description="rolled back")
    with patch.object(tracker._ensure_session(), "request", return_value=_response(data=closed)) as req:
        issue = tracker.close_issue("12", "42", description="rolled back")
    assert issue.state == "closed"
    assert req.call_args[0][0] == "PUT"
    assert req.call_args[1]["json"] == {"state_event": "close", "description": "rolled back"}


def test_comment_and_delete(tracker: GitLabTracker) -> None:
    note = {"id": 900, "body": "hi", "author": {"username": "alice"}}
    session = tracker._ensure_session()
    with patch.object(session, "request", return_value=_response(201, note)) as req:
        comment = tracker.comment("12", "42", "hi")
    assert comment.id == "900"
    assert req.call_args[0][1].endswith("/projects/12/issues/42/notes")

    with patch.object(session, "request", return_value=_response(204)) as req:
        tracker.delete_comment("12", "42", "900")
    assert req.call_args[0] == ("DELETE", "https://gitlab.example.com/api/v4/projects/12/issues/42/notes/900")


def test_list_comments_sorted_without_system_notes(tracker: GitLabTracker) -> None:
    notes = [
        {"id": 2, "body": "second", "author": {"username": "bob"}, "created_at": "2024-01-16T10:00:00Z"},
        {"id": 3, "body": "changed the label", "system": True, "created_at": "2024-01-15T11:00:00Z"},
        {"id": 1, "body": "first", "author": {"username": "alice"}, "created_at": "2024-01-15T10:00:00Z"},
    ]
    with patch.object(tracker._ensure_session(), "request", return_value=_response(data=notes)) as req:
        comments = tracker.list_comments("12", "42")
    assert [c.body for c in comments] == ["first", "second"]
    assert comments[0].author == "alice"
    assert req.call_args[0] == ("GET", "https://gitlab.example.com/api/v4/projects/12/issues/42/notes")


def test_every_tracker_implements_close_and_listing() -> None:
    assert {"close_issue", "list_issues", "list_comments"} <= Tracker.__abstractmethods__
