"""GitLab REST API (v4) tracker."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Tuple
from urllib.parse import quote

import requests

from jigit.models import Comment, Issue, Project, User, oldest_first
from jigit.trackers.base import RemoteCreateError, RemoteFetchError, Tracker

LOG = logging.getLogger("jigit.trackers.gitlab")

CredentialsProvider = Callable[[], Tuple[str, str]]


def _parse_iso(s: str | None) -> datetime | None:
    if not s:
        return None
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _project_from_api(data: Dict[str, Any]) -> Project:
    return Project(
        tracker="gitlab",
        id=str(data["id"]),
        name=data.get("name") or "",
        key=data.get("path_with_namespace") or "",
        description=data.get("description") or "",
        web_url=data.get("web_url") or "",
    )


def _issue_from_api(data: Dict[str, Any], project_name: str = "") -> Issue:
    assignee = data.get("assignee") or {}
    author = data.get("author") or {}
    return Issue(
        tracker="gitlab",
        key=str(data["iid"]),
        project_id=str(data.get("project_id", "")),
        project_name=project_name,
        title=data.get("title") or "",
        description=data.get("description") or "",
        state=data.get("state", "opened"),
        labels=list(data.get("labels") or []),
        assignee=assignee.get("username", ""),
        author=author.get("username", ""),
        web_url=data.get("web_url") or "",
        created_at=_parse_iso(data.get("created_at")),
    )


def _note_from_api(data: Dict[str, Any]) -> Comment:
    author = data.get("author") or {}
    return Comment(
        id=str(data["id"]),
        body=data.get("body") or "",
        author=author.get("username", ""),
        created_at=_parse_iso(data.get("created_at")),
    )


class GitLabTracker(Tracker):
    """GitLab API implementation.

    The HTTP session is built lazily on the first request, asking the
    credentials provider for (login, token).
    """

    name = "gitlab"

    def __init__(self, address: str, credentials: CredentialsProvider) -> None:
        self._api_url = address.rstrip("/") + "/api/v4"
        self._credentials = credentials
        self._session: requests.Session | None = None

    def _ensure_session(self) -> requests.Session:
        if self._session is None:
            _login, token = self._credentials()
            LOG.info("Connecting to %s", self._api_url)
            session = requests.Session()
            session.headers["PRIVATE-TOKEN"] = token
            session.headers["Accept"] = "application/json"
            self._session = session
        return self._session

    def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
        error: type = RemoteFetchError,
        entity: str | None = None,
    ) -> requests.Response:
        session = self._ensure_session()
        url = f"{self._api_url}{path}"
        try:
            resp = session.request(method, url, params=params, json=json, timeout=30)
        except requests.RequestException as e:
            raise error(self.name, str(e), entity=entity) from e
        if resp.status_code >= 400:
            msg = resp.text or resp.reason or str(resp.status_code)
            try:
                msg = resp.json().get("message", msg)
            except ValueError:
                pass
            raise error(self.name, f"{resp.status_code}: {msg}", entity=entity)
        return resp

    def current_user(self) -> User:
        data = self._request("GET", "/user", entity="current user").json()
        return User(id=str(data["id"]), login=data.get("username", ""), name=data.get("name", ""))

    def get_project(self, project: str) -> Project:
        resp = self._request("GET", f"/projects/{quote(project, safe='')}", entity=f"project {project}")
        return _project_from_api(resp.json())

    def list_projects(self, limit: int) -> List[Project]:
        params = {"membership": "true", "order_by": "last_activity_at", "per_page": limit}
        resp = self._request("GET", "/projects", params=params, entity="projects")
        return [_project_from_api(d) for d in resp.json() or []]

    def search_projects(self, name: str) -> List[Project]:
        resp = self._request("GET", "/projects", params={"search": name}, entity=f"project {name}")
        return [_project_from_api(d) for d in resp.json() or []]

    def list_issues(self, project: str | None, limit: int, include_closed: bool = False) -> List[Issue]:
        params: Dict[str, Any] = {"per_page": limit}
        if not include_closed:
            params["state"] = "opened"
        if project is None:
            params["scope"] = "assigned_to_me"
            resp = self._request("GET", "/issues", params=params, entity="assigned issues")
        else:
            resp = self._request("GET", f"/projects/{project}/issues", params=params, entity=f"project {project}")
        return [_issue_from_api(d) for d in resp.json() or []]

    def get_issue(self, project: str | None, issue_key: str) -> Issue:
        if project is None:
            raise RemoteFetchError(self.name, "project is required", entity=f"#{issue_key}")
        entity = f"{project}#{issue_key}"
        resp = self._request("GET", f"/projects/{project}/issues/{issue_key}", entity=entity)
        return _issue_from_api(resp.json())

    def create_issue(
        self,
        project: str,
        title: str,
        description: str,
        assignee: User | None = None,
        labels: List[str] | None = None,
    ) -> Issue:
        payload: Dict[str, Any] = {"title": title, "description": description}
        if labels:
            payload["labels"] = ",".join(labels)
        if assignee is not None and assignee.id:
            payload["assignee_ids"] = [int(assignee.id)]
        resp = self._request(
            "POST",
            f"/projects/{project}/issues",
            json=payload,
            error=RemoteCreateError,
            entity=f"project {project}",
        )
        return _issue_from_api(resp.json())

    def close_issue(self, project: str, issue_key: str, description: str | None = None) -> Issue:
        payload: Dict[str, Any] = {"state_event": "close"}
        if description is not None:
            payload["description"] = description
        resp = self._request(
            "PUT",
            f"/projects/{project}/issues/{issue_key}",
            json=payload,
            error=RemoteCreateError,
            entity=f"{project}#{issue_key}",
        )
        return _issue_from_api(resp.json())

    def comment(self, project: str | None, issue_key: str, body: str) -> Comment:
        resp = self._request(
            "POST",
            f"/projects/{project}/issues/{issue_key}/notes",
            json={"body": body},
            error=RemoteCreateError,
            entity=f"{project}#{issue_key}",
        )
        return _note_from_api(resp.json())

    def delete_comment(self, project: str | None, issue_key: str, comment_id: str) -> None:
        self._request(
            "DELETE",
            f"/projects/{project}/issues/{issue_key}/notes/{comment_id}",
            error=RemoteCreateError,
            entity=f"{project}#{issue_key} note {comment_id}",
        )

    def list_comments(self, project: str | None, issue_key: str) -> List[Comment]:
        params = {"sort": "asc", "order_by": "created_at", "per_page": 100}
        resp = self._request(
            "GET",
            f"/projects/{project}/issues/{issue_key}/notes",
            params=params,
            entity=f"{project}#{issue_key}",
        )
        notes = [_note_from_api(d) for d in resp.json() or [] if not d.get("system")]
        return oldest_first(notes)
