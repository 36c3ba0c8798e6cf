"""Jira REST API (v2) tracker."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Tuple

import requests

from jigit.models import Comment, Issue, Project, User, oldest_first
from jigit.trackers.base import RemoteCreateError, RemoteFetchError, Tracker

LOG = logging.getLogger("jigit.trackers.jira")

CredentialsProvider = Callable[[], Tuple[str, str]]


def _parse_jira_time(s: str | None) -> datetime | None:
    # Jira sends 2024-01-15T10:00:00.000+0000
    if not s:
        return None
    try:
        return datetime.strptime(s, "%Y-%m-%dT%H:%M:%S.%f%z")
    except ValueError:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _user_from_api(data: Dict[str, Any] | None) -> User:
    data = data or {}
    return User(
        id=data.get("accountId") or data.get("key") or "",
        login=data.get("name") or "",
        name=data.get("displayName") or "",
    )


def _project_from_api(data: Dict[str, Any]) -> Project:
    return Project(
        tracker="jira",
        id=str(data.get("id", "")),
        name=data.get("name") or "",
        key=data.get("key") or "",
        description=data.get("description") or "",
    )


def _comment_from_api(data: Dict[str, Any]) -> Comment:
    author = _user_from_api(data.get("author"))
    return Comment(
        id=str(data["id"]),
        body=data.get("body") or "",
        author=author.login or author.name,
        created_at=_parse_jira_time(data.get("created")),
    )


def _related_line(data: Dict[str, Any], relation: str = "") -> str:
    fields = data.get("fields") or {}
    status = (fields.get("status") or {}).get("name", "")
    line = f"{data.get('key', '')} [{status}] {fields.get('summary') or ''}".rstrip()
    return f"{relation} {line}" if relation else line


def _links_from_api(links: List[Dict[str, Any]]) -> List[str]:
    lines = []
    for link in links:
        kind = link.get("type") or {}
        if link.get("inwardIssue"):
            lines.append(_related_line(link["inwardIssue"], kind.get("inward", "")))
        elif link.get("outwardIssue"):
            lines.append(_related_line(link["outwardIssue"], kind.get("outward", "")))
    return lines


def _ticket_from_api(data: Dict[str, Any], base_url: str) -> Issue:
    fields = data.get("fields") or {}
    project = fields.get("project") or {}
    status = fields.get("status") or {}
    assignee = _user_from_api(fields.get("assignee"))
    creator = _user_from_api(fields.get("creator") or fields.get("reporter"))
    return Issue(
        tracker="jira",
        key=data["key"],
        project_id=project.get("key", ""),
        project_name=project.get("name", ""),
        title=fields.get("summary") or "",
        description=fields.get("description") or "",
        state=status.get("name", ""),
        labels=list(fields.get("labels") or []),
        assignee=assignee.login or assignee.name,
        author=creator.login or creator.name,
        web_url=f"{base_url}/browse/{data['key']}",
        created_at=_parse_jira_time(fields.get("created")),
        links=_links_from_api(fields.get("issuelinks") or []),
        subtasks=[_related_line(s) for s in fields.get("subtasks") or []],
    )


class JiraTracker(Tracker):
    """Jira API implementation (basic auth with login and API token/password).

    The HTTP session is built lazily on the first request.
    """

    name = "jira"

    def __init__(self, address: str, credentials: CredentialsProvider, issue_type: str = "Task") -> None:
        self._base_url = address.rstrip("/")
        self._api_url = self._base_url + "/rest/api/2"
        self._credentials = credentials
        self._issue_type = issue_type
        self._session: requests.Session | None = None

    def _ensure_session(self) -> requests.Session:
        if self._session is None:
            login, secret = self._credentials()
            LOG.info("Connecting to %s", self._base_url)
            session = requests.Session()
            session.auth = (login, secret)
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
                body = resp.json()
                messages = list(body.get("errorMessages") or []) + list((body.get("errors") or {}).values())
                if messages:
                    msg = "; ".join(str(m) for m in messages)
            except ValueError:
                pass
            raise error(self.name, f"{resp.status_code}: {msg}", entity=entity)
        return resp

    def current_user(self) -> User:
        return _user_from_api(self._request("GET", "/myself", entity="current user").json())

    def get_project(self, project: str) -> Project:
        resp = self._request("GET", f"/project/{project}", entity=f"project {project}")
        return _project_from_api(resp.json())

    def list_projects(self, limit: int) -> List[Project]:
        resp = self._request("GET", "/project", entity="projects")
        return [_project_from_api(d) for d in (resp.json() or [])[:limit]]

    def list_issues(self, project: str | None, limit: int, include_closed: bool = False) -> List[Issue]:
        clauses = ["assignee = currentUser()"]
        if not include_closed:
            clauses.append("statusCategory != Done")
        if project:
            clauses.append(f'project = "{project}"')
        jql = " AND ".join(clauses) + " ORDER BY updated DESC"
        resp = self._request("GET", "/search", params={"jql": jql, "maxResults": limit}, entity="assigned tickets")
        return [_ticket_from_api(d, self._base_url) for d in resp.json().get("issues") or []]

    def get_issue(self, project: str | None, issue_key: str) -> Issue:
        resp = self._request("GET", f"/issue/{issue_key}", entity=issue_key)
        return _ticket_from_api(resp.json(), self._base_url)

    def create_issue(
        self,
        project: str,
        title: str,
        description: str,
        assignee: User | None = None,
        labels: List[str] | None = None,
    ) -> Issue:
        fields: Dict[str, Any] = {
            "project": {"key": project},
            "summary": title,
            "description": description,
            "issuetype": {"name": self._issue_type},
        }
        if labels:
            fields["labels"] = list(labels)
        if assignee is not None:
            if assignee.login:
                fields["assignee"] = {"name": assignee.login}
            elif assignee.id:
                fields["assignee"] = {"accountId": assignee.id}
        resp = self._request(
            "POST",
            "/issue",
            json={"fields": fields},
            error=RemoteCreateError,
            entity=f"project {project}",
        )
        key = resp.json()["key"]
        return Issue(
            tracker="jira",
            key=key,
            project_id=project,
            title=title,
            description=description,
            labels=list(labels or []),
            assignee=(assignee.login or assignee.name) if assignee else "",
            web_url=f"{self._base_url}/browse/{key}",
        )

    def comment(self, project: str | None, issue_key: str, body: str) -> Comment:
        resp = self._request(
            "POST",
            f"/issue/{issue_key}/comment",
            json={"body": body},
            error=RemoteCreateError,
            entity=issue_key,
        )
        return _comment_from_api(resp.json())

    def delete_comment(self, project: str | None, issue_key: str, comment_id: str) -> None:
        self._request(
            "DELETE",
            f"/issue/{issue_key}/comment/{comment_id}",
            error=RemoteCreateError,
            entity=f"{issue_key} comment {comment_id}",
        )

    def list_comments(self, project: str | None, issue_key: str) -> List[Comment]:
        resp = self._request("GET", f"/issue/{issue_key}/comment", params={"orderBy": "created"}, entity=issue_key)
        comments = [_comment_from_api(d) for d in resp.json().get("comments") or []]
        return oldest_first(comments)

    def close_issue(self, project: str, issue_key: str, description: str | None = None) -> Issue:
        """Move the ticket through the first transition leading to a done status."""
        resp = self._request("GET", f"/issue/{issue_key}/transitions", entity=issue_key)
        transitions = resp.json().get("transitions") or []
        done = [t for t in transitions if ((t.get("to") or {}).get("statusCategory") or {}).get("key") == "done"]
        if not done:
            raise RemoteCreateError(self.name, "no transition leads to a done status", entity=issue_key)
        if description is not None:
            self._request(
                "PUT",
                f"/issue/{issue_key}",
                json={"fields": {"description": description}},
                error=RemoteCreateError,
                entity=issue_key,
            )
        self._request(
            "POST",
            f"/issue/{issue_key}/transitions",
            json={"transition": {"id": done[0]["id"]}},
            error=RemoteCreateError,
            entity=issue_key,
        )
        LOG.info("Closed %s via '%s'", issue_key, done[0].get("name", done[0]["id"]))
        return self.get_issue(None, issue_key)
