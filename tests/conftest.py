"""Shared fixtures: temporary store and in-memory trackers."""

from pathlib import Path
from typing import Dict, List

import pytest

from jigit.models import Comment, Issue, Project, User
from jigit.storage import Store
from jigit.trackers.base import RemoteCreateError, RemoteFetchError, Tracker


class FakeTracker(Tracker):
    """In-memory tracker. Set fail_* attributes to make calls fail."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.user = User(id="7", login=f"{name}-user", name="Test User")
        self.projects: Dict[str, Project] = {}
        self.issues: Dict[tuple, Issue] = {}
        self.comments: Dict[str, Comment] = {}
        self.comments_of: Dict[str, List[str]] = {}
        self.calls: List[str] = []
        self.fail_fetch = False
        self.fail_create = False
        self.fail_close = False
        self.fail_comment = False
        self.fail_delete_comment = False
        self._next_iid = 100
        self._next_comment = 1

    def add_project(self, project_id: str, name: str) -> Project:
        p = Project(tracker=self.name, id=project_id, name=name, key=name.upper())
        self.projects[project_id] = p
        return p

    def add_issue(
        self, project: str | None, key: str, title: str = "", state: str = "opened", assignee: str = ""
    ) -> Issue:
        issue = Issue(
            tracker=self.name, key=key, project_id=project or "", title=title, state=state, assignee=assignee
        )
        self.issues[(project, key)] = issue
        return issue

    def _check_fetch(self, entity: str) -> None:
        if self.fail_fetch:
            raise RemoteFetchError(self.name, "unreachable", entity=entity)

    def current_user(self) -> User:
        self.calls.append("current_user")
        self._check_fetch("current user")
        return self.user

    def get_project(self, project: str) -> Project:
        self.calls.append(f"get_project {project}")
        self._check_fetch(f"project {project}")
        if project not in self.projects:
            raise RemoteFetchError(self.name, "404: not found", entity=f"project {project}")
        return self.projects[project]

    def list_projects(self, limit: int) -> List[Project]:
        self.calls.append(f"list_projects {limit}")
        self._check_fetch("projects")
        return list(self.projects.values())[:limit]

    def search_projects(self, name: str) -> List[Project]:
        self.calls.append(f"search_projects {name}")
        self._check_fetch(f"project {name}")
        return [p for p in self.projects.values() if name in p.name]

    def list_issues(self, project: str | None, limit: int, include_closed: bool = False) -> List[Issue]:
        self.calls.append(f"list_issues {project} {limit}")
        self._check_fetch("issues")
        found = [
            i
            for (p, _k), i in self.issues.items()
            if (p == project if project is not None else i.assignee == self.user.login)
            and (include_closed or i.state != "closed")
        ]
        return found[:limit]

    def get_issue(self, project: str | None, issue_key: str) -> Issue:
        self.calls.append(f"get_issue {project} {issue_key}")
        self._check_fetch(issue_key)
        if (project, issue_key) not in self.issues:
            raise RemoteFetchError(self.name, "404: not found", entity=issue_key)
        return self.issues[(project, issue_key)]

    def create_issue(
        self,
        project: str,
        title: str,
        description: str,
        assignee: User | None = None,
        labels: List[str] | None = None,
    ) -> Issue:
        self.calls.append(f"create_issue {project}")
        if self.fail_create:
            raise RemoteCreateError(self.name, "500: boom", entity=f"project {project}")
        self._next_iid += 1
        key = str(self._next_iid) if self.name == "gitlab" else f"{project}-{self._next_iid}"
        issue = Issue(
            tracker=self.name,
            key=key,
            project_id=project,
            title=title,
            description=description,
            state="opened",
            labels=list(labels or []),
            assignee=assignee.login if assignee else "",
        )
        self.issues[(project if self.name == "gitlab" else None, key)] = issue
        return issue

    def close_issue(self, project: str, issue_key: str, description: str | None = None) -> Issue:
        self.calls.append(f"close_issue {project} {issue_key}")
        if self.fail_close:
            raise RemoteCreateError(self.name, "503: unavailable", entity=f"{project}#{issue_key}")
        issue = self.issues[(project, issue_key)]
        update = {"state": "closed"}
        if description is not None:
            update["description"] = description
        closed = issue.model_copy(update=update)
        self.issues[(project, issue_key)] = closed
        return closed

    def comment(self, project: str | None, issue_key: str, body: str) -> Comment:
        self.calls.append(f"comment {project} {issue_key}")
        if self.fail_comment:
            raise RemoteCreateError(self.name, "500: boom", entity=issue_key)
        c = Comment(id=str(self._next_comment), body=body, author=self.user.login)
        self._next_comment += 1
        self.comments[c.id] = c
        self.comments_of.setdefault(issue_key, []).append(c.id)
        return c

    def delete_comment(self, project: str | None, issue_key: str, comment_id: str) -> None:
        self.calls.append(f"delete_comment {project} {issue_key} {comment_id}")
        if self.fail_delete_comment:
            raise RemoteCreateError(self.name, "403: forbidden", entity=comment_id)
        del self.comments[comment_id]

    def list_comments(self, project: str | None, issue_key: str) -> List[Comment]:
        self.calls.append(f"list_comments {project} {issue_key}")
        self._check_fetch(issue_key)
        return [self.comments[i] for i in self.comments_of.get(issue_key, []) if i in self.comments]


@pytest.fixture
def store(tmp_path: Path) -> Store:
    s = Store.open(tmp_path / "cache.db")
    yield s
    s.close()


@pytest.fixture
def gitlab() -> FakeTracker:
    t = FakeTracker("gitlab")
    t.add_project("12", "infra")
    t.add_project("13", "infra-tools")
    t.add_project("14", "web")
    t.add_issue("12", "42", title="Disk is full")
    return t


@pytest.fixture
def jira() -> FakeTracker:
    t = FakeTracker("jira")
    t.add_issue(None, "PROJ-7", title="Disk is full")
    return t
