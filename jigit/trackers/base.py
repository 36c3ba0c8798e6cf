"""Abstract base for issue tracker clients."""

from abc import ABC, abstractmethod
from typing import List

from jigit.models import Comment, Issue, Project, User


class TrackerError(Exception):
    """Raised when a tracker API call fails.

    Carries the tracker name, the entity involved and the protocol phase
    (when known) so callers can tell which remote state was reached.
    """

    def __init__(
        self,
        tracker: str,
        message: str,
        entity: str | None = None,
        phase: str | None = None,
    ) -> None:
        self.tracker = tracker
        self.message = message
        self.entity = entity
        self.phase = phase
        super().__init__(str(self))

    def __str__(self) -> str:
        parts = [self.tracker]
        if self.phase:
            parts.append(self.phase)
        if self.entity:
            parts.append(self.entity)
        return f"{' '.join(parts)}: {self.message}"


class RemoteFetchError(TrackerError):
    """A read from the tracker failed or returned a non-success status."""

    pass


class RemoteCreateError(TrackerError):
    """A write (create, comment, update) to the tracker failed."""

    pass


class Tracker(ABC):
    """Capability interface shared by GitLab and Jira clients.

    project arguments are the project id for GitLab and the project key for
    Jira; issue_key is the GitLab IID or the Jira ticket key.
    """

    name: str = ""

    @abstractmethod
    def current_user(self) -> User:
        """Return the authenticated user."""
        ...

    @abstractmethod
    def get_project(self, project: str) -> Project:
        """Fetch project by id (or key)."""
        ...

    @abstractmethod
    def list_projects(self, limit: int) -> List[Project]:
        """List up to limit projects visible to the user."""
        ...

    @abstractmethod
    def get_issue(self, project: str | None, issue_key: str) -> Issue:
        """Fetch one issue."""
        ...

    @abstractmethod
    def create_issue(
        self,
        project: str,
        title: str,
        description: str,
        assignee: User | None = None,
        labels: List[str] | None = None,
    ) -> Issue:
        """Create an issue and return it."""
        ...

    @abstractmethod
    def comment(self, project: str | None, issue_key: str, body: str) -> Comment:
        """Post a comment on an issue."""
        ...

    @abstractmethod
    def delete_comment(self, project: str | None, issue_key: str, comment_id: str) -> None:
        """Delete a comment from an issue."""
        ...

    @abstractmethod
    def list_issues(self, project: str | None, limit: int, include_closed: bool = False) -> List[Issue]:
        """List issues of project, or the ones assigned to the user when project is None."""
        ...

    @abstractmethod
    def close_issue(self, project: str, issue_key: str, description: str | None = None) -> Issue:
        """Close an issue, optionally replacing its description."""
        ...

    @abstractmethod
    def list_comments(self, project: str | None, issue_key: str) -> List[Comment]:
        """Comments of an issue, oldest first."""
        ...

    def search_projects(self, name: str) -> List[Project]:
        """Projects matching name. Override if needed."""
        return [p for p in self.list_projects(100) if name in p.name]
