"""Data models for projects, issues, users and comments of both trackers.

The same models describe GitLab and Jira entities: `tracker` tells them
apart. They are stored in the cache buckets as JSON (self-describing,
field-tagged); see encode/decode.
"""

from datetime import datetime, timezone
from typing import List, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

T = TypeVar("T", bound=BaseModel)


class DecodeError(Exception):
    """Raised when a stored payload cannot be decoded into a model."""

    pass


class User(BaseModel):
    """Acting or assigned user of a tracker."""

    id: str = Field(default="", description="Tracker user id (GitLab numeric id, Jira accountId)")
    login: str = Field(default="", description="Username used for assignment")
    name: str = Field(default="", description="Display name")


class Project(BaseModel):
    """GitLab project or Jira project."""

    tracker: str = Field(..., description="gitlab or jira")
    id: str = Field(..., description="Tracker project id (decimal for GitLab)")
    name: str = Field(..., description="Project name")
    key: str = Field(default="", description="Jira project key or GitLab path")
    description: str = Field(default="", description="Project description")
    web_url: str = Field(default="", description="Link to project page")


class Issue(BaseModel):
    """GitLab issue or Jira ticket.

    key is the tracker-local identifier: the issue IID for GitLab
    (unique inside its project) and the ticket key for Jira (e.g. PROJ-7).
    """

    tracker: str = Field(..., description="gitlab or jira")
    key: str = Field(..., description="GitLab IID or Jira ticket key")
    project_id: str = Field(default="", description="Owning project id")
    project_name: str = Field(default="", description="Owning project name")
    title: str = Field(default="", description="Title (Jira summary)")
    description: str = Field(default="", description="Body text")
    state: str = Field(default="", description="opened/closed for GitLab, status name for Jira")
    labels: List[str] = Field(default_factory=list)
    assignee: str = Field(default="", description="Assignee login")
    author: str = Field(default="", description="Author login")
    web_url: str = Field(default="")
    created_at: datetime | None = Field(default=None)
    links: List[str] = Field(default_factory=list, description="Jira issue links, one line each")
    subtasks: List[str] = Field(default_factory=list, description="Jira subtasks, one line each")

    @property
    def cache_key(self) -> str:
        """Key of this issue in its tracker's issue cache bucket."""
        if self.tracker == "gitlab":
            return f"{self.project_id}#{self.key}"
        return self.key


class Comment(BaseModel):
    """Comment (GitLab note) on an issue."""

    id: str = Field(..., description="Tracker comment id")
    body: str = Field(default="")
    author: str = Field(default="")
    created_at: datetime | None = Field(default=None)


def oldest_first(comments: List[Comment]) -> List[Comment]:
    """Comments sorted by creation time; undated ones first."""
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(comments, key=lambda c: c.created_at or epoch)


def encode(entity: BaseModel) -> bytes:
    """Serialize a model for storage."""
    return entity.model_dump_json().encode("utf-8")


def decode(model: Type[T], payload: bytes) -> T:
    """Deserialize stored bytes into model; raise DecodeError on bad payload."""
    try:
        return model.model_validate_json(payload)
    except (ValidationError, ValueError, UnicodeDecodeError) as e:
        raise DecodeError(f"cannot decode {model.__name__}: {e}") from e
