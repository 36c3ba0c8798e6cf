"""Post one message as a comment on a GitLab issue and its linked Jira ticket.

The GitLab comment is written first. When the Jira comment fails, the GitLab
comment is deleted again; if that deletion also fails both errors are
reported and the stray comment needs manual cleanup.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from jigit.models import Comment
from jigit.services.cache import ProjectCache
from jigit.services.creator import CompensationError
from jigit.services.linker import LinkNotFound, Linker, issue_ref
from jigit.services.markup import md_to_jira
from jigit.trackers.base import RemoteCreateError, Tracker, TrackerError

LOG = logging.getLogger("jigit.services.commenter")


class CommentState(Enum):
    START = "start"
    GITLAB_COMMENTED = "gitlab_commented"
    COMMENTED = "commented"
    GITLAB_ONLY = "gitlab_only"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


@dataclass
class CommentResult:
    state: CommentState
    issue_ref: str
    ticket_key: str | None = None
    gitlab_comment: Comment | None = None
    jira_comment: Comment | None = None
    error: BaseException | None = None
    rollback_error: CompensationError | None = None

    @property
    def ok(self) -> bool:
        return self.state in (CommentState.COMMENTED, CommentState.GITLAB_ONLY)

    def summary(self) -> list[str]:
        if self.state is CommentState.COMMENTED:
            return [f"Commented on {self.issue_ref} and {self.ticket_key}"]
        if self.state is CommentState.GITLAB_ONLY:
            return [f"Commented on {self.issue_ref} (no linked Jira ticket)"]
        if self.state is CommentState.ROLLED_BACK:
            return [
                f"Jira comment on {self.ticket_key} failed: {self.error}",
                f"GitLab comment on {self.issue_ref} was removed again.",
            ]
        if self.state is CommentState.ROLLBACK_FAILED and self.gitlab_comment is not None:
            return [
                f"Jira comment on {self.ticket_key} failed: {self.error}",
                f"GitLab comment {self.gitlab_comment.id} on {self.issue_ref} is STILL PRESENT.",
                f"Rollback failed: {self.rollback_error}",
                "MANUAL INTERVENTION REQUIRED: delete the GitLab comment by hand.",
            ]
        return [f"Commenting stopped in state {self.state.value}: {self.error}"]


class CrossTrackerCommenter:
    """GitLab comment first, Jira second, GitLab comment removed if Jira fails."""

    def __init__(
        self,
        gitlab: Tracker,
        jira: Tracker,
        projects: ProjectCache,
        linker: Linker,
        convert: Callable[[str], str] = md_to_jira,
    ) -> None:
        self._gitlab = gitlab
        self._jira = jira
        self._projects = projects
        self._linker = linker
        self._convert = convert

    def linked_ticket(self, project_name: str, issue_id: int) -> str | None:
        """Ticket key linked to the issue, None when the issue is not linked."""
        try:
            return self._linker.resolve(issue_ref(project_name, issue_id))
        except LinkNotFound:
            return None

    def comment(self, project_name: str, issue_id: int, message: str, allow_unlinked: bool = False) -> CommentResult:
        """Post message on both sides.

        Raises LinkNotFound for an unlinked issue unless allow_unlinked, and
        RemoteCreateError when the GitLab comment fails (nothing posted).
        """
        if not message.strip():
            raise ValueError("empty comment")
        ref = issue_ref(project_name, issue_id)
        ticket_key = self.linked_ticket(project_name, issue_id)
        if ticket_key is None and not allow_unlinked:
            raise LinkNotFound(ref)

        project = self._projects.by_name(project_name)
        result = CommentResult(CommentState.START, ref, ticket_key)
        try:
            gitlab_comment = self._gitlab.comment(project.id, str(issue_id), message)
        except TrackerError as e:
            raise RemoteCreateError(self._gitlab.name, e.message, entity=ref, phase="comment") from e
        result.gitlab_comment = gitlab_comment
        result.state = CommentState.GITLAB_COMMENTED
        LOG.info("Commented on %s", ref)

        if ticket_key is None:
            result.state = CommentState.GITLAB_ONLY
            return result

        try:
            result.jira_comment = self._jira.comment(None, ticket_key, self._convert(message))
        except Exception as e:
            message_text = e.message if isinstance(e, TrackerError) else str(e)
            error = RemoteCreateError(self._jira.name, message_text, entity=ticket_key, phase="comment")
            result.error = error
            LOG.error("Jira comment on %s failed, removing GitLab comment: %s", ticket_key, message_text)
            self._rollback(result, error, gitlab_comment, project.id, str(issue_id))
            return result

        result.state = CommentState.COMMENTED
        LOG.info("Commented on %s", ticket_key)
        return result

    def _rollback(
        self, result: CommentResult, error: TrackerError, comment: Comment, project_id: str, issue_key: str
    ) -> None:
        try:
            self._gitlab.delete_comment(project_id, issue_key, comment.id)
        except Exception as e:
            entity = f"comment {comment.id} on {result.issue_ref}"
            result.rollback_error = CompensationError(error, e, self._gitlab.name, entity)
            result.state = CommentState.ROLLBACK_FAILED
            LOG.error("%s", result.rollback_error)
            return
        result.state = CommentState.ROLLED_BACK
