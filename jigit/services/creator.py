"""Create one issue in GitLab and its twin ticket in Jira, then link them.

    START -> GITLAB_CREATED -> LINKED                      (success)
                          \\-> JIRA_FAILED -> COMPENSATED  (rolled back)
                                         \\-> COMPENSATION_FAILED

Only the first write is ever compensated: when the Jira ticket cannot be
created, the GitLab issue is closed with an explanatory description (never
deleted). Once both exist nothing is undone; a failure to store the link is
reported as a warning naming both sides.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List

from jigit.config import ConfigError
from jigit.models import Issue, Project
from jigit.services.cache import IssueCache, ProjectCache
from jigit.services.linker import LinkError, Linker, issue_ref
from jigit.services.markup import md_to_jira
from jigit.storage import StoreError
from jigit.trackers.base import RemoteCreateError, Tracker, TrackerError

LOG = logging.getLogger("jigit.services.creator")

ROLLBACK_NOTE = (
    "**Closed automatically by jigit.**\n\n"
    "This issue was created together with a Jira ticket, but creating the ticket failed:\n\n"
    "    {error}\n\n"
    "Nothing is linked to this issue. Original description follows.\n\n"
    "---\n\n"
    "{description}"
)


class CompensationError(Exception):
    """A rollback action failed after an earlier partial failure.

    Always reported together with the original error; the remote state needs
    manual review.
    """

    requires_manual_review = True

    def __init__(self, original: BaseException, cause: BaseException, tracker: str, entity: str) -> None:
        self.original = original
        self.cause = cause
        self.tracker = tracker
        self.entity = entity
        super().__init__(
            f"{tracker} rollback of {entity} failed: {cause} (after: {original}); manual intervention required"
        )


class CreateState(Enum):
    START = "start"
    GITLAB_CREATED = "gitlab_created"
    LINKED = "linked"
    JIRA_FAILED = "jira_failed"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


@dataclass
class CreateResult:
    """Outcome of a cross-tracker create, including partial progress."""

    state: CreateState = CreateState.START
    project: Project | None = None
    issue: Issue | None = None
    ticket: Issue | None = None
    error: BaseException | None = None
    compensation_error: CompensationError | None = None
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is CreateState.LINKED

    @property
    def requires_manual_review(self) -> bool:
        return self.compensation_error is not None

    @property
    def issue_ref(self) -> str:
        if self.project is None or self.issue is None:
            return ""
        return issue_ref(self.project.name, int(self.issue.key))

    def summary(self) -> List[str]:
        """Human-readable lines describing which remote entities exist now."""
        lines: List[str] = []
        if self.state is CreateState.LINKED and self.issue is not None and self.ticket is not None:
            lines.append(f"Created GitLab issue {self.issue_ref} {self.issue.web_url}".rstrip())
            lines.append(f"Created Jira ticket {self.ticket.key} {self.ticket.web_url}".rstrip())
            lines.extend(f"warning: {w}" for w in self.warnings)
        elif self.state is CreateState.COMPENSATED:
            lines.append(f"Jira ticket was not created: {self.error}")
            lines.append(f"GitLab issue {self.issue_ref} was created and has been closed (rolled back).")
        elif self.state is CreateState.COMPENSATION_FAILED:
            lines.append(f"Jira ticket was not created: {self.error}")
            lines.append(f"GitLab issue {self.issue_ref} was created and is STILL OPEN.")
            lines.append(f"Rollback failed: {self.compensation_error}")
            lines.append("MANUAL INTERVENTION REQUIRED: close or link the GitLab issue by hand.")
        else:
            lines.append(f"Creation stopped in state {self.state.value}: {self.error}")
        return lines


class CrossTrackerCreator:
    """Two-phase creation: GitLab issue first, then Jira ticket, then link."""

    def __init__(
        self,
        gitlab: Tracker,
        jira: Tracker,
        projects: ProjectCache,
        linker: Linker,
        jira_project: str,
        gitlab_issues: IssueCache | None = None,
        jira_issues: IssueCache | None = None,
        convert: Callable[[str], str] = md_to_jira,
    ) -> None:
        self._gitlab = gitlab
        self._jira = jira
        self._projects = projects
        self._linker = linker
        self._jira_project = jira_project
        self._gitlab_issues = gitlab_issues
        self._jira_issues = jira_issues
        self._convert = convert

    def create(
        self,
        project_name: str,
        title: str,
        description: str,
        labels: List[str] | None = None,
    ) -> CreateResult:
        """Run the protocol.

        Raises (nothing created) when the project or a user cannot be
        resolved, or when the GitLab issue cannot be created. Every later
        failure is reported in the returned result.
        """
        if not self._jira_project:
            raise ConfigError("Jira project is not configured; run 'jigit config --set jira.project KEY'")

        result = CreateResult()
        result.project = project = self._projects.by_name(project_name)
        gitlab_user = self._gitlab.current_user()
        jira_user = self._jira.current_user()

        try:
            issue = self._gitlab.create_issue(project.id, title, description, assignee=gitlab_user, labels=labels)
        except TrackerError as e:
            LOG.error("GitLab issue creation failed in %s: %s", project.name, e.message)
            raise RemoteCreateError(
                self._gitlab.name, e.message, entity=f"project {project.name}", phase="create issue"
            ) from e
        result.issue = issue
        result.state = CreateState.GITLAB_CREATED
        LOG.info("Created GitLab issue %s", result.issue_ref)
        self._remember(self._gitlab_issues, issue)

        try:
            ticket = self._jira.create_issue(
                self._jira_project,
                self._convert(title),
                self._convert(description),
                assignee=jira_user,
                labels=labels,
            )
        except Exception as e:
            message = e.message if isinstance(e, TrackerError) else str(e)
            error = RemoteCreateError(
                self._jira.name, message, entity=f"project {self._jira_project}", phase="create ticket"
            )
            result.error = error
            result.state = CreateState.JIRA_FAILED
            LOG.error("Jira ticket creation failed, rolling back %s: %s", result.issue_ref, message)
            self._compensate(result, error, project, issue, description)
            return result

        result.ticket = ticket
        self._remember(self._jira_issues, ticket)
        LOG.info("Created Jira ticket %s", ticket.key)

        try:
            self._linker.create(project.name, int(issue.key), ticket.key)
        except (StoreError, LinkError, ValueError) as e:
            warning = (
                f"both {result.issue_ref} and {ticket.key} exist but the link was not saved ({e}); "
                f"run 'jigit ln {result.issue_ref} {ticket.key}'"
            )
            LOG.warning(warning)
            result.warnings.append(warning)
        result.state = CreateState.LINKED
        return result

    def _compensate(
        self, result: CreateResult, error: TrackerError, project: Project, issue: Issue, description: str
    ) -> None:
        note = ROLLBACK_NOTE.format(error=error, description=description)
        try:
            result.issue = self._gitlab.close_issue(project.id, issue.key, description=note)
        except Exception as e:
            result.compensation_error = CompensationError(error, e, self._gitlab.name, result.issue_ref)
            result.state = CreateState.COMPENSATION_FAILED
            LOG.error("%s", result.compensation_error)
            return
        result.state = CreateState.COMPENSATED
        self._remember(self._gitlab_issues, result.issue)
        LOG.info("Closed GitLab issue %s", result.issue_ref)

    @staticmethod
    def _remember(cache: IssueCache | None, issue: Issue) -> None:
        if cache is not None:
            cache.put(issue)
