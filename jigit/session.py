"""Per-invocation session: config, open store and everything built on them.

One Session is built per command and closed at the end of it. Trackers,
caches and services are created lazily so a command only touches (and only
prompts credentials for) the trackers it needs.
"""

import logging
from typing import Callable

from jigit.config import AppConfig, ConfigError, validate_storage
from jigit.services.cache import IssueCache, ProjectCache
from jigit.services.commenter import CrossTrackerCommenter
from jigit.services.creator import CrossTrackerCreator
from jigit.services.credentials import CredentialResolver, Prompt, ask_credentials
from jigit.services.linker import Linker
from jigit.storage import (
    BUCKET_GITLAB_ISSUES,
    BUCKET_GITLAB_PROJECTS,
    BUCKET_JIRA_ISSUES,
    Store,
)
from jigit.trackers.base import Tracker
from jigit.trackers.gitlab import GitLabTracker
from jigit.trackers.jira import JiraTracker

LOG = logging.getLogger("jigit.session")


class Session:
    """Owns the store for one command invocation.

    Tracker factories can be replaced (tests pass in-memory trackers).
    """

    def __init__(
        self,
        config: AppConfig,
        store: Store | None = None,
        prompt: Prompt = ask_credentials,
        gitlab_factory: Callable[["Session"], Tracker] | None = None,
        jira_factory: Callable[["Session"], Tracker] | None = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else Store.open(validate_storage(config))
        self.credentials = CredentialResolver(self.store, prompt)
        self._gitlab_factory = gitlab_factory or _build_gitlab
        self._jira_factory = jira_factory or _build_jira
        self._gitlab: Tracker | None = None
        self._jira: Tracker | None = None
        self._gitlab_projects: ProjectCache | None = None
        self._gitlab_issues: IssueCache | None = None
        self._jira_issues: IssueCache | None = None

    @property
    def gitlab(self) -> Tracker:
        if self._gitlab is None:
            self._gitlab = self._gitlab_factory(self)
        return self._gitlab

    @property
    def jira(self) -> Tracker:
        if self._jira is None:
            self._jira = self._jira_factory(self)
        return self._jira

    @property
    def bypass_cache(self) -> bool:
        return self.config.storage.disable_cache

    @property
    def gitlab_projects(self) -> ProjectCache:
        if self._gitlab_projects is None:
            self._gitlab_projects = ProjectCache(self.store, self.gitlab, BUCKET_GITLAB_PROJECTS, self.bypass_cache)
        return self._gitlab_projects

    @property
    def gitlab_issues(self) -> IssueCache:
        if self._gitlab_issues is None:
            self._gitlab_issues = IssueCache(self.store, self.gitlab, BUCKET_GITLAB_ISSUES, self.bypass_cache)
        return self._gitlab_issues

    @property
    def jira_issues(self) -> IssueCache:
        if self._jira_issues is None:
            self._jira_issues = IssueCache(self.store, self.jira, BUCKET_JIRA_ISSUES, self.bypass_cache)
        return self._jira_issues

    def linker(self, verifying: bool = False) -> Linker:
        """Linker over the store; verifying=True wires the caches for link()."""
        if not verifying:
            return Linker(self.store)
        return Linker(self.store, self.gitlab_projects, self.gitlab_issues, self.jira_issues)

    def creator(self) -> CrossTrackerCreator:
        return CrossTrackerCreator(
            self.gitlab,
            self.jira,
            self.gitlab_projects,
            self.linker(),
            self.config.jira.project,
            gitlab_issues=self.gitlab_issues,
            jira_issues=self.jira_issues,
        )

    def commenter(self) -> CrossTrackerCommenter:
        return CrossTrackerCommenter(self.gitlab, self.jira, self.gitlab_projects, self.linker())

    def invalidate_caches(self) -> None:
        """Empty every cache bucket (projects and issues of both trackers)."""
        for bucket in (BUCKET_GITLAB_PROJECTS, BUCKET_GITLAB_ISSUES, BUCKET_JIRA_ISSUES):
            self.store.invalidate(bucket)
        LOG.info("Cache invalidated")

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _build_gitlab(session: Session) -> Tracker:
    address = session.config.gitlab.address
    if not address:
        raise ConfigError("GitLab address is not configured; run 'jigit config --set gitlab.address URL'")
    return GitLabTracker(address, lambda: session.credentials.resolve("gitlab", address))


def _build_jira(session: Session) -> Tracker:
    address = session.config.jira.address
    if not address:
        raise ConfigError("Jira address is not configured; run 'jigit config --set jira.address URL'")
    return JiraTracker(
        address,
        lambda: session.credentials.resolve("jira", address),
        issue_type=session.config.jira.issue_type,
    )
