"""Bidirectional links between GitLab issues and Jira tickets.

A link is two entries in the issue-links bucket, written and deleted in one
transaction:

    "<project_name>#<iid>" -> "<TICKET-KEY>"
    "<TICKET-KEY>"          -> "<project_name>#<iid>"

A link with only one direction present is reported as LinkInconsistency,
never repaired by guessing.
"""

import logging
from typing import List, Tuple

from jigit.models import Issue
from jigit.services.cache import IssueCache, ProjectCache
from jigit.services.fanout import run_all
from jigit.storage import BUCKET_LINKS, Store

LOG = logging.getLogger("jigit.services.linker")


class LinkError(Exception):
    """Base for link failures."""

    pass


class LinkNotFound(LinkError):
    """No link exists for the given key(s)."""

    def __init__(self, key: str) -> None:
        super().__init__(f"no link found for '{key}'")
        self.key = key


class LinkInconsistency(LinkError):
    """Only one direction of a link is stored, or the directions disagree."""

    def __init__(self, present: str, missing: str) -> None:
        super().__init__(
            f"inconsistent link: '{present}' is stored but '{missing}' does not point back; "
            "fix it manually with 'jigit ln -d' and link again"
        )
        self.present = present
        self.missing = missing


def issue_ref(project_name: str, issue_id: int) -> str:
    """GitLab side key of a link: '<project_name>#<iid>'."""
    return f"{project_name}#{issue_id}"


def parse_issue_ref(ref: str) -> Tuple[str, int]:
    """Split 'project#42' into ('project', 42); raise ValueError when malformed."""
    project, sep, iid = ref.rpartition("#")
    if not sep or not project:
        raise ValueError(f"bad issue reference '{ref}', expected PROJECT_NAME#ISSUE_ID")
    try:
        issue_id = int(iid)
    except ValueError:
        raise ValueError(f"bad issue id '{iid}' in '{ref}'") from None
    if issue_id <= 0:
        raise ValueError(f"bad issue id '{iid}' in '{ref}'")
    return project, issue_id


def _check_ticket_key(ticket_key: str) -> None:
    if not ticket_key or "#" in ticket_key:
        raise ValueError(f"bad Jira ticket key '{ticket_key}'")


class Linker:
    """Create, drop, resolve and list links.

    The caches are only needed by link(), which checks that both sides exist
    before writing.
    """

    def __init__(
        self,
        store: Store,
        gitlab_projects: ProjectCache | None = None,
        gitlab_issues: IssueCache | None = None,
        jira_issues: IssueCache | None = None,
    ) -> None:
        self._store = store
        self._gitlab_projects = gitlab_projects
        self._gitlab_issues = gitlab_issues
        self._jira_issues = jira_issues

    def create(self, project_name: str, issue_id: int, ticket_key: str) -> None:
        """Write both directions in one transaction (last write wins).

        A previous link of either side is removed so that each key maps to
        at most one counterpart.
        """
        _check_ticket_key(ticket_key)
        ref = issue_ref(project_name, issue_id)
        with self._store.update() as tx:
            for key, counterpart in ((ref, ticket_key), (ticket_key, ref)):
                old = tx.get(BUCKET_LINKS, key)
                if old is None or old.decode("utf-8") == counterpart:
                    continue
                old_key = old.decode("utf-8")
                back = tx.get(BUCKET_LINKS, old_key)
                if back is not None and back.decode("utf-8") == key:
                    tx.delete(BUCKET_LINKS, old_key)
                    LOG.info("Replaced link %s <-> %s", key, old_key)
            tx.put(BUCKET_LINKS, ref, ticket_key.encode("utf-8"))
            tx.put(BUCKET_LINKS, ticket_key, ref.encode("utf-8"))
        LOG.debug("Linked %s <-> %s", ref, ticket_key)

    def verify(self, project_name: str, issue_id: int, ticket_key: str) -> Tuple[Issue, Issue]:
        """Fetch the GitLab issue and the Jira ticket concurrently.

        Raises the first failure once both checks have finished.
        """
        if self._gitlab_projects is None or self._gitlab_issues is None or self._jira_issues is None:
            raise LinkError("link verification needs GitLab and Jira caches")
        projects, gitlab_issues, jira_issues = self._gitlab_projects, self._gitlab_issues, self._jira_issues

        def gitlab_side() -> Issue:
            project = projects.by_name(project_name)
            return gitlab_issues.get(project.id, str(issue_id))

        def jira_side() -> Issue:
            return jira_issues.get(None, ticket_key)

        issue, ticket = run_all([gitlab_side, jira_side])
        return issue, ticket

    def link(self, project_name: str, issue_id: int, ticket_key: str) -> Tuple[Issue, Issue]:
        """Check that both sides exist, then create the link."""
        _check_ticket_key(ticket_key)
        issue, ticket = self.verify(project_name, issue_id, ticket_key)
        self.create(project_name, issue_id, ticket.key)
        return issue, ticket

    def drop(self, project_name: str, issue_id: int, ticket_key: str) -> None:
        """Delete both directions in one transaction.

        Raises LinkNotFound when neither exists and LinkInconsistency (deleting
        nothing) when only one exists or they point elsewhere.
        """
        ref = issue_ref(project_name, issue_id)
        with self._store.update() as tx:
            forward = tx.get(BUCKET_LINKS, ref)
            backward = tx.get(BUCKET_LINKS, ticket_key)
            if forward is None and backward is None:
                raise LinkNotFound(f"{ref} <-> {ticket_key}")
            if forward is None:
                raise LinkInconsistency(ticket_key, ref)
            if backward is None:
                raise LinkInconsistency(ref, ticket_key)
            if forward.decode("utf-8") != ticket_key or backward.decode("utf-8") != ref:
                raise LinkInconsistency(ref, ticket_key)
            tx.delete(BUCKET_LINKS, ref)
            tx.delete(BUCKET_LINKS, ticket_key)
        LOG.debug("Dropped link %s <-> %s", ref, ticket_key)

    def resolve(self, key: str) -> str:
        """Counterpart of key ('project#iid' or ticket key)."""
        with self._store.view() as tx:
            value = tx.get(BUCKET_LINKS, key)
            if value is None:
                raise LinkNotFound(key)
            counterpart = value.decode("utf-8")
            back = tx.get(BUCKET_LINKS, counterpart)
        if back is None or back.decode("utf-8") != key:
            raise LinkInconsistency(key, counterpart)
        return counterpart

    def list(self) -> List[Tuple[str, str]]:
        """Raw (key, value) pairs of the links bucket, both directions included."""
        pairs: List[Tuple[str, str]] = []
        self._store.for_each(BUCKET_LINKS, lambda k, v: pairs.append((k, v.decode("utf-8"))))
        return pairs
