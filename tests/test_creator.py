"""Tests for jigit.services.creator (create, compensate, link)."""

import logging
from unittest.mock import patch

import pytest

from jigit.config import ConfigError
from jigit.services.cache import IssueCache, ProjectCache
from jigit.services.creator import CompensationError, CreateResult, CreateState, CrossTrackerCreator
from jigit.services.linker import Linker, LinkNotFound
from jigit.storage import (
    BUCKET_GITLAB_ISSUES,
    BUCKET_GITLAB_PROJECTS,
    BUCKET_JIRA_ISSUES,
    BUCKET_LINKS,
    Store,
    StoreError,
)
from jigit.trackers.base import RemoteCreateError, RemoteFetchError

from tests.conftest import FakeTracker


@pytest.fixture
def linker(store: Store) -> Linker:
    return Linker(store)


@pytest.fixture
def creator(store: Store, gitlab: FakeTracker, jira: FakeTracker, linker: Linker) -> CrossTrackerCreator:
    return CrossTrackerCreator(
        gitlab,
        jira,
        ProjectCache(store, gitlab, BUCKET_GITLAB_PROJECTS),
        linker,
        "PROJ",
        gitlab_issues=IssueCache(store, gitlab, BUCKET_GITLAB_ISSUES),
        jira_issues=IssueCache(store, jira, BUCKET_JIRA_ISSUES),
    )


def _links(store: Store) -> dict[str, bytes]:
    pairs: dict[str, bytes] = {}
    store.for_each(BUCKET_LINKS, lambda k, v: pairs.__setitem__(k, v))
    return pairs


class TestSuccess:
    """Both creates succeed and the link is stored."""

    def test_creates_and_links(self, creator: CrossTrackerCreator, linker: Linker, jira: FakeTracker) -> None:
        result = creator.create("infra", "Disk is full", "Use `df -h`", labels=["ops"])

        assert result.ok
        assert result.state is CreateState.LINKED
        assert result.issue is not None and result.issue.key == "101"
        assert result.ticket is not None and result.ticket.key == "PROJ-101"
        assert linker.resolve("infra#101") == "PROJ-101"
        assert linker.resolve("PROJ-101") == "infra#101"
        assert result.warnings == []

    def test_assignees_and_markup(self, creator: CrossTrackerCreator, gitlab: FakeTracker, jira: FakeTracker) -> None:
        """Each side is assigned to its own current user; Jira gets wiki markup."""
        result = creator.create("infra", "Disk is full", "Use `df -h` **now**")
        assert result.issue.assignee == "gitlab-user"
        assert result.ticket.assignee == "jira-user"
        assert result.issue.description == "Use `df -h` **now**"
        assert result.ticket.description == "Use {{df -h}} *now*"

    def test_created_entities_are_cached(self, creator: CrossTrackerCreator, store: Store) -> None:
        creator.create("infra", "t", "d")
        assert store.get(BUCKET_GITLAB_ISSUES, "12#101")
        assert store.get(BUCKET_JIRA_ISSUES, "PROJ-101")

    def test_summary_names_both_sides(self, creator: CrossTrackerCreator) -> None:
        lines = creator.create("infra", "t", "d").summary()
        assert any("infra#101" in line for line in lines)
        assert any("PROJ-101" in line for line in lines)


class TestFailuresBeforeAnyWrite:
    """Nothing is created, the error propagates."""

    def test_unknown_project(self, creator: CrossTrackerCreator, gitlab: FakeTracker) -> None:
        with pytest.raises(RemoteFetchError):
            creator.create("nope", "t", "d")
        assert not any(c.startswith("create_issue") for c in gitlab.calls)

    def test_gitlab_create_fails(self, creator: CrossTrackerCreator, gitlab: FakeTracker, jira: FakeTracker) -> None:
        gitlab.fail_create = True
        with pytest.raises(RemoteCreateError) as exc_info:
            creator.create("infra", "t", "d")
        assert exc_info.value.tracker == "gitlab"
        assert exc_info.value.phase == "create issue"
        assert not any(c.startswith("create_issue") for c in jira.calls)

    def test_jira_user_unreachable(self, creator: CrossTrackerCreator, gitlab: FakeTracker, jira: FakeTracker) -> None:
        jira.fail_fetch = True
        with pytest.raises(RemoteFetchError):
            creator.create("infra", "t", "d")
        assert not any(c.startswith("create_issue") for c in gitlab.calls)

    def test_jira_project_required(self, store: Store, gitlab: FakeTracker, jira: FakeTracker) -> None:
        creator = CrossTrackerCreator(gitlab, jira, ProjectCache(store, gitlab, BUCKET_GITLAB_PROJECTS), Linker(store), "")
        with pytest.raises(ConfigError):
            creator.create("infra", "t", "d")


class TestCompensation:
    """Jira create fails after the GitLab issue exists."""

    def test_scenario_issue_101_closed(
        self, creator: CrossTrackerCreator, gitlab: FakeTracker, jira: FakeTracker, store: Store
    ) -> None:
        """Issue 101 ends closed with an explanatory description and no link."""
        jira.fail_create = True
        result = creator.create("infra", "Disk is full", "original body")

        assert result.state is CreateState.COMPENSATED
        assert not result.ok
        assert result.issue is not None and result.issue.key == "101"
        closed = gitlab.issues[("12", "101")]
        assert closed.state == "closed"
        assert "Closed automatically by jigit" in closed.description
        assert "500: boom" in closed.description
        assert "original body" in closed.description
        assert isinstance(result.error, RemoteCreateError)
        assert result.error.tracker == "jira"
        assert result.error.phase == "create ticket"
        assert _links(store) == {}

    def test_double_failure_reports_both_errors(
        self, creator: CrossTrackerCreator, gitlab: FakeTracker, jira: FakeTracker
    ) -> None:
        jira.fail_create = True
        gitlab.fail_close = True
        result = creator.create("infra", "t", "d")

        assert result.state is CreateState.COMPENSATION_FAILED
        assert result.error is not None
        assert isinstance(result.compensation_error, CompensationError)
        assert result.compensation_error.original is result.error
        assert "503" in str(result.compensation_error.cause)
        assert result.requires_manual_review
        assert gitlab.issues[("12", "101")].state == "opened"
        text = "\n".join(result.summary())
        assert "500: boom" in text
        assert "503" in text
        assert "MANUAL INTERVENTION REQUIRED" in text

    def test_unexpected_jira_error_also_compensated(
        self, creator: CrossTrackerCreator, gitlab: FakeTracker, jira: FakeTracker
    ) -> None:
        with patch.object(jira, "create_issue", side_effect=RuntimeError("bug")):
            result = creator.create("infra", "t", "d")
        assert result.state is CreateState.COMPENSATED
        assert "bug" in str(result.error)


class TestLinkPersistFailure:
    """Both sides exist but the link cannot be stored: warning only."""

    def test_warning_names_both_sides(
        self, creator: CrossTrackerCreator, linker: Linker, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.WARNING)
        with patch.object(linker, "create", side_effect=StoreError("disk full")):
            result = creator.create("infra", "t", "d")

        assert result.ok
        assert result.state is CreateState.LINKED
        assert len(result.warnings) == 1
        assert "infra#101" in result.warnings[0]
        assert "PROJ-101" in result.warnings[0]
        assert "jigit ln infra#101 PROJ-101" in result.warnings[0]
        assert "link was not saved" in caplog.text
        with pytest.raises(LinkNotFound):
            linker.resolve("infra#101")


def test_summary_of_incomplete_result_does_not_fail() -> None:
    """A LINKED state without entities is reported, not asserted on."""
    lines = CreateResult(state=CreateState.LINKED).summary()
    assert lines == ["Creation stopped in state linked: None"]
