"""Tests for jigit.session (per-invocation wiring)."""

import threading
import time
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from jigit.config import AppConfig, ConfigError
from jigit.services.credentials import Credentials
from jigit.session import Session
from jigit.storage import BUCKET_GITLAB_PROJECTS, BUCKET_LINKS, KeyNotFound, Store
from jigit.trackers.gitlab import GitLabTracker
from jigit.trackers.jira import JiraTracker

from tests.conftest import FakeTracker


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    config = AppConfig()
    config.storage.path = str(tmp_path / "cache.db")
    config.gitlab.address = "https://gitlab.example.com"
    config.jira.address = "https://jira.example.com"
    config.jira.project = "PROJ"
    return config


def test_opens_store_from_config(config: AppConfig, tmp_path: Path) -> None:
    with Session(config) as session:
        assert session.store.path == tmp_path / "cache.db"
    assert session.store.closed


def test_encrypt_refused(config: AppConfig) -> None:
    config.storage.encrypt = True
    with pytest.raises(ConfigError):
        Session(config)


def test_trackers_built_lazily_without_prompt(config: AppConfig) -> None:
    """Building trackers does not ask for credentials yet."""
    prompt = Mock(return_value=Credentials("alice", "pw"))
    with Session(config, prompt=prompt) as session:
        assert isinstance(session.gitlab, GitLabTracker)
        assert isinstance(session.jira, JiraTracker)
        assert session.gitlab is session.gitlab
        prompt.assert_not_called()


def test_tracker_credentials_come_from_resolver(config: AppConfig) -> None:
    prompt = Mock(return_value=Credentials("alice", "pw"))
    with Session(config, prompt=prompt) as session:
        assert session.gitlab._ensure_session().headers["PRIVATE-TOKEN"] == "pw"
        prompt.assert_called_once_with("gitlab", "https://gitlab.example.com")
        assert session.credentials.stored("gitlab") == Credentials("alice", "pw")


def test_missing_address(config: AppConfig) -> None:
    config.gitlab.address = ""
    with Session(config) as session:
        with pytest.raises(ConfigError, match="gitlab.address"):
            session.gitlab


def test_invalidate_caches_keeps_links(store: Store, config: AppConfig, gitlab: FakeTracker) -> None:
    session = Session(config, store=store, gitlab_factory=lambda s: gitlab)
    session.gitlab_projects.by_name("infra")
    session.linker().create("infra", 42, "PROJ-7")

    session.invalidate_caches()

    with pytest.raises(KeyNotFound):
        store.get(BUCKET_GITLAB_PROJECTS, "infra")
    assert store.get(BUCKET_LINKS, "infra#42") == b"PROJ-7"


def test_disable_cache_bypasses(store: Store, config: AppConfig, gitlab: FakeTracker) -> None:
    config.storage.disable_cache = True
    session = Session(config, store=store, gitlab_factory=lambda s: gitlab)
    assert session.gitlab_projects.bypass
    assert session.gitlab_issues.bypass


def test_creator_uses_configured_jira_project(
    store: Store, config: AppConfig, gitlab: FakeTracker, jira: FakeTracker
) -> None:
    session = Session(config, store=store, gitlab_factory=lambda s: gitlab, jira_factory=lambda s: jira)
    result = session.creator().create("infra", "t", "d")
    assert result.ticket.project_id == "PROJ"
    assert session.linker().resolve("infra#101") == "PROJ-101"


def _api(method: str, url: str, **kwargs) -> Mock:
    resp = Mock(status_code=200, text="", reason="")
    if url.endswith("/api/v4/projects"):
        resp.json.return_value = [{"id": 12, "name": "infra"}]
    elif url.endswith("/projects/12/issues/42"):
        resp.json.return_value = {"iid": 42, "project_id": 12, "title": "Disk is full"}
    else:
        resp.json.return_value = {"key": "PROJ-7", "fields": {"summary": "Disk is full"}}
    return resp


def test_first_link_prompts_one_tracker_at_a_time(config: AppConfig) -> None:
    """Both trackers connect from fan-out threads; their prompts must not overlap."""
    active = []
    peak = []
    lock = threading.Lock()

    def prompt(tracker: str, site: str) -> Credentials:
        with lock:
            active.append(tracker)
            peak.append(len(active))
        time.sleep(0.1)
        with lock:
            active.remove(tracker)
        return Credentials("alice", "pw")

    with patch("requests.Session.request", side_effect=_api):
        with Session(config, prompt=prompt) as session:
            issue, ticket = session.linker(verifying=True).link("infra", 42, "PROJ-7")

    assert (issue.key, ticket.key) == ("42", "PROJ-7")
    assert len(peak) == 2
    assert max(peak) == 1
