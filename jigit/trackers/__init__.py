"""Issue tracker clients (GitLab is tracker A, Jira is tracker B)."""

from jigit.trackers.base import RemoteCreateError, RemoteFetchError, Tracker, TrackerError
from jigit.trackers.gitlab import GitLabTracker
from jigit.trackers.jira import JiraTracker

__all__ = [
    "GitLabTracker",
    "JiraTracker",
    "RemoteCreateError",
    "RemoteFetchError",
    "Tracker",
    "TrackerError",
]
