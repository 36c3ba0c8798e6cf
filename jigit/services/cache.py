"""Read-through cache of tracker projects and issues.

Lookups try the store bucket first and fall back to the tracker on a miss
(absent key or undecodable payload), storing what the tracker returned.
There is no TTL: entries live until the bucket is invalidated. Cache writes
are best effort; a failed write is logged and the fetched entity is still
returned.
"""

import logging
from typing import Iterable, List, Type, TypeVar

from pydantic import BaseModel

from jigit.models import DecodeError, Issue, Project, decode, encode
from jigit.storage import KeyNotFound, Store, StoreError
from jigit.trackers.base import RemoteFetchError, Tracker

T = TypeVar("T", bound=BaseModel)

LOG = logging.getLogger("jigit.services.cache")


class ReadThroughCache:
    """Shared bucket plumbing for the project and issue caches.

    With bypass=True (storage.disable_cache) every lookup goes to the
    tracker, results are still written back.
    """

    def __init__(self, store: Store, tracker: Tracker, bucket: str, bypass: bool = False) -> None:
        self._store = store
        self._tracker = tracker
        self.bucket = bucket
        self.bypass = bypass

    def _lookup(self, model: Type[T], key: str) -> T | None:
        """Decoded entry under key, or None on miss. Decode failures count as misses."""
        if self.bypass:
            return None
        try:
            payload = self._store.get(self.bucket, key)
        except KeyNotFound:
            LOG.debug("[CACHE] %s: miss '%s'", self.bucket, key)
            return None
        try:
            entity = decode(model, payload)
        except DecodeError as e:
            LOG.warning("[CACHE] %s: corrupt entry '%s', refetching: %s", self.bucket, key, e)
            return None
        LOG.debug("[CACHE] %s: hit '%s'", self.bucket, key)
        return entity

    def _scan(self, model: Type[T]) -> List[tuple[str, T]]:
        """All decodable (key, entity) pairs; corrupt entries are skipped."""
        found: List[tuple[str, T]] = []

        def visit(key: str, value: bytes) -> None:
            try:
                found.append((key, decode(model, value)))
            except DecodeError as e:
                LOG.warning("[CACHE] %s: skipping corrupt entry '%s': %s", self.bucket, key, e)

        self._store.for_each(self.bucket, visit)
        return found

    def _save(self, pairs: Iterable[tuple[str, BaseModel]]) -> None:
        """Write (key, entity) pairs in one transaction."""
        pairs = list(pairs)
        try:
            with self._store.update() as tx:
                for key, entity in pairs:
                    tx.put(self.bucket, key, encode(entity))
        except StoreError as e:
            LOG.warning("[CACHE] %s: can't store %d entries: %s", self.bucket, len(pairs), e)

    def invalidate(self) -> None:
        """Drop every entry of the bucket."""
        self._store.invalidate(self.bucket)


class ProjectCache(ReadThroughCache):
    """Projects indexed under both their decimal id and their name."""

    def store_projects(self, projects: Iterable[Project]) -> None:
        """Cache projects under id and name keys (one transaction per project)."""
        for p in projects:
            self._save([(p.id, p), (p.name, p)])

    def by_name(self, name: str, alike: bool = False) -> Project:
        """Project by exact name; alike also accepts a substring match from the remote search."""
        cached = self._lookup(Project, name)
        if cached is not None and cached.name == name:
            return cached

        projects = self._tracker.search_projects(name)
        self.store_projects(projects)
        for p in projects:
            if p.name == name:
                return p
        if alike:
            for p in projects:
                if name in p.name:
                    return p
        raise RemoteFetchError(self._tracker.name, "project not found", entity=f"project {name}")

    def by_id(self, project_id: int | str) -> Project:
        """Project by numeric id."""
        key = str(project_id)
        cached = self._lookup(Project, key)
        if cached is not None and cached.id == key:
            return cached

        project = self._tracker.get_project(key)
        self.store_projects([project])
        return project

    def name_by_id(self, project_id: int | str) -> str:
        return self.by_id(project_id).name

    def list(self, limit: int, force_refresh: bool = False) -> List[Project]:
        """Cached projects, or remote ones when forced or the cache is empty.

        Both paths return at most limit projects; the remote call receives
        limit as its page size.
        """
        if not (force_refresh or self.bypass):
            unique: dict[str, Project] = {}
            for _key, p in self._scan(Project):
                unique.setdefault(p.id, p)
            if unique:
                LOG.debug("[CACHE] %s: loaded %d projects", self.bucket, len(unique))
                return sorted(unique.values(), key=lambda p: p.name)[:limit]

        projects = self._tracker.list_projects(limit)
        self.store_projects(projects)
        return projects[:limit]


class IssueCache(ReadThroughCache):
    """Issues keyed by '<project_id>#<iid>' (GitLab) or ticket key (Jira)."""

    @staticmethod
    def cache_key(project: str | None, key: str) -> str:
        return f"{project}#{key}" if project else key

    def put(self, issue: Issue) -> None:
        self._save([(issue.cache_key, issue)])

    def get(self, project: str | None, key: str) -> Issue:
        """Issue by key; project is the GitLab project id, None for Jira."""
        cached = self._lookup(Issue, self.cache_key(project, key))
        if cached is not None:
            return cached

        issue = self._tracker.get_issue(project, key)
        self.put(issue)
        return issue

    def list(
        self,
        project: str | None,
        limit: int,
        force_refresh: bool = False,
        include_closed: bool = False,
    ) -> List[Issue]:
        """Issues of project, or the ones assigned to the current user when project is None.

        Remote path runs when forced or nothing matching is cached.
        """
        if not (force_refresh or self.bypass):
            mine = self._my_logins() if project is None else set()
            issues = [
                issue
                for _key, issue in self._scan(Issue)
                if (issue.project_id == project if project is not None else issue.assignee in mine)
                and (include_closed or issue.state not in ("closed", "Closed", "Done", "Resolved"))
            ]
            if issues:
                return issues[:limit]

        issues = self._tracker.list_issues(project, limit, include_closed=include_closed)
        self._save([(i.cache_key, i) for i in issues])
        return issues[:limit]

    def _my_logins(self) -> set[str]:
        # Jira tickets carry the display name when the login is hidden
        user = self._tracker.current_user()
        return {name for name in (user.login, user.name) if name}
