"""Bucketed key-value storage in a single SQLite file.

Buckets are named namespaces of key -> bytes pairs. All required buckets are
created when the store is opened. Every call runs in its own transaction on
its own connection: writes take the single write lock (BEGIN IMMEDIATE),
reads run in deferred transactions and may proceed concurrently (WAL).
There is no atomicity across calls; use Store.update() to group writes.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Tuple

BUCKET_AUTH = "auth"
BUCKET_GITLAB_PROJECTS = "project-cache:gitlab"
BUCKET_GITLAB_ISSUES = "issue-cache:gitlab"
BUCKET_JIRA_ISSUES = "issue-cache:jira"
BUCKET_LINKS = "issue-links"

REQUIRED_BUCKETS = (
    BUCKET_AUTH,
    BUCKET_GITLAB_PROJECTS,
    BUCKET_GITLAB_ISSUES,
    BUCKET_JIRA_ISSUES,
    BUCKET_LINKS,
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS buckets (
    name TEXT PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS entries (
    bucket TEXT NOT NULL,
    key    TEXT NOT NULL,
    value  BLOB NOT NULL,
    PRIMARY KEY (bucket, key)
);
"""

LOG = logging.getLogger("jigit.storage")


class StoreError(Exception):
    """Raised when the storage file cannot be used."""

    pass


class BucketNotFound(StoreError):
    """Raised when operating on a bucket that does not exist."""

    def __init__(self, bucket: str) -> None:
        super().__init__(f"bucket '{bucket}' does not exist")
        self.bucket = bucket


class KeyNotFound(StoreError):
    """Raised when a key is absent from its bucket."""

    def __init__(self, bucket: str, key: str) -> None:
        super().__init__(f"key '{key}' does not exist in bucket '{bucket}'")
        self.bucket = bucket
        self.key = key


class Transaction:
    """Bucket operations inside one open SQLite transaction."""

    def __init__(self, conn: sqlite3.Connection, writable: bool) -> None:
        self._conn = conn
        self.writable = writable

    def _require_bucket(self, bucket: str) -> None:
        row = self._conn.execute("SELECT 1 FROM buckets WHERE name = ?", (bucket,)).fetchone()
        if row is None:
            raise BucketNotFound(bucket)

    def _require_writable(self) -> None:
        if not self.writable:
            raise StoreError("write in read-only transaction")

    def get(self, bucket: str, key: str) -> bytes | None:
        """Value stored under key, or None when absent."""
        self._require_bucket(bucket)
        row = self._conn.execute(
            "SELECT value FROM entries WHERE bucket = ? AND key = ?", (bucket, key)
        ).fetchone()
        return None if row is None else bytes(row[0])

    def put(self, bucket: str, key: str, value: bytes) -> None:
        """Insert or replace key."""
        self._require_writable()
        self._require_bucket(bucket)
        self._conn.execute(
            "INSERT OR REPLACE INTO entries (bucket, key, value) VALUES (?, ?, ?)",
            (bucket, key, bytes(value)),
        )

    def delete(self, bucket: str, key: str) -> bool:
        """Delete key; return True if it existed."""
        self._require_writable()
        self._require_bucket(bucket)
        cur = self._conn.execute("DELETE FROM entries WHERE bucket = ? AND key = ?", (bucket, key))
        return cur.rowcount > 0

    def items(self, bucket: str) -> List[Tuple[str, bytes]]:
        """All (key, value) pairs of the bucket."""
        self._require_bucket(bucket)
        rows = self._conn.execute("SELECT key, value FROM entries WHERE bucket = ?", (bucket,)).fetchall()
        return [(k, bytes(v)) for k, v in rows]

    def create_bucket(self, bucket: str) -> None:
        """Create bucket if it does not exist."""
        self._require_writable()
        self._conn.execute("INSERT OR IGNORE INTO buckets (name) VALUES (?)", (bucket,))

    def drop_bucket(self, bucket: str) -> None:
        """Delete bucket and all of its entries."""
        self._require_writable()
        self._require_bucket(bucket)
        self._conn.execute("DELETE FROM entries WHERE bucket = ?", (bucket,))
        self._conn.execute("DELETE FROM buckets WHERE name = ?", (bucket,))


class Store:
    """Durable bucketed key-value store backed by one SQLite file.

    Scoped to one command invocation: open with Store.open(path), close with
    close() (or use as a context manager).
    """

    def __init__(self, path: Path, timeout: float = 10.0) -> None:
        self.path = Path(path)
        self._timeout = timeout
        self._closed = False

    @classmethod
    def open(cls, path: Path, buckets: tuple[str, ...] = REQUIRED_BUCKETS) -> "Store":
        """Open (creating if absent) the storage file and ensure buckets exist."""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if not path.exists():
                fd = os.open(path, os.O_CREAT | os.O_WRONLY, 0o600)
                os.close(fd)
            store = cls(path)
            with store._connect() as conn:
                conn.execute("PRAGMA journal_mode = WAL")
                conn.executescript(SCHEMA_SQL)
            with store.update() as tx:
                for bucket in buckets:
                    tx.create_bucket(bucket)
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"can't open storage '{path}': {e}") from e
        LOG.debug("Opened storage %s", path)
        return store

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if self._closed:
            raise StoreError(f"storage '{self.path}' is closed")
        conn = sqlite3.connect(self.path, timeout=self._timeout, isolation_level=None)
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, writable: bool) -> Iterator[Transaction]:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE" if writable else "BEGIN")
            try:
                yield Transaction(conn, writable)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    @contextmanager
    def update(self) -> Iterator[Transaction]:
        """Read-write transaction; committed on success, rolled back on error."""
        try:
            with self._transaction(writable=True) as tx:
                yield tx
        except sqlite3.Error as e:
            raise StoreError(f"storage write failed: {e}") from e

    @contextmanager
    def view(self) -> Iterator[Transaction]:
        """Read-only transaction."""
        try:
            with self._transaction(writable=False) as tx:
                yield tx
        except sqlite3.Error as e:
            raise StoreError(f"storage read failed: {e}") from e

    def set(self, bucket: str, key: str, value: bytes) -> None:
        """Upsert key in bucket."""
        with self.update() as tx:
            tx.put(bucket, key, value)

    def get(self, bucket: str, key: str) -> bytes:
        """Return value of key; raise KeyNotFound or BucketNotFound."""
        with self.view() as tx:
            value = tx.get(bucket, key)
        if value is None:
            raise KeyNotFound(bucket, key)
        return value

    def get_string(self, bucket: str, key: str) -> str:
        """Like get(), decoded as UTF-8."""
        return self.get(bucket, key).decode("utf-8")

    def delete(self, bucket: str, key: str) -> bool:
        """Delete key; return True if it existed."""
        with self.update() as tx:
            return tx.delete(bucket, key)

    def for_each(self, bucket: str, visit: Callable[[str, bytes], None]) -> None:
        """Call visit(key, value) for every pair; stop on the first visitor error.

        Order is unspecified. The bucket is read in one transaction and
        visited after it ends, so visitors may write to the store.
        """
        with self.view() as tx:
            items = tx.items(bucket)
        for key, value in items:
            visit(key, value)

    def invalidate(self, bucket: str) -> None:
        """Drop and recreate bucket atomically; all entries are lost."""
        with self.update() as tx:
            tx.drop_bucket(bucket)
            tx.create_bucket(bucket)
        LOG.debug("Invalidated bucket %s", bucket)

    def close(self) -> None:
        """Release the store. Idempotent."""
        if not self._closed:
            self._closed = True
            LOG.debug("Closed storage %s", self.path)

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
