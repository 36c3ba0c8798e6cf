"""Per-tracker login/secret kept in the auth bucket.

Credentials are looked up in the store first; when absent they are prompted
for once and persisted. They are stored as plain bytes (see DESIGN.md).
"""

import getpass
import logging
import threading
from typing import Callable, NamedTuple

from jigit.storage import BUCKET_AUTH, Store, StoreError

LOG = logging.getLogger("jigit.services.credentials")


class Credentials(NamedTuple):
    """Login and secret (password or API token) for one tracker."""

    login: str
    secret: str


Prompt = Callable[[str, str], Credentials]


def login_key(tracker: str) -> str:
    return f"{tracker}.user"


def secret_key(tracker: str) -> str:
    return f"{tracker}.pass"


def ask_credentials(tracker: str, site: str) -> Credentials:
    """Ask the user for login and secret on the terminal (secret is not echoed)."""
    login = input(f"Username for '{site}': ").strip()
    secret = getpass.getpass(f"Password or token for '{site}': ")
    return Credentials(login, secret)


class CredentialResolver:
    """Fetch-or-prompt-and-persist of per-tracker credentials.

    resolve() holds a lock: trackers connect lazily from fan-out threads and
    only one prompt may own the terminal at a time.
    """

    def __init__(self, store: Store, prompt: Prompt = ask_credentials) -> None:
        self._store = store
        self._prompt = prompt
        self._lock = threading.Lock()

    def stored(self, tracker: str) -> Credentials | None:
        """Credentials from the auth bucket, or None if any part is missing."""
        try:
            login = self._store.get_string(BUCKET_AUTH, login_key(tracker))
            secret = self._store.get_string(BUCKET_AUTH, secret_key(tracker))
        except (StoreError, UnicodeDecodeError) as e:
            LOG.debug("No stored credentials for %s: %s", tracker, e)
            return None
        return Credentials(login, secret)

    def resolve(self, tracker: str, site: str) -> Credentials:
        """Return stored credentials, prompting and persisting them when absent.

        Failure to persist is logged as a warning; the prompted credentials
        are still returned for this session.
        """
        with self._lock:
            creds = self.stored(tracker)
            if creds is not None:
                return creds

            creds = self._prompt(tracker, site)
            try:
                with self._store.update() as tx:
                    tx.put(BUCKET_AUTH, login_key(tracker), creds.login.encode("utf-8"))
                    tx.put(BUCKET_AUTH, secret_key(tracker), creds.secret.encode("utf-8"))
            except StoreError as e:
                LOG.warning("Could not save %s credentials, you will be asked again next time: %s", tracker, e)
            else:
                LOG.info("Saved %s credentials", tracker)
            return creds

    def forget(self, tracker: str) -> None:
        """Remove stored credentials of tracker."""
        with self._store.update() as tx:
            tx.delete(BUCKET_AUTH, login_key(tracker))
            tx.delete(BUCKET_AUTH, secret_key(tracker))
