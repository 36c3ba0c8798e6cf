"""Cross-tracker services: credentials, caches, links and the dual-write protocols."""

from jigit.services.cache import IssueCache, ProjectCache
from jigit.services.commenter import CommentResult, CommentState, CrossTrackerCommenter
from jigit.services.creator import CompensationError, CreateResult, CreateState, CrossTrackerCreator
from jigit.services.credentials import CredentialResolver, Credentials
from jigit.services.fanout import run_all
from jigit.services.linker import LinkError, LinkInconsistency, Linker, LinkNotFound
from jigit.services.markup import md_to_jira

__all__ = [
    "CommentResult",
    "CommentState",
    "CompensationError",
    "CreateResult",
    "CreateState",
    "CredentialResolver",
    "Credentials",
    "CrossTrackerCommenter",
    "CrossTrackerCreator",
    "IssueCache",
    "LinkError",
    "LinkInconsistency",
    "LinkNotFound",
    "Linker",
    "ProjectCache",
    "md_to_jira",
    "run_all",
]
