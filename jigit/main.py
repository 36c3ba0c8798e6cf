"""jigit entry point.

Keeps GitLab issues and Jira tickets in step: create both at once, link
existing ones, and comment on both sides.

Usage: jigit ls | ln | commit | add (new) | config | version
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List

from jigit import __version__
from jigit.config import (
    CONFIG_KEYS,
    AppConfig,
    ConfigError,
    get_config_value,
    load_config,
    save_config,
    set_config_value,
)
from jigit.editor import EditorError, compose
from jigit.logging import JigitLogging
from jigit.models import DecodeError, Issue
from jigit.services.creator import CompensationError
from jigit.services.linker import LinkError, LinkNotFound, issue_ref, parse_issue_ref
from jigit.session import Session
from jigit.storage import StoreError
from jigit.trackers.base import TrackerError

LOG = logging.getLogger("jigit.main")

DEFAULT_LIMIT = 20

# Errors that end a command with a diagnostic and exit status 1
CLI_ERRORS = (
    StoreError,
    DecodeError,
    TrackerError,
    LinkError,
    ConfigError,
    CompensationError,
    EditorError,
    ValueError,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jigit",
        description="jigit - keep GitLab issues and Jira tickets linked",
    )
    parser.add_argument("--config", "-c", type=Path, default=None, help="Path to YAML config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log everything (DEBUG)")
    sub = parser.add_subparsers(dest="command", required=True)

    ls = sub.add_parser("ls", help="List projects and issues, show one issue")
    ls.add_argument("-P", "--projects", action="store_true", help="List projects instead of issues")
    ls.add_argument("-j", "--jira", action="store_true", help="Work with Jira instead of GitLab")
    ls.add_argument("-p", "--project", help="GitLab project name whose issues to list")
    ls.add_argument("-s", "--search", action="store_true", help="Accept a project whose name contains --project")
    ls.add_argument("-i", "--issue", help="Show issue PROJECT#ID or ticket KEY")
    ls.add_argument("-n", "--limit", type=int, default=DEFAULT_LIMIT, help="Maximum number of entries")
    ls.add_argument("--no-cache", action="store_true", help="Fetch from remote and refresh the cache")
    ls.add_argument("--all", action="store_true", help="Include closed issues")
    ls.set_defaults(handler=cmd_ls)

    ln = sub.add_parser("ln", help="Link a GitLab issue with a Jira ticket")
    ln.add_argument("issue", nargs="?", help="GitLab issue PROJECT#ID")
    ln.add_argument("ticket", nargs="?", help="Jira ticket KEY")
    ln.add_argument("-d", "--delete", action="store_true", help="Drop the link instead of creating it")
    ln.add_argument("-l", "--list", action="store_true", help="List all links")
    ln.set_defaults(handler=cmd_ln)

    commit = sub.add_parser("commit", help="Comment on a GitLab issue and its linked Jira ticket")
    commit.add_argument("issue", help="GitLab issue PROJECT#ID")
    commit.add_argument("-m", "--message", help="Comment text (editor is opened when omitted)")
    commit.add_argument("--gitlab-only", action="store_true", help="Comment in GitLab when the issue is not linked")
    commit.set_defaults(handler=cmd_commit)

    add = sub.add_parser("add", aliases=["new"], help="Create a GitLab issue and a linked Jira ticket")
    add.add_argument("-p", "--project", required=True, help="GitLab project name")
    add.add_argument("-t", "--title", help="Title (editor is opened when omitted)")
    add.add_argument("-m", "--message", help="Description (editor is opened when omitted)")
    add.add_argument("--labels", default="", help="Comma-separated labels")
    add.set_defaults(handler=cmd_add)

    config = sub.add_parser("config", help="Show or change settings")
    group = config.add_mutually_exclusive_group()
    group.add_argument("--get", metavar="KEY", help="Print one setting")
    group.add_argument("--set", nargs=2, metavar=("KEY", "VALUE"), help="Change one setting")
    group.add_argument("--forget", metavar="TRACKER", choices=("gitlab", "jira"), help="Drop stored credentials")
    config.set_defaults(handler=cmd_config)

    version = sub.add_parser("version", help="Print version")
    version.set_defaults(handler=cmd_version)
    return parser


def _confirm(question: str) -> bool:
    answer = input(f"{question} (y/n) ").strip().lower()
    return answer in ("y", "yes")


def _text(value: str | None, config: AppConfig, name: str) -> str:
    """Flag value, or text composed in the editor."""
    if value is not None:
        return value
    return compose(config.editor_resolved, name)


def _issue_line(issue: Issue, ref: str) -> str:
    state = f"[{issue.state}] " if issue.state else ""
    return f"{ref:<20} {state}{issue.title}"


def _gitlab_ref(session: Session, issue: Issue) -> str:
    name = issue.project_name or session.gitlab_projects.name_by_id(issue.project_id)
    return issue_ref(name, int(issue.key))


def _show_issue(session: Session, ref: str) -> None:
    if "#" in ref:
        project_name, issue_id = parse_issue_ref(ref)
        project = session.gitlab_projects.by_name(project_name)
        issue = session.gitlab_issues.get(project.id, str(issue_id))
        ref = issue_ref(project.name, issue_id)
        comments = session.gitlab.list_comments(project.id, issue.key)
    else:
        issue = session.jira_issues.get(None, ref)
        comments = session.jira.list_comments(None, issue.key)
    print(_issue_line(issue, ref))
    if issue.web_url:
        print(f"url:      {issue.web_url}")
    if issue.assignee:
        print(f"assignee: {issue.assignee}")
    if issue.labels:
        print(f"labels:   {', '.join(issue.labels)}")
    try:
        print(f"linked:   {session.linker().resolve(ref)}")
    except LinkNotFound:
        print("linked:   -")
    if issue.description:
        print()
        print(issue.description)
    for title, lines in (("Linked issues", issue.links), ("Subtasks", issue.subtasks)):
        if lines:
            print(f"\n{title}:")
            for line in lines:
                print(f"  {line}")
    if not comments:
        print("\nNo comments")
        return
    print(f"\nComments ({len(comments)}):")
    for c in comments:
        when = c.created_at.strftime("%Y-%m-%d %H:%M") if c.created_at else ""
        print(f"\n[{c.id}] @{c.author} {when}".rstrip())
        print(c.body)


def cmd_ls(args: argparse.Namespace, config: AppConfig) -> int:
    with Session(config) as session:
        if args.no_cache and not args.issue:
            session.invalidate_caches()
        if args.issue:
            _show_issue(session, args.issue)
        elif args.projects and args.jira:
            for p in session.jira.list_projects(args.limit):
                print(f"{p.key:<12} {p.name}")
        elif args.projects:
            for p in session.gitlab_projects.list(args.limit, force_refresh=args.no_cache):
                print(f"{p.id:>8}  {p.name:<30} {p.web_url}")
        elif args.jira:
            for t in session.jira_issues.list(None, args.limit, args.no_cache, include_closed=args.all):
                print(_issue_line(t, t.key))
        elif args.project:
            project = session.gitlab_projects.by_name(args.project, alike=args.search)
            for i in session.gitlab_issues.list(project.id, args.limit, args.no_cache, include_closed=args.all):
                print(_issue_line(i, issue_ref(project.name, int(i.key))))
        else:
            for i in session.gitlab_issues.list(None, args.limit, args.no_cache, include_closed=args.all):
                print(_issue_line(i, _gitlab_ref(session, i)))
    return 0


def cmd_ln(args: argparse.Namespace, config: AppConfig) -> int:
    with Session(config) as session:
        if args.list:
            for key, value in sorted(session.linker().list()):
                if "#" in key:
                    print(f"{key:<20} <-> {value}")
            return 0
        if not args.issue or not args.ticket:
            raise ValueError("expected PROJECT#ID and ticket KEY")
        project_name, issue_id = parse_issue_ref(args.issue)
        if args.delete:
            session.linker().drop(project_name, issue_id, args.ticket)
            print(f"Unlinked {args.issue} and {args.ticket}")
            return 0
        _issue, ticket = session.linker(verifying=True).link(project_name, issue_id, args.ticket)
        print(f"Linked {issue_ref(project_name, issue_id)} <-> {ticket.key}")
    return 0


def cmd_commit(args: argparse.Namespace, config: AppConfig) -> int:
    project_name, issue_id = parse_issue_ref(args.issue)
    with Session(config) as session:
        commenter = session.commenter()
        allow_unlinked = args.gitlab_only
        if not allow_unlinked and commenter.linked_ticket(project_name, issue_id) is None:
            if not _confirm(f"{args.issue} is not linked to a Jira ticket, continue only in GitLab"):
                print("Aborted, nothing was posted.", file=sys.stderr)
                return 1
            allow_unlinked = True
        message = _text(args.message, config, "COMMENT")
        result = commenter.comment(project_name, issue_id, message, allow_unlinked=allow_unlinked)
    out = sys.stdout if result.ok else sys.stderr
    for line in result.summary():
        print(line, file=out)
    return 0 if result.ok else 1


def cmd_add(args: argparse.Namespace, config: AppConfig) -> int:
    title = _text(args.title, config, "TITLE").strip()
    if not title:
        raise ValueError("empty title, nothing was created")
    description = _text(args.message, config, "DESCRIPTION")
    labels = [label.strip() for label in args.labels.split(",") if label.strip()]
    with Session(config) as session:
        try:
            result = session.creator().create(args.project, title, description, labels=labels)
        except TrackerError:
            print("Nothing was created.", file=sys.stderr)
            raise
    out = sys.stdout if result.ok else sys.stderr
    for line in result.summary():
        print(line, file=out)
    return 0 if result.ok else 1


def _config_lines(config: AppConfig) -> List[str]:
    lines = []
    for key, (_section, _field, _kind, usage) in CONFIG_KEYS.items():
        lines.append(f"{key:<22} = {get_config_value(config, key)!s:<40} # {usage}")
    return lines


def cmd_config(args: argparse.Namespace, config: AppConfig) -> int:
    if args.get:
        print(get_config_value(config, args.get))
    elif args.set:
        key, value = args.set
        set_config_value(config, key, value)
        path = save_config(config, args.config)
        LOG.info("Saved %s to %s", key, path)
    elif args.forget:
        with Session(config) as session:
            session.credentials.forget(args.forget)
        print(f"Forgot {args.forget} credentials")
    else:
        for line in _config_lines(config):
            print(line)
    return 0


def cmd_version(args: argparse.Namespace, config: AppConfig) -> int:
    print(f"jigit {__version__}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point: parse args, load config, dispatch to the command."""
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
        JigitLogging(config.logging, verbose=args.verbose).setup()
        return args.handler(args, config)
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130
    except CLI_ERRORS as e:
        LOG.debug("Command failed", exc_info=True)
        print(f"jigit: {e}", file=sys.stderr)
        if isinstance(e, CompensationError):
            print("Manual review required.", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
