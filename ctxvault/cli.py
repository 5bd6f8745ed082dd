"""Command-line front end for ctxvault.

Each subcommand maps onto one ``VaultService`` operation. Results go to
stdout, logs and errors to stderr. Any ``VaultError`` exits with status 1.
"""

from __future__ import annotations

import json
import sys
from argparse import ArgumentParser, Namespace
from collections.abc import Sequence
from pathlib import Path

from dotenv import load_dotenv

from ctxvault import __version__
from ctxvault.config.constants import CONTROL_DIR_NAME
from ctxvault.config.schema import ConfigValidationError
from ctxvault.core.errors import VaultError
from ctxvault.core.vault import Vault
from ctxvault.domain.models import Commit, ContextDiff
from ctxvault.services.vault_service import VaultService
from ctxvault.utils.logger import cli_logger, configure_structlog


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="ctxvault",
        description="Version control for knowledge and context directories",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--vault",
        help="Vault root (default: nearest directory containing .ctxvault)",
    )
    parser.add_argument(
        "--log-format",
        choices=["pretty", "json"],
        help="Log format. Overrides config and CTXVAULT_LOG_FORMAT.",
    )
    parser.add_argument(
        "--log-level",
        help="Log level (DEBUG, INFO, WARNING, ERROR). Overrides config and CTXVAULT_LOG_LEVEL.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Create a vault in the target directory")
    p.add_argument("--name", help="Vault name (default: directory name)")

    p = sub.add_parser("status", help="Show branch, context size and changes")
    p.add_argument("--json", action="store_true")

    p = sub.add_parser("commit", help="Record the current tree")
    p.add_argument("message")
    p.add_argument("--author", choices=["human", "agent"], help="Author type")
    p.add_argument("--model", help="Model name for agent commits")
    p.add_argument("--session", help="Agent session id")

    p = sub.add_parser("log", help="Show commit history, newest first")
    p.add_argument("--branch")
    p.add_argument("-n", "--limit", type=int)
    p.add_argument("--oneline", action="store_true")
    p.add_argument("--json", action="store_true")

    p = sub.add_parser("branch", help="List, create or delete branches")
    branch_sub = p.add_subparsers(dest="branch_command")
    branch_sub.add_parser("list", help="List branches")
    bp = branch_sub.add_parser("create", help="Create a branch at HEAD")
    bp.add_argument("name")
    bp.add_argument("-d", "--description")
    bp = branch_sub.add_parser("delete", help="Delete a branch ref")
    bp.add_argument("name")

    p = sub.add_parser("checkout", help="Switch to a branch or commit")
    p.add_argument("target")
    p.add_argument("-f", "--force", action="store_true", help="Discard uncommitted changes")

    p = sub.add_parser("rewind", help="Move the current branch back to a commit")
    p.add_argument("target")
    p.add_argument("--soft", action="store_true", help="Keep the working tree")

    p = sub.add_parser("diff", help="Compare the working tree, commits or branches")
    p.add_argument("source", nargs="?")
    p.add_argument("target", nargs="?")
    p.add_argument("--json", action="store_true")

    p = sub.add_parser("merge", help="Overwrite-merge a branch into the current one")
    p.add_argument("source")
    p.add_argument("--into")
    p.add_argument("--squash", action="store_true")
    p.add_argument("-f", "--force", action="store_true", help="Discard uncommitted changes")

    p = sub.add_parser("load", help="Add a path or [[wikilink]] to the loaded set")
    p.add_argument("path", nargs="?")
    p.add_argument("--pin", action="store_true")
    p.add_argument("--list", action="store_true", help="Show loaded paths")

    p = sub.add_parser("unload", help="Remove a path from the loaded set")
    p.add_argument("path", nargs="?")
    p.add_argument("--all", action="store_true", help="Unload every non-pinned path")

    p = sub.add_parser("pin", help="Pin a path, or exclude it from loading")
    p.add_argument("path")
    p.add_argument("--exclude", action="store_true")

    p = sub.add_parser("unpin", help="Remove a pin or exclusion")
    p.add_argument("path")

    p = sub.add_parser("resolve", help="Resolve a [[wikilink]] to a file")
    p.add_argument("link")

    p = sub.add_parser("context", help="Print the tracked tree as one document")
    p.add_argument("--compress", action="store_true")
    p.add_argument("--json", action="store_true")

    p = sub.add_parser("summary", help="Session-start overview of the vault")
    p.add_argument("--json", action="store_true")

    return parser


def _find_root(args: Namespace) -> Path:
    if args.command == "init":
        return Path(args.vault or Path.cwd()).expanduser().resolve()
    if args.vault:
        return Vault.at(args.vault).root
    return Vault.discover().root


def _format_commit(commit: Commit, oneline: bool = False) -> str:
    if oneline:
        return f"{commit.short_hash} {commit.message}"
    summary = commit.context_summary
    lines = [
        f"commit {commit.hash}",
        f"Author: {commit.author.display()}",
        f"Date:   {commit.timestamp.isoformat()}",
        "",
        f"    {commit.message}",
        "",
        f"    {summary.changed_count} files changed, ~{summary.token_estimate} tokens",
    ]
    return "\n".join(lines)


def _format_diff(diff: ContextDiff) -> str:
    source = diff.source[:7] if diff.source else "(empty)"
    target = diff.target[:7] if diff.target else "working tree"
    lines = [f"Comparing {source}..{target}"]
    for path in diff.files_added:
        lines.append(f"  + {path}")
    for path in diff.files_modified:
        lines.append(f"  ~ {path}")
    for path in diff.files_removed:
        lines.append(f"  - {path}")
    if diff.is_empty():
        lines.append("  No changes")
    for domain in diff.domains_added:
        lines.append(f"  new domain: {domain}")
    for domain in diff.domains_removed:
        lines.append(f"  removed domain: {domain}")
    sign = "+" if diff.token_delta >= 0 else ""
    lines.append(f"Token delta: {sign}{diff.token_delta}")
    return "\n".join(lines)


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def run(args: Namespace) -> int:
    root = _find_root(args)

    # Populate CTXVAULT_* settings from the vault's .env without clobbering the shell
    env_file = root / ".env"
    if env_file.exists():
        load_dotenv(dotenv_path=env_file, override=False)
        cli_logger.debug("Loaded .env file", path=str(env_file))

    if args.command == "init":
        service = VaultService.init(root, name=args.name)
        print(f"Initialized ctxvault vault '{service.vault.settings.vault_name}'")
        print(f"  Vault root: {service.vault.root}")
        print(f"  Control dir: {CONTROL_DIR_NAME}/")
        return 0

    service = VaultService(Vault.at(root))
    settings = service.vault.settings
    configure_structlog(
        log_format=args.log_format or settings.log_format,
        log_colors=settings.log_colors,
        log_level=args.log_level or settings.log_level,
    )
    command = args.command

    if command == "status":
        status = service.status()
        if args.json:
            _print_json(status.model_dump(mode="json"))
            return 0
        if status.head.detached:
            print(f"HEAD detached at {(status.head.commit or '')[:7]}")
        else:
            print(f"On branch {status.head.branch}")
        if status.last_commit:
            c = status.last_commit
            print(f"Last commit: {c.short_hash} \"{c.message}\" ({c.timestamp.isoformat()})")
        else:
            print("No commits yet")
        budget = f" / {status.max_tokens}" if status.max_tokens else ""
        print(f"Context: ~{status.token_estimate}{budget} tokens")
        if status.files:
            print("Loaded:")
            for path in status.files[:10]:
                print(f"  {path}")
            if len(status.files) > 10:
                print(f"  ... and {len(status.files) - 10} more")
        if status.index.pinned:
            print("Pinned:")
            for path in status.index.pinned:
                print(f"  {path}")
        if status.index.staged:
            print("Staged:")
            for staged in status.index.staged:
                print(f"  {staged.path} [{staged.priority.value}] {staged.reason}")
        if status.modified or status.removed:
            print("Changes not committed:")
            for path in status.modified:
                print(f"  modified: {path}")
            for path in status.removed:
                print(f"  removed:  {path}")
        for domain, count in status.untracked_domains.items():
            print(f"Untracked domain: {domain} ({count} files)")
        return 0

    if command == "commit":
        commit = service.commit(
            args.message, author_type=args.author, model=args.model, session_id=args.session
        )
        if commit is None:
            print("No changes to commit")
            return 0
        s = commit.context_summary
        print(f"[{commit.short_hash}] {commit.message}")
        print(
            f"  {len(s.files_added)} added, {len(s.files_modified)} modified, "
            f"{len(s.files_removed)} removed, ~{s.token_estimate} tokens"
        )
        return 0

    if command == "log":
        commits = service.log(branch=args.branch, limit=args.limit)
        if args.json:
            _print_json([c.model_dump(mode="json") for c in commits])
            return 0
        if not commits:
            print("No commits yet")
        separator = "\n" if args.oneline else "\n\n"
        print(separator.join(_format_commit(c, oneline=args.oneline) for c in commits))
        return 0

    if command == "branch":
        if args.branch_command == "create":
            info = service.create_branch(args.name, description=args.description)
            print(f"Created branch '{info.name}' at {(info.head or '')[:7]}")
        elif args.branch_command == "delete":
            service.delete_branch(args.name)
            print(f"Deleted branch '{args.name}'")
        else:
            for info in service.list_branches():
                marker = "*" if info.is_current else " "
                message = f" \"{info.commit.message}\"" if info.commit else ""
                head = (info.head or "(no commits)")[:7]
                print(f"{marker} {info.name:<20} {head}{message}")
                if info.description:
                    print(f"    {info.description}")
        return 0

    if command == "checkout":
        head = service.checkout(args.target, force=args.force)
        if head.detached:
            print(f"HEAD is now at {(head.commit or '')[:7]} (detached)")
        else:
            print(f"Switched to branch '{head.branch}'")
        return 0

    if command == "rewind":
        commit = service.rewind(args.target, soft=args.soft)
        mode = "soft, working tree kept" if args.soft else "working tree restored"
        print(f"Rewound to {commit.short_hash} \"{commit.message}\" ({mode})")
        return 0

    if command == "diff":
        diff = service.diff(args.source, args.target)
        if args.json:
            _print_json(diff.model_dump(mode="json"))
        else:
            print(_format_diff(diff))
        return 0

    if command == "merge":
        commit = service.merge(args.source, into=args.into, squash=args.squash, force=args.force)
        print(f"[{commit.short_hash}] {commit.message}")
        print("  Overwrite merge: the target tree now matches the source snapshot")
        return 0

    if command == "load":
        if args.list or not args.path:
            entries = service.loaded()
            if not entries:
                print("Nothing loaded")
            for path, pinned in entries:
                print(f"  {path}{' [pinned]' if pinned else ''}")
            return 0
        rel_path, tokens = service.load(args.path, pin=args.pin)
        print(f"Loaded: {rel_path} (+{tokens} tokens)")
        return 0

    if command == "unload":
        if not args.all and not args.path:
            print("Specify a path or use --all", file=sys.stderr)
            return 1
        removed = service.unload(args.path, all=args.all)
        print(f"Unloaded {len(removed)} path(s)")
        return 0

    if command == "pin":
        rel_path = service.pin(args.path, exclude=args.exclude)
        print(f"{'Excluded' if args.exclude else 'Pinned'}: {rel_path}")
        return 0

    if command == "unpin":
        print(f"Unpinned: {service.unpin(args.path)}")
        return 0

    if command == "resolve":
        print(service.vault.relative(service.resolve(args.link)))
        return 0

    if command == "context":
        if args.json:
            _print_json(service.context_payload(compress=args.compress))
        else:
            print(service.context(compress=args.compress))
        return 0

    if command == "summary":
        summary = service.summary()
        if args.json:
            _print_json(summary.model_dump(mode="json"))
            return 0
        print("## Current state")
        print(f"- Branch: {summary.head.branch or 'detached'}")
        if summary.last_commit:
            c = summary.last_commit
            print(f"- Last commit: {c.short_hash} \"{c.message}\"")
            print(f"- Active domains: {len(c.context_summary.domains_loaded)}")
            print(f"- Estimated tokens: ~{c.context_summary.token_estimate}")
        print("## Domains")
        for domain in summary.domains:
            print(f"- {domain}")
        if summary.has_global:
            print("- _global (shared conventions)")
        print("## Changes since last commit")
        if summary.modified:
            for path in summary.modified:
                print(f"- {path}")
        else:
            print("- none")
        print("## Branches")
        for branch in summary.branches:
            if branch.is_current:
                print(f"- {branch.name} (current)")
            else:
                print(f"- {branch.name} ({branch.diverged} commits apart)")
        return 0

    raise AssertionError(f"Unhandled command {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_structlog(log_format=args.log_format, log_level=args.log_level)

    try:
        return run(args)
    except VaultError as e:
        cli_logger.debug("Command failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ConfigValidationError as e:
        print(f"Error: invalid configuration: {'; '.join(e.errors)}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
