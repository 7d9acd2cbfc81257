#!/usr/bin/env python3
"""scheduler-sync CLI - drive the git sync engine for a data directory."""
from __future__ import annotations

import argparse
import json
import sys
import threading
import time
from pathlib import Path

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"scheduler-sync requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)

SETTLED_STATUSES = ("synced", "error", "conflict")


def _read_content(value: str | None) -> str | None:
    """Return ``value`` verbatim, or the file contents for ``@path``."""
    if value is None:
        return None
    if value.startswith("@"):
        return Path(value[1:]).expanduser().read_text(encoding="utf-8")
    return value


def _build_service(repo: str | None):
    from .config_loader import ConfigError, get_config
    from .git_sync import GitSyncService
    from .observability import apply_logging_config

    project_path = Path(repo).expanduser() if repo else None
    try:
        config = get_config(project_path)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    apply_logging_config(config.logging)

    service = GitSyncService(project_path, config=config)
    if not service.initialize():
        print(f"Cannot use repository at {service.repo_path}", file=sys.stderr)
        sys.exit(1)
    return service


def _print_result(result) -> None:
    if result.success:
        print("ok")
        sys.exit(0)
    print(f"error: {result.error}", file=sys.stderr)
    sys.exit(1)


def _schedule_and_wait(service, change, timeout: float) -> bool:
    """Schedule ``change`` and block until the debounced run finishes.

    Returns False on timeout.
    """
    settled = threading.Event()
    seen_syncing = threading.Event()

    def listener(state) -> None:
        if state.status.value == "syncing":
            seen_syncing.set()
        elif seen_syncing.is_set() and state.status.value in SETTLED_STATUSES:
            settled.set()

    unsubscribe = service.subscribe(listener)
    try:
        service.schedule_commit(change)
        return settled.wait(timeout)
    finally:
        unsubscribe()


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        prog="scheduler-sync",
        description="Git-backed synchronization for scheduler data",
    )
    ap.add_argument("--repo", help="Data repository (default: sync.repo_path from config, or cwd)")

    sub = ap.add_subparsers(dest="cmd")

    p_status = sub.add_parser("status", help="Show sync state")
    p_status.add_argument("--json", action="store_true", help="Print the state as JSON")

    p_history = sub.add_parser("history", help="Show recent sync operations")
    p_history.add_argument("--json", action="store_true", help="Print entries as JSON")
    p_history.add_argument("--limit", type=int, default=20, help="Number of entries (default: 20)")

    sub.add_parser("now", help="Commit, pull and push immediately")

    p_commit = sub.add_parser("commit", help="Record a change and sync it")
    p_commit.add_argument("--type", dest="kind", choices=["add", "update", "delete"], help="Change kind (default: update)")
    p_commit.add_argument("--entity", help="Entity kind (default: task)")
    p_commit.add_argument("--title", help="Title of the changed entity")
    p_commit.add_argument(
        "--now",
        action="store_true",
        help="Sync immediately instead of waiting for the debounce window",
    )

    p_conflicts = sub.add_parser("conflicts", help="List conflicted files")
    p_conflicts.add_argument("--json", action="store_true", help="Print conflicts as JSON")

    p_resolve = sub.add_parser("resolve", help="Resolve one conflicted file")
    p_resolve.add_argument("file", help="Repository-relative path")
    p_resolve.add_argument("--choice", required=True, choices=["local", "remote", "merge"])
    p_resolve.add_argument("--content", help="Merged content text or @file path (required for merge)")

    p_watch = sub.add_parser("watch", help="Print state transitions as JSON lines")
    p_watch.add_argument(
        "--interval",
        type=float,
        default=0.0,
        help="Also sync every N seconds (default: 0, never)",
    )

    p_config = sub.add_parser("config", help="Configuration commands")
    config_sub = p_config.add_subparsers(dest="config_cmd")
    p_config_show = config_sub.add_parser("show", help="Show the effective configuration")
    p_config_show.add_argument("--json", action="store_true", help="Print as JSON")

    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    if args.cmd == "config":
        from .config_loader import ConfigError, get_config, get_config_paths

        if args.config_cmd != "show":
            p_config.print_help()
            sys.exit(0)
        project_path = Path(args.repo).expanduser() if args.repo else None
        try:
            config = get_config(project_path)
        except ConfigError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            sys.exit(2)
        data = config.model_dump(mode="json")
        if args.json:
            print(json.dumps(data, indent=2))
            sys.exit(0)
        paths = get_config_paths(project_path)
        print(f"User config:    {paths['user_config']}")
        print(f"Project config: {paths['project_config'] or '-'}")
        for section in ("sync", "git", "logging"):
            print(f"[{section}]")
            for key, value in data[section].items():
                print(f"  {key} = {value!r}")
        sys.exit(0)

    service = _build_service(args.repo)

    if args.cmd == "status":
        state = service.get_state()
        if args.json:
            print(json.dumps(state.to_dict(), indent=2))
            sys.exit(0)
        print(f"Repository: {service.repo_path}")
        print(f"Tracking:   {service.remote}/{service.branch}")
        print(f"Status:     {state.status.value}")
        print(f"Pending:    {state.pending_changes}")
        print(f"Last sync:  {state.last_sync_time or 'never'}")
        if state.conflict_files:
            print(f"Conflicts:  {', '.join(state.conflict_files)}")
        if state.error:
            print(f"Error:      {state.error}")
        sys.exit(0)

    if args.cmd == "history":
        entries = service.get_history()[: max(args.limit, 0)]
        if args.json:
            print(json.dumps([entry.to_payload() for entry in entries], indent=2))
            sys.exit(0)
        if not entries:
            print("No sync history.")
        for entry in entries:
            ref = f" [{entry.commit_ref[:8]}]" if entry.commit_ref else ""
            print(f"{entry.timestamp}  {entry.operation:<8} {entry.outcome:<8} {(entry.message.splitlines() or [''])[0]}{ref}")
        sys.exit(0)

    if args.cmd == "now":
        _print_result(service.sync_now())

    if args.cmd == "commit":
        from .models import ChangeInfo

        change = ChangeInfo.from_payload({"type": args.kind, "entity": args.entity, "title": args.title})
        if args.now:
            service.schedule_commit(change)
            _print_result(service.sync_now())
        timeout = service.config.sync.debounce_seconds + 300
        if not _schedule_and_wait(service, change, timeout):
            print("error: timed out waiting for the scheduled sync", file=sys.stderr)
            sys.exit(1)
        state = service.get_state()
        if state.status.value == "synced":
            print("ok")
            sys.exit(0)
        print(f"error: {state.error or state.status.value}", file=sys.stderr)
        sys.exit(1)

    if args.cmd == "conflicts":
        conflicts = service.get_conflicts()
        if args.json:
            print(json.dumps([conflict.to_dict() for conflict in conflicts], indent=2))
            sys.exit(0)
        if not conflicts:
            print("No conflicts.")
        for conflict in conflicts:
            print(f"== {conflict.file}")
            print("-- local")
            print(conflict.local_content)
            if conflict.base_content is not None:
                print("-- base")
                print(conflict.base_content)
            print("-- remote")
            print(conflict.remote_content)
        sys.exit(0)

    if args.cmd == "resolve":
        try:
            content = _read_content(args.content)
        except OSError as e:
            print(f"error: cannot read merged content: {e}", file=sys.stderr)
            sys.exit(2)
        _print_result(service.resolve_conflict(args.file, args.choice, content))

    if args.cmd == "watch":
        def print_state(state) -> None:
            print(json.dumps(state.to_dict()), flush=True)

        unsubscribe = service.subscribe(print_state)
        try:
            while True:
                if args.interval > 0:
                    time.sleep(args.interval)
                    service.sync_now()
                else:
                    time.sleep(1.0)
        except KeyboardInterrupt:
            pass
        finally:
            unsubscribe()
            service.shutdown()
        sys.exit(0)


if __name__ == "__main__":
    main()
