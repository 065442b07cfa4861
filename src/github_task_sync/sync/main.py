"""CLI entrypoint for GitHub Task Sync."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from github_task_sync import __version__
from github_task_sync.sync.checklist.parser import parse_task_file, validate_task_file
from github_task_sync.sync.config import SyncSettings
from github_task_sync.sync.errors import ConfigurationError, TaskSyncError
from github_task_sync.sync.github.client import GitHubClient
from github_task_sync.sync.logging import configure_logging
from github_task_sync.sync.report import format_summary, summarize
from github_task_sync.sync.service import SyncReport, TaskSyncService, plan_sync
from github_task_sync.sync.state import SyncStateStore

logger = logging.getLogger(__name__)


def _add_repo_argument(parser: argparse.ArgumentParser, *, required: bool = False) -> None:
    parser.add_argument(
        "--repo",
        "--repository",
        dest="repository",
        required=required,
        default=None,
        help="Target repository in the form 'owner/repo' (defaults to GITHUB_REPOSITORY)",
    )


def _add_file_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--file",
        dest="task_file",
        type=Path,
        default=None,
        help="Checklist file to read (defaults to TASK_FILE)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="github-task-sync",
        description="Mirror a markdown task checklist onto GitHub Issues",
    )
    parser.add_argument("--version", action="version", version=f"github-task-sync {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Create, update, close and reopen task issues")
    _add_repo_argument(sync)
    _add_file_argument(sync)
    sync.add_argument(
        "--force", action="store_true", help="Sync every task, even if unchanged since last sync"
    )
    sync.add_argument(
        "--prune", action="store_true", help="Drop sync records for tasks no longer in the file"
    )
    sync.add_argument(
        "--dry-run", action="store_true", help="Show what would be done without calling GitHub"
    )

    analyze = subparsers.add_parser("analyze", help="Summarise the checklist (no GitHub calls)")
    _add_file_argument(analyze)
    analyze.add_argument(
        "--limit", type=int, default=10, help="Tasks listed per status section (0 lists all)"
    )

    validate = subparsers.add_parser("validate", help="Check the checklist for problems")
    _add_file_argument(validate)

    check = subparsers.add_parser("check-connection", help="Verify token and repository access")
    _add_repo_argument(check)

    state = subparsers.add_parser("state", help="Inspect or manage the local sync state")
    state_commands = state.add_subparsers(dest="state_command", required=True)
    state_commands.add_parser("show", help="Print sync statistics and records")
    export = state_commands.add_parser("export", help="Export the sync state as JSON")
    export.add_argument("--output", type=Path, default=None, help="Write to a file, not stdout")
    import_ = state_commands.add_parser("import", help="Replace the sync state from an export")
    import_.add_argument("path", type=Path, help="File produced by 'state export'")
    state_commands.add_parser("clear", help="Remove all sync records")
    cleanup = state_commands.add_parser(
        "cleanup", help="Drop records for tasks that are no longer in the checklist"
    )
    _add_file_argument(cleanup)
    _add_repo_argument(cleanup)

    return parser


def _build_client(settings: SyncSettings, repository: str) -> GitHubClient:
    return GitHubClient(
        token=settings.require_token(),
        repository=repository,
        base_url=settings.github_base_url,
        max_retries=settings.max_retries,
        retry_delay_seconds=settings.retry_delay_seconds,
        rate_limit_buffer=settings.rate_limit_buffer,
    )


def _print_report(report: SyncReport) -> None:
    counts = report.as_dict()
    print(
        "Sync complete: "
        f"{counts['created']} created, {counts['updated']} updated, "
        f"{counts['closed']} closed, {counts['reopened']} reopened, "
        f"{counts['unchanged']} unchanged, {counts['failed']} failed"
    )
    for outcome in report.outcomes:
        if outcome.failed:
            print(f"  FAILED {outcome.task_id}: {outcome.error}", file=sys.stderr)
    if report.pruned:
        print(f"Pruned {len(report.pruned)} orphaned sync record(s)")


def _run_sync(args: argparse.Namespace, settings: SyncSettings) -> int:
    if not settings.enabled:
        logger.info("Sync disabled via SYNC_ENABLED; nothing to do")
        print("Sync is disabled (SYNC_ENABLED=false)")
        return 0

    task_file: Path = args.task_file or settings.task_file
    tasks = parse_task_file(task_file)
    store = SyncStateStore(settings.state_file)

    if args.dry_run:
        repository = args.repository or settings.github_repository
        if repository:
            repository = settings.resolve_repository(repository)
        plan = plan_sync(tasks, store, repository=repository, force=args.force)
        print("DRY RUN: no changes will be made")
        print(format_summary(summarize(tasks, settings.label_prefix), plan=plan), end="")
        return 0

    repository = settings.resolve_repository(args.repository)
    github = _build_client(settings, repository)
    try:
        service = TaskSyncService(
            github=github,
            store=store,
            label_prefix=settings.label_prefix,
            request_delay_seconds=settings.request_delay_seconds,
            comment_on_status_change=settings.comment_on_status_change,
        )
        report = service.sync_tasks(
            tasks, force=args.force, prune=args.prune, file_path=task_file.as_posix()
        )
    finally:
        github.close()

    _print_report(report)
    return 0 if report.ok else 3


def _run_state(args: argparse.Namespace, settings: SyncSettings) -> int:
    store = SyncStateStore(settings.state_file)

    if args.state_command == "show":
        stats = store.stats()
        print(f"State file: {store.path}")
        print(f"Tracked tasks: {stats.total_tasks}")
        print(f"Files: {stats.file_count}")
        print(f"Last sync: {stats.last_sync_time or 'never'}")
        for record in store.load():
            repo = f"{record.repository} " if record.repository else ""
            status = record.status or "unknown"
            print(f"  {record.task_id} -> {repo}#{record.issue_number} ({status})")
        return 0

    if args.state_command == "export":
        data = store.export_state()
        if args.output is None:
            print(data)
        else:
            args.output.write_text(data + "\n", encoding="utf-8")
            print(f"Exported sync state to {args.output}")
        return 0

    if args.state_command == "import":
        count = store.import_state(args.path.read_text(encoding="utf-8"))
        print(f"Imported {count} sync record(s)")
        return 0

    if args.state_command == "clear":
        store.clear()
        print("Cleared sync state")
        return 0

    if args.state_command == "cleanup":
        task_file: Path = args.task_file or settings.task_file
        tasks = parse_task_file(task_file)
        repository = args.repository or settings.github_repository
        removed = store.cleanup_orphaned(
            [t.id for t in tasks],
            repository=settings.resolve_repository(repository) if repository else None,
            file_path=task_file.as_posix(),
        )
        print(f"Removed {len(removed)} orphaned sync record(s)")
        return 0

    logger.error("Unknown state command", extra={"state_command": args.state_command})
    return 2


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = SyncSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "sync":
            return _run_sync(args, settings)

        if args.command == "analyze":
            task_file = args.task_file or settings.task_file
            tasks = parse_task_file(task_file)
            store = SyncStateStore(settings.state_file)
            plan = plan_sync(tasks, store, repository=settings.github_repository)
            summary = summarize(tasks, settings.label_prefix)
            print(format_summary(summary, plan=plan, limit=args.limit), end="")
            return 0

        if args.command == "validate":
            task_file = args.task_file or settings.task_file
            result = validate_task_file(task_file)
            if result.valid:
                print(f"{task_file}: OK")
                return 0
            print(f"{task_file}: {len(result.errors)} problem(s)", file=sys.stderr)
            for error in result.errors:
                print(f"  - {error}", file=sys.stderr)
            return 1

        if args.command == "check-connection":
            repository = settings.resolve_repository(args.repository)
            github = _build_client(settings, repository)
            try:
                check = github.test_connection()
                if not check.success:
                    print(check.message, file=sys.stderr)
                    return 1
                rate = github.get_rate_limit()
            finally:
                github.close()
            print(check.message)
            print(f"Rate limit: {rate.remaining}/{rate.limit} remaining")
            return 0

        if args.command == "state":
            return _run_state(args, settings)

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    except TaskSyncError as e:
        logger.error("Command failed", extra={"command": args.command, "error": str(e)})
        print(str(e), file=sys.stderr)
        return 1

    except Exception:
        logger.exception("Command failed")
        return 1
