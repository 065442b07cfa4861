#!/usr/bin/env python3
"""Programmatic task sync example.

This demonstrates using the sync components directly:

* load settings from `.env`
* parse a checklist file into tasks
* sync the tasks to GitHub issues
* persist sync records to `.github-task-sync/state.json`

Repository selection is passed as an argument (or read from GITHUB_REPOSITORY).
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from github_task_sync.sync.checklist.parser import parse_task_file
from github_task_sync.sync.config import SyncSettings
from github_task_sync.sync.github.client import GitHubClient
from github_task_sync.sync.logging import configure_logging
from github_task_sync.sync.service import TaskSyncService
from github_task_sync.sync.state import SyncStateStore


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync a checklist to GitHub (programmatic example).")
    parser.add_argument("--repo", default=None, help='Target repository in the form "owner/repo"')
    parser.add_argument("--file", type=Path, default=None, help="Checklist file (optional)")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = SyncSettings()
    configure_logging(settings.log_level)

    github = GitHubClient(
        token=settings.require_token(),
        repository=settings.resolve_repository(args.repo),
        base_url=settings.github_base_url,
    )
    try:
        service = TaskSyncService(
            github=github,
            store=SyncStateStore(settings.state_file),
            label_prefix=settings.label_prefix,
            request_delay_seconds=settings.request_delay_seconds,
        )
        tasks = parse_task_file(args.file or settings.task_file)
        report = service.sync_tasks(tasks)
    finally:
        github.close()

    for outcome in report.outcomes:
        status = "failed" if outcome.failed else ",".join(a.value for a in outcome.actions)
        print(f"{outcome.task_id}: {status} (#{outcome.issue_number})")
    print(f"Persisted to: {settings.state_file}")
    return 0 if report.ok else 3


if __name__ == "__main__":
    raise SystemExit(main())
