"""Task-to-issue synchronisation with local state.

Behaviour:
- each task maps to exactly one issue, identified by the identity label
  `<prefix><task id>` (and a hidden body marker as a fallback)
- issues are created once and updated on re-sync; completed tasks are closed,
  tasks that are no longer completed are reopened
- managed labels are reconciled, labels added by people are left alone
- unchanged tasks (same content hash, same file) make no API calls
- a failure on one task is logged and the batch carries on
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from github_task_sync.labels import DEFAULT_LABEL_PREFIX, is_managed_label
from github_task_sync.sync.checklist.models import Task, TaskStatus
from github_task_sync.sync.errors import GitHubApiError
from github_task_sync.sync.github.client import GitHubClient, IssueSnapshot
from github_task_sync.sync.rendering import (
    identity_label,
    issue_body,
    issue_title,
    task_labels,
    task_marker,
)
from github_task_sync.sync.state import SyncRecord, SyncStateStore

logger = logging.getLogger(__name__)

_LAST_UPDATED_RE = re.compile(r"^- \*\*Last Updated:\*\*.*$", re.MULTILINE)


class SyncAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    CLOSE = "close"
    REOPEN = "reopen"
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class PlannedAction:
    """What a sync would do for a task, judged from local state only."""

    task: Task
    actions: tuple[SyncAction, ...]
    issue_number: int | None
    reason: str


@dataclass(frozen=True, slots=True)
class TaskSyncOutcome:
    task_id: str
    actions: tuple[SyncAction, ...] = ()
    issue_number: int | None = None
    issue_url: str | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def unchanged(self) -> bool:
        return not self.failed and (not self.actions or self.actions == (SyncAction.SKIP,))


@dataclass(slots=True)
class SyncReport:
    outcomes: list[TaskSyncOutcome] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)

    def _count(self, action: SyncAction) -> int:
        return sum(1 for o in self.outcomes if not o.failed and action in o.actions)

    @property
    def created(self) -> int:
        return self._count(SyncAction.CREATE)

    @property
    def updated(self) -> int:
        return self._count(SyncAction.UPDATE)

    @property
    def closed(self) -> int:
        return self._count(SyncAction.CLOSE)

    @property
    def reopened(self) -> int:
        return self._count(SyncAction.REOPEN)

    @property
    def unchanged(self) -> int:
        return sum(1 for o in self.outcomes if o.unchanged)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total": len(self.outcomes),
            "created": self.created,
            "updated": self.updated,
            "closed": self.closed,
            "reopened": self.reopened,
            "unchanged": self.unchanged,
            "failed": self.failed,
        }


def plan_sync(
    tasks: list[Task],
    store: SyncStateStore,
    *,
    repository: str | None = None,
    force: bool = False,
) -> list[PlannedAction]:
    """Diff tasks against the local sync state without calling GitHub."""

    planned: list[PlannedAction] = []
    for task in tasks:
        record = store.get(task.id, repository=repository)
        if record is None:
            actions = [SyncAction.CREATE]
            if task.is_completed:
                actions.append(SyncAction.CLOSE)
            planned.append(PlannedAction(task, tuple(actions), None, "no sync record"))
            continue

        if not force and not store.needs_sync(task, repository=repository):
            planned.append(
                PlannedAction(task, (SyncAction.SKIP,), record.issue_number, "unchanged")
            )
            continue

        actions = [SyncAction.UPDATE]
        was_completed = record.status == TaskStatus.COMPLETED.value
        if task.is_completed and not was_completed:
            actions.append(SyncAction.CLOSE)
        elif not task.is_completed and was_completed:
            actions.append(SyncAction.REOPEN)
        reason = "forced" if force else "content changed"
        planned.append(PlannedAction(task, tuple(actions), record.issue_number, reason))
    return planned


class TaskSyncService:
    """High-level, testable task synchronisation."""

    def __init__(
        self,
        *,
        github: GitHubClient,
        store: SyncStateStore,
        label_prefix: str = DEFAULT_LABEL_PREFIX,
        request_delay_seconds: float = 0.0,
        comment_on_status_change: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._github = github
        self._store = store
        self._label_prefix = label_prefix
        self._request_delay_seconds = request_delay_seconds
        self._comment_on_status_change = comment_on_status_change
        self._sleep = sleep
        self._now = now or (lambda: datetime.now(UTC))

    @property
    def repository(self) -> str:
        return self._github.repository

    def plan(self, tasks: list[Task], *, force: bool = False) -> list[PlannedAction]:
        return plan_sync(tasks, self._store, repository=self.repository, force=force)

    def sync_tasks(
        self,
        tasks: list[Task],
        *,
        force: bool = False,
        prune: bool = False,
        file_path: str | None = None,
    ) -> SyncReport:
        """Sync a batch of tasks; per-task failures are recorded, not raised."""

        report = SyncReport()
        logger.info(
            "Starting task sync",
            extra={"repo": self.repository, "task_count": len(tasks), "force": force},
        )

        seen: set[str] = set()
        pending: list[Task] = []
        for task in tasks:
            if task.id in seen:
                logger.warning(
                    "Duplicate task id; skipping",
                    extra={"task_id": task.id, "line_number": task.line_number},
                )
                report.outcomes.append(
                    TaskSyncOutcome(task_id=task.id, error=f"Duplicate task ID: {task.id}")
                )
                continue
            seen.add(task.id)

            if force or self._store.needs_sync(task, repository=self.repository):
                pending.append(task)
            else:
                record = self._store.get(task.id, repository=self.repository)
                report.outcomes.append(
                    TaskSyncOutcome(
                        task_id=task.id,
                        actions=(SyncAction.SKIP,),
                        issue_number=record.issue_number if record else None,
                        issue_url=record.issue_url if record else None,
                    )
                )

        if pending:
            self._ensure_labels(pending)

        for idx, task in enumerate(pending):
            if idx > 0 and self._request_delay_seconds > 0:
                self._sleep(self._request_delay_seconds)
            try:
                outcome = self.sync_task(task)
            except Exception as e:
                logger.exception(
                    "Failed to sync task",
                    extra={"task_id": task.id, "title": task.title},
                )
                outcome = TaskSyncOutcome(task_id=task.id, error=str(e))
            else:
                logger.info(
                    "Synced task",
                    extra={
                        "task_id": task.id,
                        "issue_number": outcome.issue_number,
                        "actions": [a.value for a in outcome.actions],
                    },
                )
            report.outcomes.append(outcome)

        if prune:
            scope = file_path or _single_file_path(tasks)
            report.pruned = self._store.cleanup_orphaned(
                [t.id for t in tasks], repository=self.repository, file_path=scope
            )

        logger.info("Task sync completed", extra={"repo": self.repository, "counts": report.as_dict()})
        return report

    def sync_task(self, task: Task) -> TaskSyncOutcome:
        """Create or update the issue for one task and persist the sync record."""

        record = self._store.get(task.id, repository=self.repository)
        existing = self._locate_issue(task, record)

        title = issue_title(task)
        body = issue_body(task, now=self._now())
        desired_labels = task_labels(task, label_prefix=self._label_prefix)

        actions: list[SyncAction] = []
        if existing is None:
            issue = self._github.create_issue(title=title, body=body, labels=desired_labels)
            actions.append(SyncAction.CREATE)
            if task.is_completed:
                issue = self._github.close_issue(issue_number=issue.number)
                actions.append(SyncAction.CLOSE)
            logger.info(
                "Created GitHub issue for task",
                extra={"task_id": task.id, "issue_number": issue.number, "status": task.status},
            )
        else:
            issue = existing
            if issue.title != title or _stable_body(issue.body) != _stable_body(body):
                issue = self._github.update_issue(
                    issue_number=issue.number, title=title, body=body
                )
                actions.append(SyncAction.UPDATE)

            merged_labels = self._reconcile_labels(existing.labels, desired_labels)
            if merged_labels is not None:
                self._github.set_labels(issue_number=issue.number, labels=merged_labels)
                if SyncAction.UPDATE not in actions:
                    actions.append(SyncAction.UPDATE)

            if task.is_completed and issue.is_open:
                self._comment(issue.number, _status_comment(task, closing=True))
                issue = self._github.close_issue(issue_number=issue.number)
                actions.append(SyncAction.CLOSE)
                logger.info(
                    "Closed completed task issue",
                    extra={"task_id": task.id, "issue_number": issue.number},
                )
            elif not task.is_completed and not issue.is_open:
                self._comment(issue.number, _status_comment(task, closing=False))
                issue = self._github.reopen_issue(issue_number=issue.number)
                actions.append(SyncAction.REOPEN)
                logger.info(
                    "Reopened task issue",
                    extra={"task_id": task.id, "issue_number": issue.number},
                )

        self._store.upsert(
            SyncRecord(
                task_id=task.id,
                repository=self.repository,
                issue_number=issue.number,
                last_synced=self._now().astimezone(UTC).isoformat(),
                last_hash=task.content_hash(),
                file_path=task.file_path,
                status=task.status.value,
                issue_url=issue.html_url or (record.issue_url if record else None),
            )
        )
        return TaskSyncOutcome(
            task_id=task.id,
            actions=tuple(actions) or (SyncAction.SKIP,),
            issue_number=issue.number,
            issue_url=issue.html_url,
        )

    def _locate_issue(self, task: Task, record: SyncRecord | None) -> IssueSnapshot | None:
        if record is not None:
            try:
                return self._github.get_issue(issue_number=record.issue_number)
            except GitHubApiError as e:
                if e.status not in {404, 410}:
                    raise
                logger.warning(
                    "Recorded issue no longer exists; searching again",
                    extra={"task_id": task.id, "issue_number": record.issue_number},
                )

        by_label = self._github.find_issue_by_label(
            label=identity_label(task, label_prefix=self._label_prefix)
        )
        if by_label is not None:
            return by_label

        number = self._github.find_issue_number_by_body_marker(marker=task_marker(task))
        if number is None:
            return None
        logger.info(
            "Found task issue by body marker",
            extra={"task_id": task.id, "issue_number": number},
        )
        return self._github.get_issue(issue_number=number)

    def _reconcile_labels(self, current: list[str], desired: list[str]) -> list[str] | None:
        """Labels to set on the issue, or None when they already match."""

        prefix = self._label_prefix
        foreign = [label for label in current if not is_managed_label(label, label_prefix=prefix)]
        merged = list(dict.fromkeys(foreign + desired))
        if {label.lower() for label in merged} == {label.lower() for label in current}:
            return None
        return merged

    def _ensure_labels(self, tasks: list[Task]) -> None:
        names: list[str] = []
        for task in tasks:
            names.extend(task_labels(task, label_prefix=self._label_prefix))
        try:
            self._github.ensure_labels(names=names, label_prefix=self._label_prefix)
        except GitHubApiError as e:
            # Issue creation still succeeds; GitHub creates unknown labels with a default colour.
            logger.warning("Could not bootstrap labels", extra={"error": str(e)})

    def _comment(self, issue_number: int, body: str) -> None:
        if self._comment_on_status_change:
            self._github.add_comment(issue_number=issue_number, body=body)


def _stable_body(body: str) -> str:
    return _LAST_UPDATED_RE.sub("", body).strip()


def _status_comment(task: Task, *, closing: bool) -> str:
    where = f"`{task.file_path}:{task.line_number}`"
    if closing:
        return f"Task {task.id} is marked completed in {where}; closing this issue."
    return (
        f"Task {task.id} is now {task.status.value.replace('_', ' ')} in {where}; "
        "reopening this issue."
    )


def _single_file_path(tasks: list[Task]) -> str | None:
    paths = {t.file_path for t in tasks}
    return paths.pop() if len(paths) == 1 else None
