"""Unit tests for task synchronisation (mocked GitHub)."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import Mock

import pytest

from github_task_sync.sync.checklist.models import Task, TaskStatus
from github_task_sync.sync.errors import GitHubApiError
from github_task_sync.sync.github.client import GitHubClient, IssueSnapshot
from github_task_sync.sync.rendering import issue_body, issue_title, task_labels
from github_task_sync.sync.service import SyncAction, TaskSyncService, plan_sync
from github_task_sync.sync.state import SyncRecord, SyncStateStore

REPO = "octo-org/octo-repo"
NOW = datetime(2025, 1, 1, tzinfo=UTC)


def _snapshot(
    number: int,
    *,
    task: Task | None = None,
    state: str = "open",
    labels: list[str] | None = None,
    title: str = "Old title",
    body: str = "Old body",
) -> IssueSnapshot:
    if task is not None:
        title = issue_title(task)
        body = issue_body(task, now=NOW)
    return IssueSnapshot(
        number=number,
        title=title,
        body=body,
        state=state,
        labels=labels or [],
        html_url=f"https://github.com/{REPO}/issues/{number}",
    )


def _github() -> Mock:
    github = Mock(spec=GitHubClient)
    github.repository = REPO
    github.find_issue_by_label.return_value = None
    github.find_issue_number_by_body_marker.return_value = None
    return github


def _service(github: Mock, store: SyncStateStore, **kwargs: object) -> TaskSyncService:
    return TaskSyncService(github=github, store=store, now=lambda: NOW, **kwargs)  # type: ignore[arg-type]


def _seed(store: SyncStateStore, task: Task, *, issue_number: int, status: TaskStatus) -> None:
    store.upsert(
        SyncRecord(
            task_id=task.id,
            repository=REPO,
            issue_number=issue_number,
            last_synced="2024-12-01T00:00:00+00:00",
            last_hash="stale",
            file_path=task.file_path,
            status=status.value,
        )
    )


def test_new_task_creates_issue_and_persists_record(
    state_file: Path, make_task: Callable[..., Task]
) -> None:
    task = make_task()
    github = _github()
    github.create_issue.return_value = _snapshot(123, task=task)
    store = SyncStateStore(state_file)

    outcome = _service(github, store).sync_task(task)

    github.create_issue.assert_called_once_with(
        title=issue_title(task), body=issue_body(task, now=NOW), labels=task_labels(task)
    )
    github.close_issue.assert_not_called()
    assert outcome.actions == (SyncAction.CREATE,)
    assert outcome.issue_number == 123

    raw = json.loads(state_file.read_text(encoding="utf-8"))
    assert raw == [
        {
            "task_id": "1.1",
            "repository": REPO,
            "issue_number": 123,
            "last_synced": "2025-01-01T00:00:00+00:00",
            "last_hash": task.content_hash(),
            "file_path": ".kiro/specs/adx-core/tasks.md",
            "status": "not_started",
            "issue_url": f"https://github.com/{REPO}/issues/123",
        }
    ]


def test_new_completed_task_is_created_then_closed(
    state_file: Path, make_task: Callable[..., Task]
) -> None:
    task = make_task(status=TaskStatus.COMPLETED)
    github = _github()
    github.create_issue.return_value = _snapshot(5, task=task)
    github.close_issue.return_value = _snapshot(5, task=task, state="closed")

    outcome = _service(github, SyncStateStore(state_file)).sync_task(task)

    github.close_issue.assert_called_once_with(issue_number=5)
    github.add_comment.assert_not_called()
    assert outcome.actions == (SyncAction.CREATE, SyncAction.CLOSE)


def test_second_sync_of_unchanged_tasks_makes_no_remote_calls(
    state_file: Path, make_task: Callable[..., Task]
) -> None:
    task = make_task()
    github = _github()
    github.create_issue.return_value = _snapshot(1, task=task)
    service = _service(github, SyncStateStore(state_file))

    first = service.sync_tasks([task])
    github.reset_mock()
    second = service.sync_tasks([task])

    assert first.created == 1
    assert second.unchanged == 1
    assert second.created == 0
    assert github.method_calls == []


def test_status_flip_to_completed_closes_once_and_reconciles_labels(
    state_file: Path, make_task: Callable[..., Task]
) -> None:
    old = make_task()
    task = make_task(status=TaskStatus.COMPLETED)
    store = SyncStateStore(state_file)
    _seed(store, task, issue_number=40, status=TaskStatus.NOT_STARTED)

    github = _github()
    github.get_issue.return_value = _snapshot(
        40, task=old, labels=task_labels(old) + ["bug"]
    )
    github.update_issue.return_value = _snapshot(40, task=task)
    github.close_issue.return_value = _snapshot(40, task=task, state="closed")

    outcome = _service(github, store).sync_task(task)

    github.find_issue_by_label.assert_not_called()
    github.update_issue.assert_called_once_with(
        issue_number=40, title=issue_title(task), body=issue_body(task, now=NOW)
    )
    github.set_labels.assert_called_once_with(
        issue_number=40, labels=["bug"] + task_labels(task)
    )
    github.add_comment.assert_called_once()
    assert "marked completed" in github.add_comment.call_args.kwargs["body"]
    github.close_issue.assert_called_once_with(issue_number=40)
    assert outcome.actions == (SyncAction.UPDATE, SyncAction.CLOSE)
    assert store.get(task.id, repository=REPO).status == "completed"


def test_task_no_longer_completed_reopens_issue(
    state_file: Path, make_task: Callable[..., Task]
) -> None:
    task = make_task(status=TaskStatus.IN_PROGRESS)
    store = SyncStateStore(state_file)
    _seed(store, task, issue_number=41, status=TaskStatus.COMPLETED)

    github = _github()
    github.get_issue.return_value = _snapshot(
        41, task=task, state="closed", labels=task_labels(task)
    )
    github.reopen_issue.return_value = _snapshot(41, task=task)

    outcome = _service(github, store, comment_on_status_change=False).sync_task(task)

    github.update_issue.assert_not_called()
    github.set_labels.assert_not_called()
    github.add_comment.assert_not_called()
    github.reopen_issue.assert_called_once_with(issue_number=41)
    assert outcome.actions == (SyncAction.REOPEN,)


def test_identical_issue_is_left_untouched(
    state_file: Path, make_task: Callable[..., Task]
) -> None:
    task = make_task()
    github = _github()
    existing = _snapshot(7, task=task, labels=task_labels(task))
    # Only the timestamp differs.
    existing = IssueSnapshot(
        number=7,
        title=existing.title,
        body=issue_body(task, now=datetime(2020, 1, 1, tzinfo=UTC)),
        state="open",
        labels=existing.labels,
    )
    github.find_issue_by_label.return_value = existing

    outcome = _service(github, SyncStateStore(state_file)).sync_task(task)

    github.update_issue.assert_not_called()
    github.set_labels.assert_not_called()
    github.create_issue.assert_not_called()
    assert outcome.unchanged
    assert outcome.issue_number == 7


def test_missing_recorded_issue_falls_back_to_label_lookup(
    state_file: Path, make_task: Callable[..., Task]
) -> None:
    task = make_task()
    store = SyncStateStore(state_file)
    _seed(store, task, issue_number=99, status=TaskStatus.NOT_STARTED)

    github = _github()
    github.get_issue.side_effect = GitHubApiError("get issue", 404, "Not Found")
    github.find_issue_by_label.return_value = _snapshot(12, labels=task_labels(task))
    github.update_issue.return_value = _snapshot(12, task=task)

    outcome = _service(github, store).sync_task(task)

    github.find_issue_by_label.assert_called_once_with(label="task:1.1")
    github.create_issue.assert_not_called()
    assert outcome.issue_number == 12
    assert store.get(task.id, repository=REPO).issue_number == 12


def test_recorded_issue_lookup_propagates_other_errors(
    state_file: Path, make_task: Callable[..., Task]
) -> None:
    task = make_task()
    store = SyncStateStore(state_file)
    _seed(store, task, issue_number=99, status=TaskStatus.NOT_STARTED)
    github = _github()
    github.get_issue.side_effect = GitHubApiError("get issue", 401, "Bad credentials")

    with pytest.raises(GitHubApiError):
        _service(github, store).sync_task(task)


def test_issue_found_by_body_marker(state_file: Path, make_task: Callable[..., Task]) -> None:
    task = make_task()
    github = _github()
    github.find_issue_number_by_body_marker.return_value = 55
    github.get_issue.return_value = _snapshot(55)
    github.update_issue.return_value = _snapshot(55, task=task)

    outcome = _service(github, SyncStateStore(state_file)).sync_task(task)

    github.find_issue_number_by_body_marker.assert_called_once_with(
        marker="github-task-sync:task-id adx-core/1.1"
    )
    github.get_issue.assert_called_once_with(issue_number=55)
    github.set_labels.assert_called_once_with(issue_number=55, labels=task_labels(task))
    assert outcome.actions == (SyncAction.UPDATE,)


def test_failing_task_does_not_stop_the_batch(
    state_file: Path, make_task: Callable[..., Task]
) -> None:
    first = make_task(id="1.1")
    second = make_task(id="1.2", title="Second task")
    github = _github()
    github.create_issue.side_effect = [
        GitHubApiError("create issue", 500, "boom"),
        _snapshot(2, task=second),
    ]
    sleep = Mock()
    store = SyncStateStore(state_file)

    report = _service(github, store, request_delay_seconds=0.5, sleep=sleep).sync_tasks(
        [first, second]
    )

    assert report.failed == 1
    assert report.created == 1
    assert not report.ok
    assert report.outcomes[0].failed
    assert "boom" in (report.outcomes[0].error or "")
    sleep.assert_called_once_with(0.5)
    assert store.get("1.1", repository=REPO) is None
    assert store.get("1.2", repository=REPO).issue_number == 2


def test_label_bootstrap_failure_is_not_fatal(
    state_file: Path, make_task: Callable[..., Task]
) -> None:
    task = make_task()
    github = _github()
    github.ensure_labels.side_effect = GitHubApiError("list labels", 403, "Forbidden")
    github.create_issue.return_value = _snapshot(3, task=task)

    report = _service(github, SyncStateStore(state_file)).sync_tasks([task])

    assert report.ok
    assert report.created == 1


def test_duplicate_task_ids_are_reported(
    state_file: Path, make_task: Callable[..., Task]
) -> None:
    github = _github()
    github.create_issue.return_value = _snapshot(3, task=make_task())

    report = _service(github, SyncStateStore(state_file)).sync_tasks(
        [make_task(), make_task(title="Same id again", line_number=9)]
    )

    assert report.created == 1
    assert report.failed == 1
    assert report.outcomes[0].error == "Duplicate task ID: 1.1"
    github.create_issue.assert_called_once()


def test_force_resyncs_unchanged_tasks(state_file: Path, make_task: Callable[..., Task]) -> None:
    task = make_task()
    github = _github()
    github.create_issue.return_value = _snapshot(1, task=task)
    service = _service(github, SyncStateStore(state_file))
    service.sync_tasks([task])

    github.reset_mock()
    github.get_issue.return_value = _snapshot(1, task=task, labels=task_labels(task))
    report = service.sync_tasks([task], force=True)

    github.get_issue.assert_called_once_with(issue_number=1)
    assert report.unchanged == 1


def test_prune_drops_orphaned_records(state_file: Path, make_task: Callable[..., Task]) -> None:
    store = SyncStateStore(state_file)
    kept = make_task(id="1.1")
    gone = make_task(id="1.9")
    _seed(store, gone, issue_number=9, status=TaskStatus.NOT_STARTED)
    github = _github()
    github.create_issue.return_value = _snapshot(1, task=kept)

    report = _service(github, store).sync_tasks([kept], prune=True)

    assert report.pruned == ["1.9"]
    assert store.get("1.9", repository=REPO) is None


def test_plan_is_offline(state_file: Path, make_task: Callable[..., Task]) -> None:
    store = SyncStateStore(state_file)
    unchanged = make_task(id="1.1")
    store.upsert(
        SyncRecord(
            task_id="1.1",
            repository=REPO,
            issue_number=1,
            last_synced="2025-01-01T00:00:00+00:00",
            last_hash=unchanged.content_hash(),
            file_path=unchanged.file_path,
            status="not_started",
        )
    )
    finished = make_task(id="1.2", status=TaskStatus.COMPLETED)
    _seed(store, finished, issue_number=2, status=TaskStatus.NOT_STARTED)
    reopened = make_task(id="1.3")
    _seed(store, reopened, issue_number=3, status=TaskStatus.COMPLETED)
    new_done = make_task(id="1.4", status=TaskStatus.COMPLETED)

    plan = plan_sync([unchanged, finished, reopened, new_done], store, repository=REPO)

    assert [(p.task.id, p.actions) for p in plan] == [
        ("1.1", (SyncAction.SKIP,)),
        ("1.2", (SyncAction.UPDATE, SyncAction.CLOSE)),
        ("1.3", (SyncAction.UPDATE, SyncAction.REOPEN)),
        ("1.4", (SyncAction.CREATE, SyncAction.CLOSE)),
    ]
    assert plan[1].issue_number == 2

    forced = plan_sync([unchanged], store, repository=REPO, force=True)
    assert forced[0].actions == (SyncAction.UPDATE,)
    assert forced[0].reason == "forced"

    assert _service(_github(), store).plan([new_done]) == plan_sync(
        [new_done], store, repository=REPO
    )
