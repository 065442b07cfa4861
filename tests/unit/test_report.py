"""Unit tests for the dry-run analysis report."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from github_task_sync.sync.checklist.models import Task, TaskStatus
from github_task_sync.sync.checklist.parser import parse_task_file
from github_task_sync.sync.report import format_summary, summarize
from github_task_sync.sync.service import plan_sync
from github_task_sync.sync.state import SyncStateStore


def test_summarize_counts(checklist_file: Path) -> None:
    summary = summarize(parse_task_file(checklist_file))

    assert summary.total == 4
    assert summary.by_status == {
        TaskStatus.NOT_STARTED: 2,
        TaskStatus.IN_PROGRESS: 1,
        TaskStatus.COMPLETED: 1,
    }
    assert summary.by_phase == [("1", 2), ("2", 2)]
    assert summary.by_component == [("auth", 1), ("database", 1), ("tenant", 1)]


def test_phases_sort_naturally(make_task: Callable[..., Task]) -> None:
    tasks = [make_task(id=f"{p}.1", phase=p) for p in ("10", "2", "1", "2")]

    assert summarize(tasks).by_phase == [("1", 1), ("2", 2), ("10", 1)]


def test_components_sort_by_descending_count(make_task: Callable[..., Task]) -> None:
    tasks = [
        make_task(id="1", title="API gateway"),
        make_task(id="2", title="User API"),
        make_task(id="3", title="User onboarding"),
        make_task(id="4", title="API docs"),
    ]

    assert summarize(tasks).by_component == [("api", 3), ("user", 2)]


def test_format_summary_lists_tasks_and_truncates(checklist_file: Path) -> None:
    text = format_summary(summarize(parse_task_file(checklist_file)), limit=1)

    assert "Total tasks: 4" in text
    assert "✅ COMPLETED: 1" in text
    assert "🔄 IN PROGRESS: 1" in text
    assert "Completed tasks (issues would be closed): 1" in text
    assert "  - 1: Project structure and workspace setup [task:1]" in text
    assert "Not-started tasks: 2" in text
    assert "  ... and 1 more" in text
    assert "  Phase 2: 2" in text
    assert "  auth: 1" in text
    assert "Planned actions:" not in text


def test_format_summary_includes_plan(checklist_file: Path, state_file: Path) -> None:
    tasks = parse_task_file(checklist_file)
    plan = plan_sync(tasks, SyncStateStore(state_file))

    text = format_summary(summarize(tasks, "kiro:"), plan=plan)

    assert "Planned actions:" in text
    assert "create+close" in text
    assert "[kiro:1.2]" in text
    assert text.count("no sync record") == 4
    assert "... and" not in text
