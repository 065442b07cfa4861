"""Dry-run analysis of a parsed checklist."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field

from github_task_sync.labels import DEFAULT_LABEL_PREFIX
from github_task_sync.sync.checklist.models import Task, TaskStatus
from github_task_sync.sync.rendering import component_names, identity_label
from github_task_sync.sync.service import PlannedAction

_NATURAL_SPLIT_RE = re.compile(r"(\d+)")


@dataclass(frozen=True, slots=True)
class TaskSummary:
    tasks: list[Task]
    label_prefix: str = DEFAULT_LABEL_PREFIX
    by_status: dict[TaskStatus, int] = field(default_factory=dict)
    by_phase: list[tuple[str, int]] = field(default_factory=list)
    by_component: list[tuple[str, int]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.tasks)

    def with_status(self, status: TaskStatus) -> list[Task]:
        return [t for t in self.tasks if t.status is status]


def _natural_key(value: str) -> list[object]:
    parts = _NATURAL_SPLIT_RE.split(value)
    return [int(part) if part.isdigit() else part.lower() for part in parts]


def summarize(tasks: list[Task], label_prefix: str = DEFAULT_LABEL_PREFIX) -> TaskSummary:
    status_counts = Counter(t.status for t in tasks)
    phase_counts = Counter(t.phase for t in tasks if t.phase)
    component_counts: Counter[str] = Counter()
    for task in tasks:
        component_counts.update(component_names(task.title))

    return TaskSummary(
        tasks=list(tasks),
        label_prefix=label_prefix,
        by_status={status: status_counts.get(status, 0) for status in TaskStatus},
        by_phase=sorted(phase_counts.items(), key=lambda item: _natural_key(item[0])),
        by_component=sorted(component_counts.items(), key=lambda item: (-item[1], item[0])),
    )


def format_summary(
    summary: TaskSummary,
    plan: list[PlannedAction] | None = None,
    limit: int = 10,
) -> str:
    """Human readable report of what a sync would do."""

    lines: list[str] = ["Task Analysis", "=" * 40, f"Total tasks: {summary.total}"]
    for status in (TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS, TaskStatus.NOT_STARTED):
        lines.append(f"{status.emoji} {status.display}: {summary.by_status.get(status, 0)}")

    completed = summary.with_status(TaskStatus.COMPLETED)
    if completed:
        lines.append("")
        lines.append(f"Completed tasks (issues would be closed): {len(completed)}")
        lines.extend(_task_lines(completed, summary.label_prefix, limit))

    in_progress = summary.with_status(TaskStatus.IN_PROGRESS)
    if in_progress:
        lines.append("")
        lines.append(f"In-progress tasks: {len(in_progress)}")
        lines.extend(_task_lines(in_progress, summary.label_prefix, limit))

    not_started = summary.with_status(TaskStatus.NOT_STARTED)
    if not_started:
        lines.append("")
        lines.append(f"Not-started tasks: {len(not_started)}")
        lines.extend(_task_lines(not_started, summary.label_prefix, limit))

    if summary.by_component:
        lines.append("")
        lines.append("Components:")
        lines.extend(f"  {name}: {count}" for name, count in summary.by_component)

    if summary.by_phase:
        lines.append("")
        lines.append("Phases:")
        lines.extend(f"  Phase {phase}: {count}" for phase, count in summary.by_phase)

    if plan is not None:
        lines.append("")
        lines.append("Planned actions:")
        for item in plan:
            actions = "+".join(a.value for a in item.actions)
            target = f" (#{item.issue_number})" if item.issue_number else ""
            lines.append(f"  {actions:<14} {item.task.id}{target}: {item.reason}")

    return "\n".join(lines) + "\n"


def _task_lines(tasks: list[Task], label_prefix: str, limit: int) -> list[str]:
    shown = tasks if limit <= 0 else tasks[:limit]
    lines = [
        f"  - {t.id}: {t.title} [{identity_label(t, label_prefix=label_prefix)}]" for t in shown
    ]
    if len(tasks) > len(shown):
        lines.append(f"  ... and {len(tasks) - len(shown)} more")
    return lines
