"""Render a `Task` as GitHub issue title, body and labels."""

from __future__ import annotations

import re
from datetime import UTC, datetime

from github_task_sync.labels import DEFAULT_LABEL_PREFIX, status_label
from github_task_sync.sync.checklist.models import Task, TaskStatus

TASK_MARKER_PREFIX = "github-task-sync:task-id"

_STATUS_SENTENCES: dict[TaskStatus, str] = {
    TaskStatus.COMPLETED: "🎉 **Status:** This task has been completed!",
    TaskStatus.IN_PROGRESS: "🔄 **Status:** This task is currently in progress.",
    TaskStatus.NOT_STARTED: "📋 **Status:** This task is ready to be started.",
}

COMPONENT_KEYWORDS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("temporal", re.compile(r"\btemporal\b")),
    ("database", re.compile(r"\b(?:database|migrations?)\b")),
    ("auth", re.compile(r"\bauth\w*")),
    ("tenant", re.compile(r"\b(?:multi-)?tenants?\b")),
    ("user", re.compile(r"\busers?\b")),
    ("file", re.compile(r"\bfiles?\b")),
    ("workflow", re.compile(r"\bworkflows?\b")),
    ("frontend", re.compile(r"\b(?:micro-)?frontends?\b")),
    ("bff", re.compile(r"\bbffs?\b")),
    ("api", re.compile(r"\bapis?\b")),
    ("testing", re.compile(r"\btesting\b")),
    ("ai", re.compile(r"\bai\b")),
    ("module", re.compile(r"\bmodules?\b")),
)

_LABEL_SLUG_RE = re.compile(r"[^a-zA-Z0-9.-]")


def task_marker(task: Task) -> str:
    """Hidden marker embedded in the issue body, searchable via the search API."""

    return f"{TASK_MARKER_PREFIX} {task.spec_name}/{task.id}"


def issue_title(task: Task) -> str:
    return f"{task.status.emoji} [{task.spec_name}] {task.id}: {task.title}"


def issue_body(task: Task, *, now: datetime | None = None) -> str:
    timestamp = (now or datetime.now(UTC)).astimezone(UTC).isoformat()

    sections: list[str] = [
        f"## {task.title}",
        task.description or "No detailed description available.",
    ]
    if task.phase:
        sections.append(f"**Phase:** {task.phase}")
    sections.append(_STATUS_SENTENCES[task.status])

    info = [
        "---",
        "**Task Information**",
        "",
        f"- **Task ID:** {task.id}",
        f"- **Spec:** {task.spec_name}",
        f"- **Status:** {task.status.value}",
        f"- **Source:** {task.file_path}:{task.line_number}",
    ]
    if task.requirements:
        info.append(f"- **Requirements:** {', '.join(task.requirements)}")
    info.append(f"- **Last Updated:** {timestamp}")
    sections.append("\n".join(info))

    sections.append("*This issue was automatically synced by GitHub Task Sync*")
    sections.append(f"<!-- {task_marker(task)} -->")
    return "\n\n".join(sections) + "\n"


def identity_label(task: Task, *, label_prefix: str = DEFAULT_LABEL_PREFIX) -> str:
    return f"{label_prefix}{task.id}"


def requirement_label(requirement: str) -> str:
    return f"requirement:{_LABEL_SLUG_RE.sub('-', requirement.strip()).lower()}"


def component_names(title: str) -> list[str]:
    lowered = title.lower()
    return [name for name, pattern in COMPONENT_KEYWORDS if pattern.search(lowered)]


def task_labels(task: Task, *, label_prefix: str = DEFAULT_LABEL_PREFIX) -> list[str]:
    """All managed labels for a task, deduplicated, in a stable order."""

    labels = [
        identity_label(task, label_prefix=label_prefix),
        f"spec:{task.spec_name}",
        status_label(task.status),
    ]
    if task.phase:
        labels.append(f"phase:{task.phase}")
    labels.extend(requirement_label(req) for req in task.requirements)
    labels.extend(f"component:{name}" for name in component_names(task.title))

    # dict preserves insertion order
    return list(dict.fromkeys(labels))
