"""Parse a markdown task checklist into `Task` records.

Recognised layout::

    ## Phase 1: Foundation

    - [x] 1. Project structure and workspace setup
      - Create the workspace
      - _Requirements: 3.1, 13.1_

    - [-] 1.2 Database migrations
    - [ ] Write the onboarding guide

Checkbox content decides the status: `x`/`X` is completed, exactly `-` is in
progress, anything else is not started. Lines without a numeric id get a stable
generated id derived from the title.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from github_task_sync.sync.checklist.models import Task, TaskStatus
from github_task_sync.sync.errors import TaskFileError

logger = logging.getLogger(__name__)

_COMPLETED_RE = re.compile(r"^\s*-\s*\[\s*x\s*\]\s*", re.IGNORECASE)
_IN_PROGRESS_RE = re.compile(r"^\s*-\s*\[-\]\s*")
_ANY_CHECKBOX_RE = re.compile(r"^\s*-\s*\[.*?\]\s*")
_CHECKBOX_START_RE = re.compile(r"^\s*-\s*\[")

# Order matters: "1.1 Title", then "1.1. Title", then a bare title.
_TASK_LINE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s*-\s*\[[^\]]*\]\s*(\d+(?:\.\d+)*)\s+(.+)$"),
    re.compile(r"^\s*-\s*\[[^\]]*\]\s*(\d+(?:\.\d+)*)\.\s*(.+)$"),
    re.compile(r"^\s*-\s*\[[^\]]*\]\s*(.+)$"),
)
_NUMERIC_ID_RE = re.compile(r"^\d+(?:\.\d+)*$")
_LEADING_INT_RE = re.compile(r"^(\d+)")

REQUIREMENTS_RE = re.compile(r"_Requirements:\s*([^_\n]+)", re.IGNORECASE)

_PHASE_HEADING_RE = re.compile(r"^#{2,}\s*phase\s+([^:]+?)\s*(?::.*)?$", re.IGNORECASE)
_HORIZONTAL_RULE_RE = re.compile(r"^(?:-{3,}|\*{3,}|_{3,})$")


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class _TaskLine:
    id: str
    title: str
    status: TaskStatus


@dataclass(slots=True)
class _PendingTask:
    line: _TaskLine
    line_number: int
    phase: str | None
    description: list[str] = field(default_factory=list)
    requirements: tuple[str, ...] = ()


def parse_task_file(path: Path | str) -> list[Task]:
    """Read and parse a checklist file.

    Raises:
        TaskFileError: if the file cannot be read.
    """

    file_path = Path(path)
    logger.debug("Parsing task file", extra={"path": str(file_path)})
    try:
        content = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Failed to parse task file", extra={"path": str(file_path), "error": str(e)})
        raise TaskFileError(f"Failed to parse task file {file_path}: {e}") from e

    tasks = parse_content(content, file_path.as_posix())
    logger.info(
        "Parsed tasks from file",
        extra={"path": str(file_path), "task_count": len(tasks)},
    )
    return tasks


def parse_content(content: str, file_path: str) -> list[Task]:
    """Parse checklist markdown; `file_path` is recorded on each task."""

    spec_name = extract_spec_name(file_path)
    tasks: list[Task] = []
    current: _PendingTask | None = None
    current_phase: str | None = None

    def finish() -> None:
        if current is not None:
            tasks.append(_finalize(current, file_path=file_path, spec_name=spec_name))

    for line_number, raw in enumerate(content.split("\n"), start=1):
        line = raw.rstrip("\r")
        if not line.strip():
            continue

        parsed = parse_task_line(line)
        if parsed is not None:
            finish()
            current = _PendingTask(
                line=parsed,
                line_number=line_number,
                phase=current_phase or _phase_from_id(parsed.id),
            )
            continue

        if _is_new_section(line):
            finish()
            current = None
            phase = _phase_from_heading(line)
            if phase is not None:
                current_phase = phase
            continue

        if current is None or not _is_description_line(line):
            continue

        match = REQUIREMENTS_RE.search(line)
        if match:
            current.requirements = _split_requirements(match.group(1))
        else:
            current.description.append(line.strip())

    finish()
    return tasks


def parse_task_line(line: str) -> _TaskLine | None:
    """Return id/title/status for a checklist line, or None if it is not one."""

    status = _extract_status(line)
    if status is None:
        return None

    for pattern in _TASK_LINE_PATTERNS:
        match = pattern.match(line)
        if not match:
            continue

        groups = match.groups()
        if len(groups) == 2:
            task_id, title = groups
        else:
            task_id, title = None, groups[0]

        title = title.strip()
        if not title:
            continue
        if task_id is None or not _NUMERIC_ID_RE.match(task_id):
            task_id = generate_task_id(title)
        return _TaskLine(id=task_id, title=title, status=status)

    return None


def generate_task_id(title: str) -> str:
    """Stable id for a task without a numeric id: `task-<8 hex>`."""

    digest = hashlib.md5(title.lower().encode("utf-8")).hexdigest()
    return f"task-{digest[:8]}"


def extract_spec_name(file_path: str) -> str:
    """Spec name from a path like `.kiro/specs/<name>/tasks.md`.

    Falls back to the parent directory name.
    """

    path = PurePosixPath(file_path.replace("\\", "/"))
    parts = path.parts
    if "specs" in parts:
        idx = parts.index("specs")
        if idx < len(parts) - 1:
            return parts[idx + 1] or "unknown"
    return path.parent.name or "unknown"


def validate_task_file(path: Path | str) -> ValidationResult:
    """Check a checklist file for duplicate ids and malformed task lines."""

    file_path = Path(path)
    errors: list[str] = []

    try:
        content = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return ValidationResult(valid=False, errors=[f"Failed to read or parse file: {e}"])

    tasks = parse_content(content, file_path.as_posix())

    seen: set[str] = set()
    for task in tasks:
        if task.id in seen:
            errors.append(f"Duplicate task ID found: {task.id}")
        seen.add(task.id)

    untitled = [t for t in tasks if not t.title.strip()]
    if untitled:
        errors.append(f"Found {len(untitled)} tasks without titles")

    for line_number, raw in enumerate(content.split("\n"), start=1):
        line = raw.rstrip("\r")
        if _CHECKBOX_START_RE.match(line) and parse_task_line(line) is None:
            errors.append(f"Malformed task line at {line_number}: {line.strip()}")

    return ValidationResult(valid=not errors, errors=errors)


def _extract_status(line: str) -> TaskStatus | None:
    if _COMPLETED_RE.match(line):
        return TaskStatus.COMPLETED
    if _IN_PROGRESS_RE.match(line):
        return TaskStatus.IN_PROGRESS
    if _ANY_CHECKBOX_RE.match(line):
        return TaskStatus.NOT_STARTED
    return None


def _split_requirements(text: str) -> tuple[str, ...]:
    return tuple(req.strip() for req in text.split(",") if req.strip())


def _is_description_line(line: str) -> bool:
    trimmed = line.strip()
    if not trimmed or trimmed.startswith("#"):
        return False
    if _extract_status(trimmed) is not None:
        return False
    if trimmed.startswith(("-", "*")) or line.startswith(("  ", "\t")):
        return True
    return bool(REQUIREMENTS_RE.search(trimmed))


def _is_new_section(line: str) -> bool:
    trimmed = line.strip()
    return trimmed.startswith("#") or bool(_HORIZONTAL_RULE_RE.match(trimmed))


def _phase_from_heading(line: str) -> str | None:
    match = _PHASE_HEADING_RE.match(line.strip())
    if not match:
        return None
    return match.group(1).strip() or None


def _phase_from_id(task_id: str) -> str | None:
    match = _LEADING_INT_RE.match(task_id)
    return match.group(1) if match else None


def _finalize(pending: _PendingTask, *, file_path: str, spec_name: str) -> Task:
    description = "\n".join(line for line in pending.description if line).strip()
    return Task(
        id=pending.line.id,
        title=pending.line.title,
        status=pending.line.status,
        file_path=file_path,
        line_number=pending.line_number,
        spec_name=spec_name,
        phase=pending.phase,
        requirements=pending.requirements,
        description=description or None,
    )
