"""Typed task records extracted from a checklist document."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import StrEnum


class TaskStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def emoji(self) -> str:
        return _STATUS_EMOJI[self]

    @property
    def display(self) -> str:
        """Human readable form, e.g. 'IN PROGRESS'."""

        return self.value.replace("_", " ").upper()


_STATUS_EMOJI: dict[TaskStatus, str] = {
    TaskStatus.COMPLETED: "✅",
    TaskStatus.IN_PROGRESS: "🔄",
    TaskStatus.NOT_STARTED: "📋",
}


@dataclass(frozen=True, slots=True)
class Task:
    """A single checklist item.

    `line_number` is 1-based. `phase` comes from the enclosing "Phase N" heading
    when there is one, otherwise from the leading integer of a numeric id.
    """

    id: str
    title: str
    status: TaskStatus
    file_path: str
    line_number: int
    spec_name: str
    phase: str | None = None
    requirements: tuple[str, ...] = field(default_factory=tuple)
    description: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status is TaskStatus.COMPLETED

    def content_hash(self) -> str:
        """Hash of the fields that should trigger a re-sync when they change.

        File path and line number are not part of the hash.
        """

        content = json.dumps(
            {
                "title": self.title,
                "description": self.description,
                "status": self.status.value,
                "requirements": list(self.requirements),
            },
            sort_keys=True,
            ensure_ascii=False,
        )
        return hashlib.md5(content.encode("utf-8")).hexdigest()

    def is_equivalent(self, other: Task) -> bool:
        return self.content_hash() == other.content_hash()
