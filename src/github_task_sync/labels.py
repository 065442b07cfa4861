"""Shared GitHub label conventions.

Every synced issue carries labels from a few families owned by this tool:

- an identity label `<prefix><task id>` that ties the issue to its task
- `spec:`, `status:`, `phase:`, `requirement:` and `component:` labels

We keep these as stable, human-readable names (not machine IDs) so that:
- repos can be bootstrapped idempotently (create if missing)
- users can filter and report easily
- labels added by people can be told apart from ours and left alone
"""

from __future__ import annotations

from dataclasses import dataclass

from github_task_sync.sync.checklist.models import TaskStatus


@dataclass(frozen=True, slots=True)
class LabelSpec:
    name: str
    color: str
    description: str


DEFAULT_LABEL_PREFIX = "task:"

LABEL_FAMILIES: tuple[str, ...] = (
    "spec:",
    "status:",
    "phase:",
    "requirement:",
    "component:",
)

FIXED_LABEL_SPECS: tuple[LabelSpec, ...] = (
    LabelSpec(
        name=f"status:{TaskStatus.NOT_STARTED.value}",
        color="d4c5f9",
        description="Checklist task not started yet",
    ),
    LabelSpec(
        name=f"status:{TaskStatus.IN_PROGRESS.value}",
        color="fbca04",
        description="Checklist task in progress",
    ),
    LabelSpec(
        name=f"status:{TaskStatus.COMPLETED.value}",
        color="0e8a16",
        description="Checklist task completed",
    ),
)

_FAMILY_COLORS: dict[str, tuple[str, str]] = {
    "spec:": ("5319e7", "Checklist spec"),
    "phase:": ("1d76db", "Checklist phase"),
    "requirement:": ("c5def5", "Requirement referenced by a checklist task"),
    "component:": ("bfd4f2", "Component inferred from the task title"),
}

_IDENTITY_COLOR = "ededed"


def status_label(status: TaskStatus) -> str:
    return f"status:{status.value}"


def fixed_label_spec_by_name(name: str) -> LabelSpec | None:
    normalized = name.strip()
    for spec in FIXED_LABEL_SPECS:
        if spec.name == normalized:
            return spec
    return None


def is_managed_label(name: str, *, label_prefix: str = DEFAULT_LABEL_PREFIX) -> bool:
    """Return True if the label belongs to one of the families this tool reconciles."""

    normalized = name.strip()
    if label_prefix and normalized.startswith(label_prefix):
        return True
    return normalized.startswith(LABEL_FAMILIES)


def label_spec_for(name: str, *, label_prefix: str = DEFAULT_LABEL_PREFIX) -> LabelSpec:
    """Colour and description to use when creating a managed label."""

    fixed = fixed_label_spec_by_name(name)
    if fixed is not None:
        return fixed

    normalized = name.strip()
    for family, (color, description) in _FAMILY_COLORS.items():
        if normalized.startswith(family):
            return LabelSpec(name=normalized, color=color, description=description)

    if label_prefix and normalized.startswith(label_prefix):
        task_id = normalized[len(label_prefix) :]
        return LabelSpec(
            name=normalized,
            color=_IDENTITY_COLOR,
            description=f"Synced from checklist task {task_id}",
        )

    return LabelSpec(name=normalized, color=_IDENTITY_COLOR, description="")
