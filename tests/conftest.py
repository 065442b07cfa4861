"""Test configuration and fixtures."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from github_task_sync.sync.checklist.models import Task, TaskStatus

SAMPLE_CHECKLIST = """# Implementation Plan

## Phase 1: Foundation

- [x] 1. Project structure and workspace setup
  - Create the Rust workspace
  - Configure CI
  - _Requirements: 3.1, 13.1_

- [-] 1.2 Database migrations and tenant schema
  - _Requirements: 2.1_

## Phase 2: Services

- [ ] 2.1 Auth service with JWT tokens
- [ ] Write the onboarding guide
"""


@pytest.fixture
def checklist_file(tmp_path: Path) -> Path:
    """Provide a checklist under a `.kiro/specs/<name>/` directory."""
    path = tmp_path / ".kiro" / "specs" / "adx-core" / "tasks.md"
    path.parent.mkdir(parents=True)
    path.write_text(SAMPLE_CHECKLIST, encoding="utf-8")
    return path


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    """Provide a path for the sync state file (not created)."""
    return tmp_path / ".github-task-sync" / "state.json"


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """Provide a factory for tasks with sensible defaults."""

    def _make(**overrides: Any) -> Task:
        values: dict[str, Any] = {
            "id": "1.1",
            "title": "Set up the workspace",
            "status": TaskStatus.NOT_STARTED,
            "file_path": ".kiro/specs/adx-core/tasks.md",
            "line_number": 3,
            "spec_name": "adx-core",
            "phase": "1",
        }
        values.update(overrides)
        return Task(**values)

    return _make
