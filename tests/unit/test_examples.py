"""Unit tests for the programmatic usage example."""

from __future__ import annotations

import logging
import runpy
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import Mock

import pytest

from github_task_sync.sync.errors import TaskFileError
from github_task_sync.sync.github.client import GitHubClient

EXAMPLE = Path(__file__).resolve().parents[2] / "examples" / "basic_usage.py"


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_basic_usage_closes_client_when_sync_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GITHUB_TASK_SYNC_TOKEN", "test-token")
    monkeypatch.setenv("GITHUB_REPOSITORY", "octo-org/octo-repo")

    mock_github = Mock(spec=GitHubClient)
    mock_github.repository = "octo-org/octo-repo"
    monkeypatch.setattr(
        "github_task_sync.sync.github.client.GitHubClient", Mock(return_value=mock_github)
    )

    namespace = runpy.run_path(str(EXAMPLE), run_name="basic_usage")

    with pytest.raises(TaskFileError):
        namespace["main"](["--file", str(tmp_path / "missing.md")])

    mock_github.close.assert_called_once()
