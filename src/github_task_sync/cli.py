"""Console entrypoint.

The CLI is implemented in `github_task_sync.sync.main`.
"""

from __future__ import annotations

from github_task_sync.sync.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
