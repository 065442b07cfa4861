"""GitHub Task Sync.

Mirrors a markdown task checklist onto GitHub Issues:
- configuration loaded from `.env`
- structured logging
- checklist parsing into typed task records
- idempotent create/update/close/reopen of issues with label bookkeeping
- local JSON sync state
"""

__version__ = "0.1.0"

from github_task_sync.sync.config import SyncSettings

__all__ = ["__version__", "SyncSettings"]
