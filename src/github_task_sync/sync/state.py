"""Local sync state: which issue each task was synced to, and with what content.

Records are persisted as a JSON list. A record is keyed by (repository, task id),
so one state file can serve several target repositories.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from github_task_sync.sync.checklist.models import Task
from github_task_sync.sync.errors import SyncStateError

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0.0"


class SyncRecord(BaseModel):
    """Persisted mapping of a checklist task to its GitHub issue."""

    task_id: str
    repository: str = Field(default="")
    issue_number: int = Field(gt=0)
    last_synced: str
    last_hash: str
    file_path: str
    status: str | None = Field(default=None)
    issue_url: str | None = Field(default=None)

    def matches(self, task_id: str, repository: str | None) -> bool:
        if self.task_id != task_id:
            return False
        return repository is None or self.repository.strip() == repository.strip()


@dataclass(frozen=True, slots=True)
class SyncStats:
    total_tasks: int
    file_count: int
    last_sync_time: str | None


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class SyncStateStore:
    """JSON-file backed store for task sync records."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[SyncRecord]:
        if not self._path.exists():
            return []

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Sync state file is not valid JSON; treating as empty",
                extra={"path": str(self._path)},
            )
            return []

        if raw is None:
            return []

        if not isinstance(raw, list):
            logger.warning(
                "Sync state file has unexpected shape; treating as empty",
                extra={"path": str(self._path)},
            )
            return []

        records: list[SyncRecord] = []
        for item in raw:
            try:
                records.append(SyncRecord.model_validate(item))
            except ValidationError:
                logger.warning(
                    "Skipping invalid sync record",
                    extra={"path": str(self._path), "record": item},
                )
        return records

    def save(self, records: list[SyncRecord]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            payload = [record.model_dump(mode="json") for record in records]
            self._path.write_text(
                json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
            )
        except OSError as e:
            raise SyncStateError(f"Failed to save sync state: {e}") from e
        logger.debug("Saved sync state", extra={"path": str(self._path), "count": len(records)})

    def get(self, task_id: str, *, repository: str | None = None) -> SyncRecord | None:
        for record in self.load():
            if record.matches(task_id, repository):
                return record
        return None

    def upsert(self, record: SyncRecord) -> None:
        records = self.load()
        for idx, existing in enumerate(records):
            if existing.matches(record.task_id, record.repository):
                records[idx] = record
                self.save(records)
                return
        records.append(record)
        self.save(records)

    def remove(self, task_id: str, *, repository: str | None = None) -> bool:
        records = self.load()
        kept = [r for r in records if not r.matches(task_id, repository)]
        if len(kept) == len(records):
            return False
        self.save(kept)
        logger.debug("Removed sync record", extra={"task_id": task_id})
        return True

    def needs_sync(
        self,
        task: Task,
        current_hash: str | None = None,
        *,
        repository: str | None = None,
    ) -> bool:
        """True when the task has no record, its content changed, or it moved files."""

        current_hash = current_hash or task.content_hash()
        existing = self.get(task.id, repository=repository)

        if existing is None:
            logger.debug("Task needs sync: no existing state", extra={"task_id": task.id})
            return True
        if existing.last_hash != current_hash:
            logger.debug(
                "Task needs sync: hash changed",
                extra={"task_id": task.id, "old_hash": existing.last_hash, "new_hash": current_hash},
            )
            return True
        if existing.file_path != task.file_path:
            logger.debug(
                "Task needs sync: file path changed",
                extra={"task_id": task.id, "old_path": existing.file_path, "new_path": task.file_path},
            )
            return True
        return False

    def cleanup_orphaned(
        self,
        existing_task_ids: list[str],
        *,
        repository: str | None = None,
        file_path: str | None = None,
    ) -> list[str]:
        """Drop records whose task no longer exists; returns the removed task ids.

        Only records for `repository` and `file_path` are considered when given.
        """

        existing = set(existing_task_ids)
        kept: list[SyncRecord] = []
        orphaned: list[str] = []
        for record in self.load():
            in_scope = (repository is None or record.repository == repository) and (
                file_path is None or record.file_path == file_path
            )
            if in_scope and record.task_id not in existing:
                orphaned.append(record.task_id)
            else:
                kept.append(record)

        if orphaned:
            self.save(kept)
            logger.info(
                "Cleaned up orphaned sync states",
                extra={"orphaned_count": len(orphaned), "orphaned_ids": orphaned},
            )
        return orphaned

    def stats(self) -> SyncStats:
        records = self.load()
        return SyncStats(
            total_tasks=len(records),
            file_count=len({r.file_path for r in records}),
            last_sync_time=max((r.last_synced for r in records), default=None),
        )

    def export_state(self) -> str:
        payload = {
            "version": EXPORT_VERSION,
            "exported_at": utc_now_iso(),
            "states": [r.model_dump(mode="json") for r in self.load()],
        }
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def import_state(self, data: str) -> int:
        """Replace the state with an export produced by `export_state`.

        Returns:
            Number of imported records.

        Raises:
            SyncStateError: if the data is not a valid export.
        """

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise SyncStateError(f"Failed to import sync state: {e}") from e

        states = payload.get("states") if isinstance(payload, dict) else None
        if not isinstance(states, list):
            raise SyncStateError("Failed to import sync state: Invalid import data format")

        records: list[SyncRecord] = []
        for item in states:
            try:
                records.append(SyncRecord.model_validate(item))
            except ValidationError as e:
                raise SyncStateError(
                    f"Failed to import sync state: Invalid sync state: {json.dumps(item)}"
                ) from e

        self.save(records)
        logger.info(
            "Imported sync state",
            extra={"count": len(records), "import_version": payload.get("version")},
        )
        return len(records)

    def clear(self) -> None:
        self.save([])
        logger.info("Cleared all sync state", extra={"path": str(self._path)})
