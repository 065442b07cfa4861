"""Configuration for the task sync tool.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

The token is read from `GITHUB_TASK_SYNC_TOKEN`, falling back to `GITHUB_TOKEN`.
It is not required at load time so that offline commands (analyze, validate,
state) work without credentials; remote commands call `require_token()`.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from github_task_sync.labels import DEFAULT_LABEL_PREFIX
from github_task_sync.sync.errors import ConfigurationError


def normalize_repository(value: str) -> str:
    """Normalise and validate an 'owner/repo' string.

    Raises:
        ValueError: if the value is not of the form 'owner/repo'.
    """

    normalized = value.strip().strip("/")
    parts = normalized.split("/")
    if len(parts) != 2 or not all(p.strip() for p in parts):
        raise ValueError(f"Invalid repository format: {value!r}. Expected format: 'owner/repo'")
    return normalized


class SyncSettings(BaseSettings):
    """Settings for the task sync tool.

    Environment variables:
    - GITHUB_TASK_SYNC_TOKEN (or GITHUB_TOKEN)
    - GITHUB_REPOSITORY             (optional, `--repo` overrides)
    - GITHUB_BASE_URL               (optional)
    - TASK_FILE                     (optional)
    - SYNC_STATE_PATH               (optional)
    - LABEL_PREFIX                  (optional)
    - SYNC_REQUEST_DELAY_SECONDS    (optional)
    - GITHUB_MAX_RETRIES            (optional)
    - GITHUB_RETRY_DELAY_SECONDS    (optional)
    - GITHUB_RATE_LIMIT_BUFFER      (optional)
    - SYNC_ENABLED                  (optional)
    - SYNC_COMMENT_ON_STATUS_CHANGE (optional)
    - LOG_LEVEL                     (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `SyncSettings(_env_file=path_to_env)`.
    """

    github_token: str = Field(
        default="",
        validation_alias=AliasChoices("GITHUB_TASK_SYNC_TOKEN", "GITHUB_TOKEN"),
        description="GitHub token used for API authentication",
    )
    github_repository: str | None = Field(
        default=None,
        validation_alias="GITHUB_REPOSITORY",
        description="Default target repository in the form 'owner/repo'",
    )
    github_base_url: str = Field(
        default="https://api.github.com",
        validation_alias="GITHUB_BASE_URL",
        description="GitHub API base URL (useful for GitHub Enterprise)",
    )

    task_file: Path = Field(
        default=Path(".kiro/specs/adx-core/tasks.md"),
        validation_alias="TASK_FILE",
        description="Checklist file to parse",
    )
    sync_state_path: Path = Field(
        default=Path(".github-task-sync"),
        validation_alias="SYNC_STATE_PATH",
        description="Directory where local sync state is persisted",
    )
    label_prefix: str = Field(
        default=DEFAULT_LABEL_PREFIX,
        validation_alias="LABEL_PREFIX",
        description="Prefix of the identity label that ties an issue to a task",
    )

    request_delay_seconds: float = Field(
        default=0.5,
        ge=0.0,
        validation_alias="SYNC_REQUEST_DELAY_SECONDS",
        description="Fixed pause between per-task GitHub operations",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        validation_alias="GITHUB_MAX_RETRIES",
        description="Retries for transient GitHub failures (5xx, 429)",
    )
    retry_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        validation_alias="GITHUB_RETRY_DELAY_SECONDS",
        description="Initial retry delay; doubles on each attempt",
    )
    rate_limit_buffer: int = Field(
        default=100,
        ge=0,
        validation_alias="GITHUB_RATE_LIMIT_BUFFER",
        description="Wait for the rate limit reset when remaining requests drop to this",
    )

    enabled: bool = Field(
        default=True,
        validation_alias="SYNC_ENABLED",
        description="Master switch; when false `sync` logs and exits",
    )
    comment_on_status_change: bool = Field(
        default=True,
        validation_alias="SYNC_COMMENT_ON_STATUS_CHANGE",
        description="Leave a comment when an issue is closed or reopened by a sync",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("github_repository")
    @classmethod
    def _validate_repository(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return normalize_repository(value)

    @field_validator("github_base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @property
    def state_file(self) -> Path:
        """Path where task-to-issue sync records are persisted."""

        return self.sync_state_path / "state.json"

    def require_token(self) -> str:
        token = self.github_token.strip()
        if not token:
            raise ConfigurationError(
                "GITHUB_TASK_SYNC_TOKEN (or GITHUB_TOKEN) is required for this command"
            )
        return token

    def resolve_repository(self, override: str | None = None) -> str:
        """Return the target repository, preferring an explicit override."""

        candidate = override if override and override.strip() else self.github_repository
        if not candidate:
            raise ConfigurationError(
                "A repository is required: pass --repo or set GITHUB_REPOSITORY"
            )
        try:
            return normalize_repository(candidate)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
