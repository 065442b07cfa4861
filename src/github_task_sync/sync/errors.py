"""Exceptions raised by the sync components."""

from __future__ import annotations


class TaskSyncError(Exception):
    """Base exception for all task sync errors."""


class TaskFileError(TaskSyncError):
    """A checklist file could not be read or parsed."""


class SyncStateError(TaskSyncError):
    """The local sync state could not be loaded, saved or imported."""


class GitHubApiError(TaskSyncError):
    """A GitHub REST call failed.

    The message is phrased for humans; `status` keeps the HTTP status code (if any)
    so callers can branch on it.
    """

    def __init__(self, operation: str, status: int | None, message: str) -> None:
        self.operation = operation
        self.status = status
        self.message = message
        super().__init__(_describe(operation, status, message))

    @property
    def retryable(self) -> bool:
        if self.status is None:
            return True
        return self.status == 429 or self.status >= 500


def _describe(operation: str, status: int | None, message: str) -> str:
    if status == 401:
        return f"GitHub authentication failed. Please check your token. Operation: {operation}"
    if status == 403:
        if "rate limit" in message.lower():
            return f"GitHub rate limit exceeded. Operation: {operation}"
        return (
            "GitHub access forbidden. Check repository permissions. "
            f"Operation: {operation}"
        )
    if status == 404:
        return f"GitHub repository or resource not found. Operation: {operation}"
    if status == 422:
        return f"GitHub API validation error: {message}. Operation: {operation}"
    if status is None:
        return f"Unexpected error during {operation}: {message}"
    return f"GitHub API error ({status}): {message}. Operation: {operation}"


class ConfigurationError(TaskSyncError):
    """Required configuration is missing or invalid."""
