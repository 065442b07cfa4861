"""GitHub API client wrapper.

Wraps PyGithub for repository connection and issue creation, and a
`requests.Session` for the remaining REST calls. This keeps GitHub calls out of
the sync service and CLI code and makes tests easy.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import requests
from github import Auth, Github, GithubException
from github.Repository import Repository

from github_task_sync.labels import DEFAULT_LABEL_PREFIX, label_spec_for
from github_task_sync.sync.errors import GitHubApiError

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 30
_PER_PAGE = 100
_MAX_PAGES = 10


@dataclass(frozen=True, slots=True)
class IssueSnapshot:
    """Issue fields the sync needs to compare against a task."""

    number: int
    title: str
    body: str
    state: str
    labels: list[str] = field(default_factory=list)
    html_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.state.lower() == "open"


@dataclass(frozen=True, slots=True)
class RateLimit:
    limit: int
    remaining: int
    reset: int
    used: int


@dataclass(frozen=True, slots=True)
class ConnectionCheck:
    success: bool
    message: str


class GitHubClient:
    """Small wrapper around PyGithub and the REST API for issue synchronisation."""

    def __init__(
        self,
        *,
        token: str,
        repository: str,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        rate_limit_buffer: int = 100,
        repo: Repository | None = None,
        github_api: Github | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not token:
            raise ValueError("GitHub token is required")
        if not repository:
            raise ValueError("GitHub repository is required")

        self._repository_name = repository.strip().strip("/")
        self._rest_base_url = base_url.rstrip("/")
        self._max_retries = max(0, max_retries)
        self._retry_delay_seconds = retry_delay_seconds
        self._rate_limit_buffer = rate_limit_buffer
        self._sleep = sleep
        self._rate_limit: RateLimit | None = None

        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "github-task-sync",
            }
        )

        if repo is not None:
            self._repo = repo
            self._github = None
            logger.debug("Using injected Repository instance")
            return

        auth = Auth.Token(token)
        self._github = github_api or Github(auth=auth, base_url=self._rest_base_url)
        try:
            self._repo = self._github.get_repo(self._repository_name)
        except GithubException as e:
            raise _from_github_exception(e, "connect to repository") from e
        logger.info(
            "Authenticated with GitHub and connected to repository",
            extra={"repo": self._repository_name},
        )

    @property
    def repository(self) -> str:
        """Return the configured repository name ("owner/repo")."""

        return self._repository_name

    @property
    def rate_limit(self) -> RateLimit | None:
        """Last rate limit seen in a response, if any."""

        return self._rate_limit

    def _repo_url(self, *, repository: str | None = None, path: str = "") -> str:
        repo = (repository or self._repository_name).strip().strip("/")
        path = path.strip("/")
        if not path:
            return f"{self._rest_base_url}/repos/{repo}"
        return f"{self._rest_base_url}/repos/{repo}/{path}"

    def _issues_url(self, *, issue_number: int, suffix: str = "") -> str:
        if issue_number <= 0:
            raise ValueError("issue_number must be a positive integer")
        if suffix and not suffix.startswith("/"):
            suffix = "/" + suffix
        return self._repo_url(path=f"issues/{issue_number}{suffix}")

    # -- issues ---------------------------------------------------------------

    def create_issue(
        self,
        *,
        title: str,
        body: str | None,
        labels: list[str] | None,
    ) -> IssueSnapshot:
        if not title.strip():
            raise ValueError("Issue title is required")

        normalized_labels = labels or []

        def _create() -> Any:
            try:
                return self._repo.create_issue(
                    title=title, body=body or "", labels=normalized_labels
                )
            except GithubException as e:
                raise _from_github_exception(e, "create issue") from e

        self._wait_for_rate_limit()
        issue = self._with_retry(_create, operation="create issue")
        snapshot = IssueSnapshot(
            number=issue.number,
            title=issue.title,
            body=issue.body or "",
            state=getattr(issue, "state", "open") or "open",
            labels=[getattr(label, "name", str(label)) for label in (issue.labels or [])],
            html_url=getattr(issue, "html_url", None),
            created_at=getattr(issue, "created_at", None),
            updated_at=getattr(issue, "updated_at", None),
        )
        logger.info(
            "Created GitHub issue",
            extra={
                "issue_number": snapshot.number,
                "title": snapshot.title,
                "url": snapshot.html_url,
            },
        )
        return snapshot

    def get_issue(self, *, issue_number: int) -> IssueSnapshot:
        """Fetch an issue by number via REST."""

        resp = self._request(
            "GET", self._issues_url(issue_number=issue_number), operation="get issue"
        )
        return _parse_issue_json(resp.json())

    def update_issue(
        self,
        *,
        issue_number: int,
        title: str | None = None,
        body: str | None = None,
        state: str | None = None,
    ) -> IssueSnapshot:
        payload: dict[str, Any] = {}
        if title is not None:
            payload["title"] = title
        if body is not None:
            payload["body"] = body
        if state is not None:
            if state not in {"open", "closed"}:
                raise ValueError("state must be 'open' or 'closed'")
            payload["state"] = state
        if not payload:
            raise ValueError("Nothing to update")

        resp = self._request(
            "PATCH",
            self._issues_url(issue_number=issue_number),
            operation="update issue",
            json=payload,
        )
        snapshot = _parse_issue_json(resp.json())
        logger.info(
            "Updated GitHub issue",
            extra={
                "issue_number": snapshot.number,
                "fields": sorted(payload),
                "state": snapshot.state,
            },
        )
        return snapshot

    def close_issue(self, *, issue_number: int) -> IssueSnapshot:
        return self.update_issue(issue_number=issue_number, state="closed")

    def reopen_issue(self, *, issue_number: int) -> IssueSnapshot:
        return self.update_issue(issue_number=issue_number, state="open")

    def set_labels(self, *, issue_number: int, labels: list[str]) -> list[str]:
        """Replace all labels on an issue; returns the label names GitHub reports."""

        resp = self._request(
            "PUT",
            self._issues_url(issue_number=issue_number, suffix="labels"),
            operation="set issue labels",
            json={"labels": labels},
        )
        payload = resp.json()
        names = _label_names(payload if isinstance(payload, list) else [])
        logger.debug(
            "Issue labels replaced",
            extra={"issue_number": issue_number, "labels": names},
        )
        return names

    def add_comment(self, *, issue_number: int, body: str) -> str | None:
        """Comment on an issue; returns the comment URL when GitHub provides one."""

        if not body.strip():
            raise ValueError("Comment body is required")

        resp = self._request(
            "POST",
            self._issues_url(issue_number=issue_number, suffix="comments"),
            operation="create comment",
            json={"body": body},
        )
        data = resp.json()
        url = data.get("html_url") if isinstance(data, dict) else None
        return url if isinstance(url, str) and url.strip() else None

    def list_issues(
        self,
        *,
        state: str = "open",
        labels: list[str] | None = None,
    ) -> list[IssueSnapshot]:
        """List issues (pull requests are filtered out)."""

        params: dict[str, Any] = {"state": state}
        if labels:
            params["labels"] = ",".join(labels)

        items = self._get_paginated(
            self._repo_url(path="issues"), operation="list issues", params=params
        )
        return [_parse_issue_json(item) for item in items if "pull_request" not in item]

    def find_issue_by_label(self, *, label: str) -> IssueSnapshot | None:
        """Find the issue carrying a label (open or closed); lowest number wins."""

        if not label.strip():
            raise ValueError("label must be non-empty")

        issues = self.list_issues(state="all", labels=[label])
        if not issues:
            logger.debug("No issue found with label", extra={"label": label})
            return None
        return min(issues, key=lambda i: i.number)

    def find_issue_number_by_body_marker(self, *, marker: str) -> int | None:
        """Search for an issue in this repo whose body contains a marker string."""

        if not marker.strip():
            raise ValueError("marker must be non-empty")

        query = f'repo:{self._repository_name} is:issue in:body "{marker}"'
        resp = self._request(
            "GET",
            f"{self._rest_base_url}/search/issues",
            operation="search issues",
            params={"q": query},
        )
        payload = resp.json()
        items = payload.get("items") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            return None

        # Search ignores punctuation, so "adx-core/3" also hits "adx-core/3.1".
        exact = f"<!-- {marker} -->"
        numbers = [
            item["number"]
            for item in items
            if isinstance(item, dict)
            and isinstance(item.get("number"), int)
            and item["number"] > 0
            and exact in (item.get("body") or "")
        ]
        return min(numbers) if numbers else None

    # -- labels ---------------------------------------------------------------

    def ensure_labels(
        self,
        *,
        names: Iterable[str],
        label_prefix: str = DEFAULT_LABEL_PREFIX,
    ) -> list[str]:
        """Create any missing labels; returns the names that were created."""

        wanted = list(dict.fromkeys(n.strip() for n in names if n.strip()))
        if not wanted:
            return []

        existing_items = self._get_paginated(self._repo_url(path="labels"), operation="list labels")
        existing = {
            item["name"].lower()
            for item in existing_items
            if isinstance(item.get("name"), str)
        }

        created: list[str] = []
        for name in wanted:
            if name.lower() in existing:
                continue
            spec = label_spec_for(name, label_prefix=label_prefix)
            resp = self._request(
                "POST",
                self._repo_url(path="labels"),
                operation="create label",
                json={"name": spec.name, "color": spec.color, "description": spec.description},
                accept_statuses=(422,),
            )
            if resp.status_code == 422:
                if not _is_already_exists(resp):
                    raise GitHubApiError("create label", 422, _error_message(resp))
                # Created concurrently or differs only by case.
                continue
            created.append(name)

        if created:
            logger.info("Created missing labels", extra={"labels": created})
        return created

    # -- rate limit / connectivity -------------------------------------------

    def get_rate_limit(self) -> RateLimit:
        resp = self._request(
            "GET",
            f"{self._rest_base_url}/rate_limit",
            operation="get rate limit",
            check_rate_limit=False,
        )
        payload = resp.json()
        core: dict[str, Any] = {}
        if isinstance(payload, dict):
            resources = payload.get("resources")
            if isinstance(resources, dict) and isinstance(resources.get("core"), dict):
                core = resources["core"]
            elif isinstance(payload.get("rate"), dict):
                core = payload["rate"]

        self._rate_limit = RateLimit(
            limit=int(core.get("limit", 0)),
            remaining=int(core.get("remaining", 0)),
            reset=int(core.get("reset", 0)),
            used=int(core.get("used", 0)),
        )
        return self._rate_limit

    def test_connection(self) -> ConnectionCheck:
        """Check authentication, repository access and issue access."""

        try:
            user = self._request("GET", f"{self._rest_base_url}/user", operation="test connection")
            login = user.json().get("login", "unknown")
            self._request("GET", self._repo_url(), operation="test connection")
            self._request(
                "GET",
                self._repo_url(path="issues"),
                operation="test connection",
                params={"per_page": 1},
            )
        except GitHubApiError as e:
            return ConnectionCheck(success=False, message=str(e))

        return ConnectionCheck(
            success=True,
            message=f"Successfully connected to {self._repository_name} as {login}",
        )

    def close(self) -> None:
        self._session.close()
        if self._github is not None:
            self._github.close()

    # -- plumbing -------------------------------------------------------------

    def _wait_for_rate_limit(self) -> None:
        info = self._rate_limit
        if info is None or info.remaining > self._rate_limit_buffer:
            return

        wait_seconds = info.reset - time.time() + 1
        if wait_seconds <= 0:
            return

        logger.warning(
            "Rate limit approaching, waiting for reset",
            extra={
                "remaining": info.remaining,
                "reset": info.reset,
                "wait_seconds": round(wait_seconds, 1),
            },
        )
        self._sleep(wait_seconds)
        self._rate_limit = None

    def _record_rate_limit(self, resp: requests.Response) -> None:
        headers = getattr(resp, "headers", None) or {}
        resource = headers.get("X-RateLimit-Resource")
        if resource is not None and resource != "core":
            # Only the core quota gates requests.
            return
        try:
            remaining = int(headers["X-RateLimit-Remaining"])
            reset = int(headers["X-RateLimit-Reset"])
        except (KeyError, TypeError, ValueError):
            return
        self._rate_limit = RateLimit(
            limit=_int_or(headers.get("X-RateLimit-Limit"), 0),
            remaining=remaining,
            reset=reset,
            used=_int_or(headers.get("X-RateLimit-Used"), 0),
        )

    def _with_retry(self, fn: Callable[[], Any], *, operation: str) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except GitHubApiError as e:
                if not e.retryable or attempt > self._max_retries:
                    raise
                delay = self._retry_delay_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "GitHub call failed, retrying",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_retries": self._max_retries,
                        "delay_seconds": delay,
                        "error": str(e),
                    },
                )
                self._sleep(delay)

    def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        accept_statuses: tuple[int, ...] = (),
        check_rate_limit: bool = True,
    ) -> requests.Response:
        def _send() -> requests.Response:
            if check_rate_limit:
                self._wait_for_rate_limit()
            try:
                resp = self._session.request(
                    method, url, params=params, json=json, timeout=_TIMEOUT_SECONDS
                )
            except requests.RequestException as e:
                raise GitHubApiError(operation, None, str(e)) from e

            self._record_rate_limit(resp)
            if resp.status_code in accept_statuses or resp.status_code < 400:
                return resp
            raise GitHubApiError(operation, resp.status_code, _error_message(resp))

        return self._with_retry(_send, operation=operation)

    def _get_paginated(
        self,
        url: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch a list endpoint page by page (up to 10 pages of 100 items)."""

        items: list[dict[str, Any]] = []
        for page in range(1, _MAX_PAGES + 1):
            page_params = {**(params or {}), "per_page": _PER_PAGE, "page": page}
            resp = self._request("GET", url, operation=operation, params=page_params)
            payload = resp.json()
            if not isinstance(payload, list):
                break

            items.extend(p for p in payload if isinstance(p, dict))
            if len(payload) < _PER_PAGE:
                break
        return items


def _int_or(value: object, default: int) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _parse_datetime(value: object) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    # GitHub commonly returns timestamps like "2025-01-01T00:00:00Z".
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _label_names(raw: list[Any]) -> list[str]:
    names: list[str] = []
    for label in raw:
        if isinstance(label, str):
            names.append(label)
        elif isinstance(label, dict) and isinstance(label.get("name"), str):
            names.append(label["name"])
    return names


def _parse_issue_json(data: Any) -> IssueSnapshot:
    if not isinstance(data, dict):
        raise ValueError("Invalid issue response: expected an object")

    number = data.get("number")
    if not isinstance(number, int) or number <= 0:
        raise ValueError("Invalid issue response: missing number")

    title = data.get("title")
    body = data.get("body")
    state = data.get("state")
    labels = data.get("labels")
    html_url = data.get("html_url")

    return IssueSnapshot(
        number=number,
        title=title if isinstance(title, str) else "",
        body=body if isinstance(body, str) else "",
        state=state if isinstance(state, str) else "",
        labels=_label_names(labels if isinstance(labels, list) else []),
        html_url=html_url if isinstance(html_url, str) and html_url.strip() else None,
        created_at=_parse_datetime(data.get("created_at")),
        updated_at=_parse_datetime(data.get("updated_at")),
    )


def _error_message(resp: requests.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
        return payload["message"]
    text = getattr(resp, "text", "") or ""
    return text[:200] or (getattr(resp, "reason", "") or "Unknown error")


def _is_already_exists(resp: requests.Response) -> bool:
    try:
        payload = resp.json()
    except ValueError:
        return False
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if not isinstance(errors, list):
        return False
    return any(isinstance(e, dict) and e.get("code") == "already_exists" for e in errors)


def _from_github_exception(e: GithubException, operation: str) -> GitHubApiError:
    data = e.data if isinstance(e.data, dict) else {}
    message = data.get("message") if isinstance(data.get("message"), str) else str(e)
    return GitHubApiError(operation, e.status, message)
