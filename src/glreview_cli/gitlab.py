"""GitLab REST client - the single gateway for outbound API calls.

Tracks rate-limit headers on every response, maps HTTP failures to a small
error taxonomy, and fetches many resources in throttled concurrent batches
where one failure never sinks its siblings.
"""

from __future__ import annotations

import asyncio
import base64
import dataclasses
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar
from urllib.parse import quote

import httpx

from .config import DEFAULT_GITLAB_URL
from .logging import get_logger

logger = get_logger("gitlab")

T = TypeVar("T")
R = TypeVar("R")

REQUEST_TIMEOUT = 30
DIFF_UNAVAILABLE = "Unable to retrieve diff data"


# --- Errors ---


class GitLabError(Exception):
    """Base error for GitLab API failures."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(GitLabError):
    """Transport failure, no response received."""


class AuthError(GitLabError):
    """401 from the API, or no token in the session."""

    def __init__(self, message: str, status_code: int | None = 401, session_cleared: bool = False):
        super().__init__(message, status_code)
        self.session_cleared = session_cleared


class RateLimitError(GitLabError):
    """429 from the API. Retrying is the caller's decision."""

    def __init__(
        self,
        message: str = "GitLab API rate limit exceeded",
        reset_time: datetime | None = None,
        retry_after: int | None = None,
    ):
        super().__init__(message, 429)
        self.reset_time = reset_time
        self.retry_after = retry_after


class NotFoundError(GitLabError):
    """404 from the API."""


class ValidationError(GitLabError):
    """4xx other than 401/404/429, or a request that failed local validation."""


class BranchNotFoundError(ValidationError):
    """A branch referenced by a merge request does not exist."""

    def __init__(self, branch: str, role: str = "Source"):
        super().__init__(f"{role} branch '{branch}' does not exist")
        self.branch = branch
        self.role = role


class ServerError(GitLabError):
    """5xx from the API."""


class OperationCancelled(Exception):
    """The caller's cancel event was set while work was in flight."""


# --- State ---


@dataclass
class GitLabSession:
    """Connection details for one GitLab instance."""

    url: str = DEFAULT_GITLAB_URL
    token: str | None = None

    @property
    def base_url(self) -> str:
        return f"{self.url.rstrip('/')}/api/v4"

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def clear_token(self) -> None:
        self.token = None


@dataclass
class RateLimitState:
    """Most recent quota headers observed from GitLab."""

    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset: Optional[datetime] = None
    observed: Optional[datetime] = None


@dataclass
class BatchOutcome:
    """Result of one item in a batch fetch."""

    item: Any
    success: bool
    value: Any = None
    error: Optional[Exception] = None

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error else ""


def _header(headers: httpx.Headers, name: str) -> str | None:
    # GitLab has used both naming conventions across versions
    return headers.get(f"ratelimit-{name}") or headers.get(f"x-ratelimit-{name}")


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _epoch_to_datetime(value: str | None) -> datetime | None:
    seconds = _parse_int(value)
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if message:
            return message if isinstance(message, str) else str(message)
    return f"GitLab returned {response.status_code}: {response.text[:200]}"


def _encode(value: Any) -> str:
    return quote(str(value), safe="")


def changes_to_diff(changes: list[dict[str, Any]]) -> str:
    """Rebuild unified-diff text from a merge request's `changes` payload."""
    sections = []
    for change in changes:
        old_path = change.get("old_path") or change.get("new_path")
        new_path = change.get("new_path") or change.get("old_path")
        section = f"diff --git a/{old_path} b/{new_path}\n"

        if change.get("new_file"):
            section += "new file mode 100644\n"
            section += f"index 0000000..{change.get('new_path')}\n"
        elif change.get("deleted_file"):
            section += "deleted file mode 100644\n"
            section += f"index {change.get('old_path')}..0000000\n"
        elif change.get("renamed_file"):
            section += "similarity index 100%\n"
            section += f"rename from {change.get('old_path')}\n"
            section += f"rename to {change.get('new_path')}\n"

        section += f"--- a/{old_path}\n"
        section += f"+++ b/{new_path}\n"
        section += change.get("diff") or ""
        sections.append(section)
    return "\n\n".join(sections)


class GitLabClient:
    """Async client for the GitLab v4 REST API.

    One instance per session. It owns the rate-limit state; everything else
    reads it through `rate_limit`.
    """

    def __init__(
        self,
        session: GitLabSession,
        *,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        on_unauthorized: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session = session
        self.timeout = timeout
        self.on_unauthorized = on_unauthorized
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self._client_key: tuple[str, str | None] | None = None
        self._rate_limit = RateLimitState()
        self.gitlab_version: str | None = None

    async def __aenter__(self) -> "GitLabClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._client_key = None

    async def _get_client(self) -> httpx.AsyncClient:
        if not self.session.is_authenticated:
            raise AuthError("Not authenticated: no GitLab token configured")

        key = (self.session.base_url, self.session.token)
        if self._client is None or self._client_key != key:
            # Swap before awaiting so concurrent callers see the new client
            stale = self._client
            self._client = httpx.AsyncClient(
                base_url=self.session.base_url,
                headers={
                    "PRIVATE-TOKEN": self.session.token or "",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
            self._client_key = key
            if stale is not None:
                await stale.aclose()
        return self._client

    # --- Core call ---

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        propagate_401: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> httpx.Response:
        """Send one request and translate failures into GitLabError subclasses."""
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"{method} {path} cancelled before sending")

        client = await self._get_client()
        try:
            response = await client.request(method, path, params=params, json=json, headers=headers)
        except httpx.TransportError as e:
            raise NetworkError(f"Network error calling GitLab {method} {path}: {e}") from e

        self._update_rate_limit(response.headers)

        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"{method} {path} cancelled")

        if response.is_success:
            return response

        status = response.status_code
        if status == 401:
            if propagate_401:
                raise AuthError(_error_message(response))
            logger.warning("GitLab rejected the token; clearing session")
            self.session.clear_token()
            if self.on_unauthorized:
                self.on_unauthorized()
            raise AuthError(_error_message(response), session_cleared=True)
        if status == 429:
            raise RateLimitError(
                reset_time=_epoch_to_datetime(_header(response.headers, "reset")),
                retry_after=_parse_int(response.headers.get("retry-after")),
            )
        if status == 404:
            raise NotFoundError(_error_message(response), status)
        if 400 <= status < 500:
            raise ValidationError(_error_message(response), status)
        raise ServerError(_error_message(response), status)

    async def _get_json(self, path: str, **kwargs: Any) -> Any:
        response = await self.request("GET", path, **kwargs)
        return response.json()

    async def _post_json(self, path: str, payload: Any, **kwargs: Any) -> Any:
        response = await self.request("POST", path, json=payload, **kwargs)
        return response.json()

    async def _get_paginated(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        max_pages: int = 50,
        cancel: asyncio.Event | None = None,
    ) -> list[Any]:
        """Follow `x-next-page` until exhausted or `max_pages` is reached."""
        params = dict(params or {})
        items: list[Any] = []
        page = 1
        for _ in range(max_pages):
            params["page"] = page
            response = await self.request("GET", path, params=params, cancel=cancel)
            items.extend(response.json())
            next_page = _parse_int(response.headers.get("x-next-page"))
            if not next_page:
                break
            page = next_page
        return items

    # --- Rate limiting ---

    def _update_rate_limit(self, headers: httpx.Headers) -> None:
        limit = _parse_int(_header(headers, "limit"))
        remaining = _parse_int(_header(headers, "remaining"))
        reset = _epoch_to_datetime(_header(headers, "reset"))
        if limit is None and remaining is None and reset is None:
            return

        if limit is not None:
            self._rate_limit.limit = limit
        if remaining is not None:
            self._rate_limit.remaining = remaining
        if reset is not None:
            self._rate_limit.reset = reset
        self._rate_limit.observed = datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    @property
    def rate_limit(self) -> RateLimitState:
        return dataclasses.replace(self._rate_limit)

    def is_approaching_limit(self, threshold: float = 0.1) -> bool:
        """True when the remaining share of the quota is at or below threshold."""
        limit, remaining = self._rate_limit.limit, self._rate_limit.remaining
        if limit is None or remaining is None or limit <= 0:
            return False
        return remaining / limit <= threshold

    async def wait_for_limit(self) -> float:
        """Sleep until the quota resets if it is exhausted. Returns seconds waited."""
        state = self._rate_limit
        if state.remaining != 0 or state.reset is None:
            return 0.0
        wait = state.reset.timestamp() - self._clock()
        if wait <= 0:
            return 0.0
        logger.warning("Rate limit exceeded. Waiting %d seconds...", int(wait + 0.999))
        await self._sleep(wait)
        return wait

    # --- Batching ---

    async def fetch_batch(
        self,
        items: Iterable[T],
        fetch_one: Callable[[T], Awaitable[R]],
        *,
        batch_size: int = 5,
        delay: float = 0.2,
        cancel: asyncio.Event | None = None,
    ) -> list[BatchOutcome]:
        """Run `fetch_one` over items in concurrent groups of `batch_size`.

        Groups run one after another with `delay` seconds between them.
        Every item gets a BatchOutcome, successful or not.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        items = list(items)
        outcomes: list[BatchOutcome] = []

        async def run(item: T) -> BatchOutcome:
            try:
                return BatchOutcome(item=item, success=True, value=await fetch_one(item))
            except Exception as e:
                logger.debug("Batch item %r failed: %s", item, e)
                return BatchOutcome(item=item, success=False, error=e)

        for start in range(0, len(items), batch_size):
            if cancel is not None and cancel.is_set():
                raise OperationCancelled("Batch fetch cancelled")

            group = items[start:start + batch_size]
            outcomes.extend(await asyncio.gather(*(run(item) for item in group)))

            if cancel is not None and cancel.is_set():
                raise OperationCancelled("Batch fetch cancelled")
            if start + batch_size < len(items):
                await self._sleep(delay)

        return outcomes

    # --- Users & projects ---

    async def get_current_user(self) -> dict[str, Any]:
        return await self._get_json("/user")

    async def get_projects(self, **params: Any) -> list[dict[str, Any]]:
        query = {
            "membership": True,
            "order_by": "last_activity_at",
            "sort": "desc",
            "per_page": 100,
            **params,
        }
        return await self._get_json("/projects", params=query)

    async def get_project(self, project_id: int | str, *, cancel: asyncio.Event | None = None) -> dict[str, Any]:
        return await self._get_json(f"/projects/{_encode(project_id)}", cancel=cancel)

    # --- Merge requests ---

    async def get_merge_requests(
        self,
        *,
        scope: str = "all",
        state: str = "opened",
        order_by: str = "updated_at",
        search: str | None = None,
        labels: list[str] | None = None,
        author: str | None = None,
        assignee: str | None = None,
        milestone: str | None = None,
        wip: str | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {
            "scope": scope,
            "state": state,
            "order_by": order_by,
            "sort": "desc",
            "per_page": 100,
        }
        if search:
            params["search"] = search
        if labels:
            params["labels"] = ",".join(labels)
        if author:
            params["author_username"] = author
        if assignee:
            params["assignee_username"] = assignee
        if milestone:
            params["milestone"] = milestone
        if wip in ("yes", "no"):
            params["wip"] = wip
        return await self._get_json("/merge_requests", params=params)

    async def get_project_merge_requests(self, project_id: int | str, **params: Any) -> list[dict[str, Any]]:
        query = {"state": "opened", "order_by": "updated_at", "sort": "desc", "per_page": 100, **params}
        return await self._get_json(f"/projects/{_encode(project_id)}/merge_requests", params=query)

    async def get_merge_request(self, project_id: int | str, mr_iid: int) -> dict[str, Any]:
        return await self._get_json(f"/projects/{_encode(project_id)}/merge_requests/{mr_iid}")

    async def create_merge_request(
        self,
        project_id: int | str,
        source_branch: str,
        target_branch: str,
        title: str,
        *,
        description: str | None = None,
        validate_branches: bool = True,
        **extra: Any,
    ) -> dict[str, Any]:
        """Open a merge request, checking first that both branches exist."""
        if validate_branches:
            names = {b["name"] for b in await self.get_branches(project_id)}
            if source_branch not in names:
                raise BranchNotFoundError(source_branch, "Source")
            if target_branch not in names:
                raise BranchNotFoundError(target_branch, "Target")

        payload: dict[str, Any] = {
            "source_branch": source_branch,
            "target_branch": target_branch,
            "title": title,
            **extra,
        }
        if description:
            payload["description"] = description
        return await self._post_json(f"/projects/{_encode(project_id)}/merge_requests", payload)

    async def get_merge_request_changes(self, project_id: int | str, mr_iid: int) -> dict[str, Any]:
        return await self._get_json(f"/projects/{_encode(project_id)}/merge_requests/{mr_iid}/changes")

    async def get_merge_request_diff(self, project_id: int | str, mr_iid: int) -> str:
        """Raw diff text, rebuilt from the changes endpoint if the raw one fails."""
        try:
            response = await self.request(
                "GET",
                f"/projects/{_encode(project_id)}/merge_requests/{mr_iid}/raw_diffs",
                headers={"Accept": "text/plain"},
            )
            return response.text
        except (NotFoundError, ValidationError, ServerError) as e:
            logger.warning("Failed to get plain diff, trying changes format: %s", e)

        try:
            data = await self.get_merge_request_changes(project_id, mr_iid)
        except (NotFoundError, ValidationError, ServerError) as e:
            logger.error("Failed to get changes as fallback: %s", e)
            return DIFF_UNAVAILABLE

        changes = data.get("changes") or []
        if not changes:
            return DIFF_UNAVAILABLE
        return changes_to_diff(changes)

    async def create_merge_request_note(self, project_id: int | str, mr_iid: int, body: str) -> dict[str, Any]:
        return await self._post_json(
            f"/projects/{_encode(project_id)}/merge_requests/{mr_iid}/notes",
            {"body": body},
        )

    async def get_merge_request_notes(self, project_id: int | str, mr_iid: int) -> list[dict[str, Any]]:
        return await self._get_json(
            f"/projects/{_encode(project_id)}/merge_requests/{mr_iid}/notes",
            params={"sort": "desc", "order_by": "created_at"},
        )

    # --- Branches ---

    async def get_branches(self, project_id: int | str) -> list[dict[str, Any]]:
        return await self._get_paginated(
            f"/projects/{_encode(project_id)}/repository/branches",
            {"per_page": 100},
        )

    async def create_branch(
        self,
        project_id: int | str,
        branch: str,
        ref: str,
        *,
        propagate_401: bool = False,
    ) -> dict[str, Any]:
        return await self._post_json(
            f"/projects/{_encode(project_id)}/repository/branches",
            {"branch": branch, "ref": ref},
            propagate_401=propagate_401,
        )

    # --- Repository content ---

    async def get_repository_tree(
        self,
        project_id: int | str,
        ref: str = "main",
        recursive: bool = True,
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[dict[str, Any]]:
        return await self._get_paginated(
            f"/projects/{_encode(project_id)}/repository/tree",
            {"ref": ref, "recursive": recursive, "per_page": 100},
            cancel=cancel,
        )

    async def get_file_content(
        self,
        project_id: int | str,
        file_path: str,
        ref: str = "main",
        *,
        cancel: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        """File metadata with `content` base64-decoded to text."""
        data = await self._get_json(
            f"/projects/{_encode(project_id)}/repository/files/{_encode(file_path)}",
            params={"ref": ref},
            cancel=cancel,
        )
        raw = data.get("content") or ""
        if data.get("encoding", "base64") == "base64":
            data["content"] = base64.b64decode(raw).decode("utf-8", errors="replace")
        return data

    async def get_file_content_batch(
        self,
        project_id: int | str,
        file_paths: list[str],
        ref: str = "main",
        *,
        batch_size: int = 5,
        delay: float = 0.2,
        cancel: asyncio.Event | None = None,
    ) -> list[BatchOutcome]:
        return await self.fetch_batch(
            file_paths,
            lambda path: self.get_file_content(project_id, path, ref, cancel=cancel),
            batch_size=batch_size,
            delay=delay,
            cancel=cancel,
        )

    async def get_repository_languages(
        self, project_id: int | str, *, cancel: asyncio.Event | None = None
    ) -> dict[str, float]:
        return await self._get_json(f"/projects/{_encode(project_id)}/languages", cancel=cancel)

    async def get_repository_size(self, project_id: int | str) -> dict[str, Any]:
        return await self._get_json(f"/projects/{_encode(project_id)}/statistics")

    # --- Instance ---

    async def check_version(self) -> dict[str, Any]:
        try:
            data = await self._get_json("/version")
        except (NotFoundError, ValidationError, ServerError):
            self.gitlab_version = "unknown"
            return {"version": "unknown", "revision": "unknown"}
        self.gitlab_version = data.get("version")
        return data

    async def test_connection(self) -> dict[str, Any]:
        try:
            await self.get_current_user()
            return {"success": True}
        except GitLabError as e:
            return {"success": False, "error": str(e)}
