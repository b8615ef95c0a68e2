"""
Thin GitLab REST v4 client on top of httpx.

Only the three listings the collectors need: projects (with statistics),
merge requests and commits. One instance is built at startup and shared
by every collector -- httpx.Client pools connections and is safe to use
from multiple threads.

Pagination metadata comes from the X-Total-Pages / X-Total / X-Next-Page
headers GitLab attaches to every list response.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, TypeVar

import httpx

from gitlab_exporter.exceptions import ConfigError, RemoteFetchError

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 30.0


def parse_time(value: Optional[str]) -> Optional[datetime]:
    """GitLab timestamps look like 2024-05-01T10:00:00.000Z. Always returns UTC-aware."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


@dataclass(frozen=True)
class Project:
    id: int
    name: str
    path: str
    repository_size: int = 0

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Project":
        stats = data.get("statistics") or {}
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            path=data.get("path", ""),
            repository_size=int(stats.get("repository_size") or 0),
        )


@dataclass(frozen=True)
class MergeRequest:
    iid: int
    state: str
    created_at: datetime
    merged_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "MergeRequest":
        return cls(
            iid=int(data.get("iid", 0)),
            state=data.get("state", ""),
            created_at=parse_time(data["created_at"]),
            merged_at=parse_time(data.get("merged_at")),
            closed_at=parse_time(data.get("closed_at")),
        )


@dataclass(frozen=True)
class Commit:
    id: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Commit":
        return cls(id=data.get("id", ""), created_at=parse_time(data.get("created_at")))


@dataclass
class Page(Generic[T]):
    """One page of a list endpoint plus the pagination headers."""

    items: List[T] = field(default_factory=list)
    page: int = 1
    total_pages: int = 1
    total_items: int = 0
    next_page: Optional[int] = None
    # False when GitLab left out X-Total-Pages (it does on large listings)
    totals_known: bool = True


def _int_header(headers: httpx.Headers, name: str) -> Optional[int]:
    raw = headers.get(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class GitLabClient:

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not base_url or not token:
            raise ConfigError("GitLab client requires both a token and a URL")

        self._base_url = base_url.rstrip("/")
        if not self._base_url.endswith("/api/v4"):
            self._base_url += "/api/v4"

        self._client = httpx.Client(
            base_url=self._base_url,
            headers={"PRIVATE-TOKEN": token},
            timeout=timeout_seconds,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_page(
        self,
        path: str,
        params: Dict[str, Any],
        parse: Callable[[Dict[str, Any]], T],
    ) -> Page[T]:
        try:
            response = self._client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteFetchError(
                f"GET {path} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise RemoteFetchError(f"GET {path} failed: {e}") from e

        page = int(params.get("page", 1))
        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteFetchError(f"GET {path} returned invalid JSON: {e}") from e
        if not isinstance(payload, list):
            raise RemoteFetchError(f"GET {path} returned a {type(payload).__name__}, expected a list")
        try:
            items = [parse(item) for item in payload]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise RemoteFetchError(f"GET {path} returned an unexpected body: {e}") from e
        total_pages = _int_header(response.headers, "X-Total-Pages")
        total_items = _int_header(response.headers, "X-Total")

        return Page(
            items=items,
            page=page,
            # Large listings drop the totals; fall back to what we can see
            total_pages=total_pages if total_pages is not None else page,
            total_items=total_items if total_items is not None else len(items),
            next_page=_int_header(response.headers, "X-Next-Page"),
            totals_known=total_pages is not None,
        )

    def list_projects(
        self, page: int = 1, per_page: int = 50, statistics: bool = True
    ) -> Page[Project]:
        params: Dict[str, Any] = {"page": page, "per_page": per_page}
        if statistics:
            params["statistics"] = "true"
        return self._get_page("/projects", params, Project.from_json)

    def list_merge_requests(
        self,
        project_id: int,
        created_after: datetime,
        page: int = 1,
        per_page: int = 100,
        scope: str = "all",
    ) -> Page[MergeRequest]:
        params = {
            "created_after": _format_time(created_after),
            "scope": scope,
            "page": page,
            "per_page": per_page,
        }
        return self._get_page(
            f"/projects/{project_id}/merge_requests", params, MergeRequest.from_json
        )

    def list_commits(
        self,
        project_id: int,
        since: datetime,
        until: datetime,
        page: int = 1,
        per_page: int = 100,
    ) -> Page[Commit]:
        params = {
            "since": _format_time(since),
            "until": _format_time(until),
            "page": page,
            "per_page": per_page,
        }
        return self._get_page(
            f"/projects/{project_id}/repository/commits", params, Commit.from_json
        )

    def close(self):
        self._client.close()


def iter_pages(fetch: Callable[..., Page[T]], start: int = 1, **kwargs) -> Iterator[T]:
    """Walk every page of a listing in order, following X-Next-Page.

    `fetch` is one of the client's list_* methods; kwargs are passed
    through with `page` advanced on each call, beginning at `start`.
    """
    page = start
    while True:
        result = fetch(page=page, **kwargs)
        yield from result.items

        if result.next_page:
            page = result.next_page
        elif page < result.total_pages:
            page += 1
        else:
            return
