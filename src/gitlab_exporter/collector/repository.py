"""
Repository collector: size, merge-request and commit activity per project.

One update() run looks like this:

  1. fetch page 1 of /projects to learn the page count (fails the run)
  2. fetch pages 2..N in parallel, a bad page just contributes nothing
     (when GitLab omits the page count, follow X-Next-Page sequentially)
  3. join the pages into one project list
  4. per project, in parallel: emit size straight away, then fetch MRs
     and commits side by side and emit the four activity counters
  5. return once every project is done

All projects in a run share one TimeWindow so "last hour" means the
same thing for every counter.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Tuple

from gitlab_exporter.collector.base import (
    DEFAULT_MAX_WORKERS,
    DEFAULT_PROJECTS_PER_PAGE,
    Collector,
    CollectorSettings,
)
from gitlab_exporter.collector.registry import register_collector
from gitlab_exporter.collector.sink import MetricSink
from gitlab_exporter.exceptions import RemoteFetchError
from gitlab_exporter.gitlab.client import GitLabClient, MergeRequest, Project, iter_pages
from gitlab_exporter.metrics import NAMESPACE, Desc, TimeWindow, build_fq_name, gauge

PROJECT_LABELS = ("id", "name", "path")
ACTIVITY_PER_PAGE = 100

PROJECT_SIZE = Desc(
    build_fq_name(NAMESPACE, "project", "size_bytes"),
    "Size of the GitLab project repository in bytes",
    PROJECT_LABELS,
)
CREATED_MERGE_REQUESTS = Desc(
    build_fq_name(NAMESPACE, "project", "created_merge_requests_last_hour_total"),
    "Number of merge requests created in the last hour in the GitLab project",
    PROJECT_LABELS,
)
MERGED_MERGE_REQUESTS = Desc(
    build_fq_name(NAMESPACE, "project", "merged_merge_requests_last_hour_total"),
    "Number of merge requests merged in the last hour in the GitLab project",
    PROJECT_LABELS,
)
CLOSED_MERGE_REQUESTS = Desc(
    build_fq_name(NAMESPACE, "project", "closed_merge_requests_last_hour_total"),
    "Number of merge requests closed in the last hour in the GitLab project",
    PROJECT_LABELS,
)
COMMITS = Desc(
    build_fq_name(NAMESPACE, "project", "commits_last_hour_total"),
    "Number of commits pushed in the last hour in the GitLab project",
    PROJECT_LABELS,
)


def classify_merge_requests(
    merge_requests: Iterable[MergeRequest], window: TimeWindow
) -> Tuple[int, int, int]:
    """Count (created, merged, closed) inside the window.

    Created is independent of the other two: an MR opened and merged in
    the same hour shows up in both counters.
    """
    created = merged = closed = 0
    for mr in merge_requests:
        if window.after_start(mr.created_at):
            created += 1
        if window.after_start(mr.merged_at):
            merged += 1
        if window.after_start(mr.closed_at):
            closed += 1
    return created, merged, closed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepositoryCollector(Collector):

    def __init__(
        self,
        logger: logging.Logger,
        client: GitLabClient,
        max_workers: int = DEFAULT_MAX_WORKERS,
        per_page: int = DEFAULT_PROJECTS_PER_PAGE,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._log = logger
        self._client = client
        self._max_workers = max(1, max_workers)
        self._per_page = per_page
        self._clock = clock

    def update(self, sink: MetricSink) -> None:
        window = TimeWindow.last_hour(now=self._clock())

        # Leaf fetches never wait on other tasks; project tasks wait on leaf
        # fetches only. Keeping them in separate pools means no cyclic wait.
        with ThreadPoolExecutor(self._max_workers, thread_name_prefix="gitlab-fetch") as fetch_pool, \
                ThreadPoolExecutor(self._max_workers, thread_name_prefix="gitlab-project") as project_pool:
            projects = self._fetch_projects(fetch_pool)
            self._log.debug("Fetched %d projects", len(projects))

            futures = {
                project_pool.submit(self._process_project, project, window, sink, fetch_pool): project
                for project in projects
            }
            wait(futures)

        for future, project in futures.items():
            exc = future.exception()
            if exc is not None:
                self._log.error("Processing project %s (ID: %d) failed: %s", project.name, project.id, exc)

    def _fetch_projects(self, pool: ThreadPoolExecutor) -> List[Project]:
        try:
            first = self._client.list_projects(page=1, per_page=self._per_page, statistics=True)
        except RemoteFetchError as e:
            raise RemoteFetchError(f"failed to get initial project list: {e}", e.status_code) from e

        projects: List[Project] = list(first.items)

        if not first.totals_known:
            # No page count to fan out over; follow X-Next-Page one page at a time
            if first.next_page:
                self._walk_projects(first.next_page, projects)
            return projects

        page_futures: List[Tuple[int, Future]] = [
            (page, pool.submit(self._client.list_projects, page=page, per_page=self._per_page, statistics=True))
            for page in range(2, first.total_pages + 1)
        ]
        wait([future for _, future in page_futures])

        for page, future in page_futures:
            try:
                projects.extend(future.result().items)
            except RemoteFetchError as e:
                self._log.error("Failed to fetch page %d: %s", page, e)

        return projects

    def _walk_projects(self, start: int, projects: List[Project]) -> None:
        """Append pages from `start` onwards; a failed page ends the walk."""
        pages = iter_pages(
            self._client.list_projects, start=start, per_page=self._per_page, statistics=True
        )
        try:
            for project in pages:
                projects.append(project)
        except RemoteFetchError as e:
            self._log.error("Failed to walk project pages from %d, keeping %d projects: %s",
                            start, len(projects), e)

    def _process_project(
        self,
        project: Project,
        window: TimeWindow,
        sink: MetricSink,
        fetch_pool: ThreadPoolExecutor,
    ) -> None:
        labels = (str(project.id), project.name, project.path)
        self._log.info("Processing project: %s (ID: %d)", project.name, project.id)

        sink.put(gauge(PROJECT_SIZE, project.repository_size, *labels))

        mr_future = fetch_pool.submit(self._count_merge_requests, project, window)
        commit_future = fetch_pool.submit(self._count_commits, project, window)
        wait([mr_future, commit_future])

        created = merged = closed = commits = 0
        try:
            created, merged, closed = mr_future.result()
        except RemoteFetchError as e:
            self._log.error("Failed to fetch merge requests for project %s: %s", project.name, e)
        try:
            commits = commit_future.result()
        except RemoteFetchError as e:
            self._log.error("Failed to fetch commits for project %s: %s", project.name, e)

        sink.put(gauge(CREATED_MERGE_REQUESTS, created, *labels))
        sink.put(gauge(MERGED_MERGE_REQUESTS, merged, *labels))
        sink.put(gauge(CLOSED_MERGE_REQUESTS, closed, *labels))
        sink.put(gauge(COMMITS, commits, *labels))

    def _count_merge_requests(self, project: Project, window: TimeWindow) -> Tuple[int, int, int]:
        merge_requests = iter_pages(
            self._client.list_merge_requests,
            project_id=project.id,
            created_after=window.start,
            per_page=ACTIVITY_PER_PAGE,
        )
        return classify_merge_requests(merge_requests, window)

    def _count_commits(self, project: Project, window: TimeWindow) -> int:
        commits = iter_pages(
            self._client.list_commits,
            project_id=project.id,
            since=window.start,
            until=window.end,
            per_page=ACTIVITY_PER_PAGE,
        )
        return sum(1 for _ in commits)


def new_repository_collector(
    logger: logging.Logger, client: GitLabClient, settings: CollectorSettings
) -> Collector:
    return RepositoryCollector(
        logger,
        client,
        max_workers=settings.max_workers,
        per_page=settings.projects_per_page,
    )


register_collector("repository", True, new_repository_collector)
