from gitlab_exporter.gitlab.client import (
    Commit,
    GitLabClient,
    MergeRequest,
    Page,
    Project,
    iter_pages,
)

__all__ = ["Commit", "GitLabClient", "MergeRequest", "Page", "Project", "iter_pages"]
