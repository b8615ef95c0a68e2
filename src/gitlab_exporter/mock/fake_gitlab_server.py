"""
Fake GitLab REST API for running the exporter without a real instance.

    python -m gitlab_exporter.mock.fake_gitlab_server
    GITLAB_URL=http://localhost:9180 GITLAB_TOKEN=x gitlab-exporter

Serves the three listings the repository collector uses, with GitLab's
pagination headers. Tests build a FakeGitLab by hand and can mark
project pages as failing to exercise partial results.
"""

from __future__ import annotations

import json
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, List, Set
from urllib.parse import parse_qs, urlsplit


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


@dataclass
class FakeGitLab:
    projects: List[Dict[str, Any]] = field(default_factory=list)
    merge_requests: Dict[int, List[Dict[str, Any]]] = field(default_factory=dict)
    commits: Dict[int, List[Dict[str, Any]]] = field(default_factory=dict)
    failing_project_pages: Set[int] = field(default_factory=set)
    token: str = "test-token"

    def add_project(self, project_id: int, name: str, repository_size: int = 0) -> Dict[str, Any]:
        project = {
            "id": project_id,
            "name": name,
            "path": name.lower().replace(" ", "-"),
            "statistics": {"repository_size": repository_size},
        }
        self.projects.append(project)
        return project

    def add_merge_request(self, project_id: int, created_at: datetime, merged_at=None, closed_at=None):
        mrs = self.merge_requests.setdefault(project_id, [])
        state = "merged" if merged_at else "closed" if closed_at else "opened"
        mrs.append({
            "iid": len(mrs) + 1,
            "state": state,
            "created_at": _iso(created_at),
            "merged_at": _iso(merged_at) if merged_at else None,
            "closed_at": _iso(closed_at) if closed_at else None,
        })

    def add_commit(self, project_id: int, created_at: datetime):
        commits = self.commits.setdefault(project_id, [])
        commits.append({"id": f"{project_id:04x}{len(commits):036x}", "created_at": _iso(created_at)})


def generate_fake_gitlab(project_count: int = 120, seed: int = 42) -> FakeGitLab:
    """Random-but-believable activity for local runs."""
    rng = random.Random(seed)
    now = datetime.now(timezone.utc)
    gitlab = FakeGitLab()

    for project_id in range(1, project_count + 1):
        gitlab.add_project(project_id, f"service-{project_id}", rng.randint(10_000, 500_000_000))
        for _ in range(rng.randint(0, 6)):
            created = now - timedelta(minutes=rng.randint(1, 59))
            roll = rng.random()
            merged = created + (now - created) / 2 if roll > 0.6 else None
            closed = created + (now - created) / 3 if 0.4 < roll <= 0.6 else None
            gitlab.add_merge_request(project_id, created, merged, closed)
        for _ in range(rng.randint(0, 25)):
            gitlab.add_commit(project_id, now - timedelta(minutes=rng.randint(1, 59)))

    return gitlab


def _paginate(items: List[Any], query: Dict[str, List[str]]):
    page = int(query.get("page", ["1"])[0])
    per_page = int(query.get("per_page", ["20"])[0])
    total_pages = max(1, -(-len(items) // per_page))
    start = (page - 1) * per_page
    headers = {
        "X-Page": str(page),
        "X-Per-Page": str(per_page),
        "X-Total": str(len(items)),
        "X-Total-Pages": str(total_pages),
        "X-Next-Page": str(page + 1) if page < total_pages else "",
    }
    return items[start:start + per_page], page, headers


def _filter_after(items: List[Dict[str, Any]], key: str, after: str, until: str = "") -> List[Dict[str, Any]]:
    lower = datetime.fromisoformat(after) if after else None
    upper = datetime.fromisoformat(until) if until else None
    selected = []
    for item in items:
        moment = datetime.fromisoformat(item[key].replace("Z", "+00:00"))
        if lower and moment <= lower:
            continue
        if upper and moment > upper:
            continue
        selected.append(item)
    return selected


class _GitLabHandler(BaseHTTPRequestHandler):
    server: "FakeGitLabServer"

    def do_GET(self):
        gitlab = self.server.gitlab
        parts = urlsplit(self.path)
        query = parse_qs(parts.query)
        segments = [s for s in parts.path.split("/") if s]

        if self.headers.get("PRIVATE-TOKEN") != gitlab.token:
            self._send(401, {"message": "401 Unauthorized"})
            return

        if segments[:2] != ["api", "v4"] or len(segments) < 3 or segments[2] != "projects":
            self._send(404, {"message": "404 Not Found"})
            return

        if len(segments) == 3:
            items, page, headers = _paginate(gitlab.projects, query)
            if page in gitlab.failing_project_pages:
                self._send(500, {"message": "500 Internal Server Error"})
                return
            if "statistics" not in query:
                items = [{k: v for k, v in p.items() if k != "statistics"} for p in items]
            self._send(200, items, headers)
            return

        project_id = int(segments[3])
        rest = segments[4:]

        if rest == ["merge_requests"]:
            mrs = _filter_after(
                gitlab.merge_requests.get(project_id, []),
                "created_at",
                query.get("created_after", [""])[0],
            )
            items, _, headers = _paginate(mrs, query)
            self._send(200, items, headers)
        elif rest == ["repository", "commits"]:
            commits = _filter_after(
                gitlab.commits.get(project_id, []),
                "created_at",
                query.get("since", [""])[0],
                query.get("until", [""])[0],
            )
            items, _, headers = _paginate(commits, query)
            self._send(200, items, headers)
        else:
            self._send(404, {"message": "404 Not Found"})

    def _send(self, status: int, payload: Any, headers: Dict[str, str] = None):
        body = json.dumps(payload).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass  # Suppress request logging noise


class FakeGitLabServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, gitlab: FakeGitLab):
        super().__init__(address, _GitLabHandler)
        self.gitlab = gitlab

    @property
    def url(self) -> str:
        host, port = self.server_address[:2]
        return f"http://{host}:{port}"

    def start_background(self) -> threading.Thread:
        thread = threading.Thread(target=self.serve_forever, daemon=True)
        thread.start()
        return thread


def run_fake_server(host: str = "127.0.0.1", port: int = 9180):
    gitlab = generate_fake_gitlab()
    server = FakeGitLabServer((host, port), gitlab)
    print(f"Fake GitLab API running at http://{host}:{port}/api/v4 (token: {gitlab.token})")
    print("Press Ctrl+C to stop.\n")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    server.server_close()
    print("\nServer stopped.")


if __name__ == "__main__":
    run_fake_server()
