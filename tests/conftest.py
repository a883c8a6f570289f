"""
Pytest configuration and shared fixtures.

Provides an in-memory GitHub (REST API, raw-content host and connectivity
probe) served through ``httpx.MockTransport``, a client wired to it, and
config/orchestrator fixtures that keep all state under ``tmp_path``.
"""

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest

from blobsync.core.config import loader
from blobsync.core.config.models import (
    BlobsyncConfig,
    ConnectivityConfig,
    DownloadConfig,
    GitHubConfig,
    SyncConfig,
)
from blobsync.core.github.client import GitHubClient
from blobsync.core.orchestrator.manifest import ManifestStore
from blobsync.core.orchestrator.service import BatchOrchestrator
from blobsync.core.preflight import PreflightGate
from blobsync.core.publish.staging import StagingDownloader

API_HOST = "api.github.com"
RAW_HOST = "raw.githubusercontent.com"
PROBE_HOST = "www.gstatic.com"

COMMIT_ID = "c0ffee" + "0" * 34
COMMIT_DATE = "2024-01-02T03:04:05Z"
COMMIT_TIME = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def blob_id(content: bytes, algorithm: str = "sha1") -> str:
    """Git blob object id of ``content``."""
    digest = hashlib.new(algorithm)
    digest.update(b"blob %d\0" % len(content))
    digest.update(content)
    return digest.hexdigest()


def tree_id(owner: str, repo: str, prefix: str) -> str:
    return hashlib.sha1(f"tree:{owner}/{repo}/{prefix}".encode()).hexdigest()


def _parent(path: str) -> str:
    return path.rpartition("/")[0]


def _under(path: str, directory: str) -> bool:
    return not directory or path.startswith(directory + "/")


def _relative(path: str, directory: str) -> str:
    return path[len(directory) + 1 :] if directory else path


# ==============================================================================
# Fake GitHub
# ==============================================================================


class FakeGitHub:
    """
    Route table behind an ``httpx.MockTransport``.

    JSON routes match on URL path plus a subset of query params; the most
    specific (and then most recently added) route wins. Raw content is keyed
    by the decoded URL path on the raw host.
    """

    def __init__(self) -> None:
        self.routes: list[tuple[str, dict[str, str], int, Any, dict[str, str]]] = []
        self.raw: dict[str, bytes] = {}
        self.raw_failures: dict[str, int] = {}
        self.requests: list[httpx.Request] = []
        self.probe_status = 204
        self.rate_remaining = 5000

    # -- registration ---------------------------------------------------------

    def add_json(
        self,
        path: str,
        body: Any,
        *,
        status: int = 200,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.routes.append((path, params or {}, status, body, headers or {}))

    def add_repo(
        self,
        owner: str,
        repo: str,
        files: dict[str, bytes],
        *,
        branch: str = "main",
        commit_id: str = COMMIT_ID,
        date: str = COMMIT_DATE,
    ) -> None:
        """Register default branch, commit, trees, file history and raw content."""
        base = f"/repos/{owner}/{repo}"
        self.add_json(base, {"default_branch": branch, "full_name": f"{owner}/{repo}"})

        directories = {""}
        for path in files:
            parts = path.split("/")
            for i in range(1, len(parts)):
                directories.add("/".join(parts[:i]))

        def tree_entry(path: str, relative: str) -> dict[str, Any]:
            return {"path": relative, "type": "tree", "mode": "040000", "sha": tree_id(owner, repo, path)}

        def blob_entry(path: str, relative: str) -> dict[str, Any]:
            content = files[path]
            return {
                "path": relative,
                "type": "blob",
                "mode": "100644",
                "sha": blob_id(content),
                "size": len(content),
            }

        for directory in directories:
            sha = tree_id(owner, repo, directory)
            subdirs = sorted(d for d in directories if d and _parent(d) == directory)
            blobs = sorted(p for p in files if _parent(p) == directory)
            shallow = [tree_entry(d, d.rpartition("/")[2]) for d in subdirs]
            shallow += [blob_entry(p, p.rpartition("/")[2]) for p in blobs]
            self.add_json(f"{base}/git/trees/{sha}", {"sha": sha, "tree": shallow, "truncated": False})

            nested_dirs = sorted(d for d in directories if d and d != directory and _under(d, directory))
            nested_blobs = sorted(p for p in files if _under(p, directory))
            deep = [tree_entry(d, _relative(d, directory)) for d in nested_dirs]
            deep += [blob_entry(p, _relative(p, directory)) for p in nested_blobs]
            self.add_json(
                f"{base}/git/trees/{sha}",
                {"sha": sha, "tree": deep, "truncated": False},
                params={"recursive": "1"},
            )

        commit = {
            "sha": commit_id,
            "url": f"https://{API_HOST}{base}/commits/{commit_id}",
            "html_url": f"https://github.com/{owner}/{repo}/commit/{commit_id}",
            "commit": {
                "message": "Update files",
                "tree": {"sha": tree_id(owner, repo, "")},
                "author": {"name": "octocat", "date": date},
                "committer": {"name": "octocat", "date": date},
            },
        }
        self.add_json(f"{base}/commits/{branch}", commit)
        self.add_json(f"{base}/commits/{commit_id}", commit)

        for path, content in files.items():
            self.add_json(f"{base}/commits", [commit], params={"path": path})
            self.raw[f"/{owner}/{repo}/{branch}/{path}"] = content
            self.raw[f"/{owner}/{repo}/{commit_id}/{path}"] = content

    def fail_raw(self, path: str, times: int) -> None:
        """Make the next ``times`` requests for a raw path answer 500."""
        self.raw_failures[path] = times

    # -- inspection -----------------------------------------------------------

    @property
    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == API_HOST]

    @property
    def raw_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == RAW_HOST]

    # -- transport ------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host

        if host == PROBE_HOST:
            return httpx.Response(self.probe_status)

        if host == RAW_HOST:
            path = request.url.path
            if self.raw_failures.get(path, 0) > 0:
                self.raw_failures[path] -= 1
                return httpx.Response(500, text="boom")
            if path in self.raw:
                return httpx.Response(200, content=self.raw[path])
            return httpx.Response(404, text="404: Not Found")

        if host == API_HOST:
            if request.url.path == "/rate_limit":
                return httpx.Response(
                    200,
                    json={
                        "resources": {
                            "core": {"limit": 5000, "remaining": self.rate_remaining, "reset": 1704164645}
                        }
                    },
                )
            return self._route(request)

        return httpx.Response(502, text=f"unexpected host {host}")

    def _route(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        best = None
        for route in reversed(self.routes):
            path, wanted, _, _, _ = route
            if path != request.url.path:
                continue
            if any(params.get(k) != v for k, v in wanted.items()):
                continue
            if best is None or len(wanted) > len(best[1]):
                best = route
        if best is None:
            return httpx.Response(404, json={"message": "Not Found"})
        _, _, status, body, headers = best
        return httpx.Response(status, json=body, headers=headers)


@pytest.fixture
def fake_github():
    """Provide an empty fake GitHub."""
    return FakeGitHub()


@pytest.fixture
def client(fake_github):
    """Provide a GitHubClient talking to the fake GitHub."""
    github_client = GitHubClient(GitHubConfig(), transport=httpx.MockTransport(fake_github.handler))
    yield github_client
    github_client.close()


# ==============================================================================
# Config Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep config lookups and env overrides away from the real user environment."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg-data"))
    for name in (
        "BLOBSYNC_GITHUB_TOKEN",
        "GITHUB_TOKEN",
        "BLOBSYNC_LOCAL_ROOT",
        "BLOBSYNC_LOCAL_FALLBACK",
        "BLOBSYNC_DOWNLOAD_ATTEMPTS",
    ):
        monkeypatch.delenv(name, raising=False)
    loader.clear_cache()
    yield
    loader.clear_cache()


@pytest.fixture
def sync_config(tmp_path):
    """Provide a BlobsyncConfig rooted in tmp_path with no waiting."""
    return BlobsyncConfig(
        connectivity=ConnectivityConfig(wait_timeout_seconds=0, poll_interval_seconds=0.01),
        download=DownloadConfig(
            max_attempts=2,
            retry_delay_seconds=0,
            staging_root=tmp_path / "staging",
        ),
        sync=SyncConfig(local_root=tmp_path / "root", state_dir=tmp_path / "state"),
    )


def make_orchestrator(
    config: BlobsyncConfig, client: GitHubClient, *, online: bool = True
) -> BatchOrchestrator:
    """Orchestrator with DNS answered locally and no sleeping."""

    def resolve(host: str, port: int) -> list[Any]:
        if not online:
            raise OSError(f"cannot resolve {host}")
        return []

    gate = PreflightGate(client, config.connectivity, resolve=resolve, sleep=lambda s: None)
    return BatchOrchestrator(
        config,
        client,
        gate=gate,
        downloader=StagingDownloader(client, config.download, sleep=lambda s: None),
        manifests=ManifestStore(Path(config.sync.state_dir)),
    )


@pytest.fixture
def orchestrator(sync_config, client):
    """Provide an online orchestrator backed by the fake GitHub."""
    return make_orchestrator(sync_config, client)
