"""
Single-file metadata resolution.

Finds the most recent commit touching a path and turns it into a
``FileInfo`` carrying the commit time used for local freshness checks.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from blobsync.core.exceptions import BadReferenceError, NotFoundError, RemoteError
from blobsync.core.github.client import GitHubClient
from blobsync.core.github.models import FileInfo, parse_timestamp

logger = logging.getLogger(__name__)


class FileInfoResolver:
    """
    Resolve commit metadata for one remote file.

    Costs one API call, plus one more when ``ref`` is omitted (to learn the
    default branch for the mutable URL).
    """

    def __init__(self, client: GitHubClient) -> None:
        self.client = client

    @staticmethod
    def api_calls_for(ref: str | None) -> int:
        return 1 if ref else 2

    def resolve(self, owner: str, repo: str, path: str, ref: str | None = None) -> FileInfo:
        """
        Resolve metadata for ``path``.

        Raises:
            NotFoundError: No commit touches the path
            BadReferenceError: The remote answered 404 (bad owner/repo/ref)
            RateLimitedError: The API budget is exhausted (403)
        """
        path = path.strip("/")
        params = {"path": path, "per_page": "1"}
        if ref:
            params["sha"] = ref

        url = f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}/commits"
        try:
            commits = self.client.get_json(url, params=params)
        except NotFoundError as e:
            raise BadReferenceError(
                f"Cannot resolve {owner}/{repo}@{ref or 'default'} for '{path}'",
                status_code=e.status_code,
                url=e.url,
            ) from e

        if not isinstance(commits, list):
            raise RemoteError(f"Unexpected commit history response for {owner}/{repo}:{path}")
        if not commits:
            raise NotFoundError(f"No commits touch '{path}' in {owner}/{repo}", path=path)

        latest = commits[0]
        try:
            commit_id = str(latest["sha"])
            commit = latest["commit"]
        except (KeyError, TypeError) as e:
            raise RemoteError(f"Unexpected commit entry for {owner}/{repo}:{path}") from e

        author = commit.get("author") or {}
        committer = commit.get("committer") or {}
        when = parse_timestamp(author.get("date")) or parse_timestamp(committer.get("date"))
        if when is None:
            raise RemoteError(f"Commit {commit_id} for '{path}' carries no date")

        branch = ref
        if not branch:
            try:
                branch = self.client.get_default_branch(owner, repo)
            except NotFoundError as e:
                raise BadReferenceError(
                    f"Cannot resolve default branch of {owner}/{repo}",
                    status_code=e.status_code,
                    url=e.url,
                ) from e

        info = FileInfo(
            owner=owner,
            repo=repo,
            path=path,
            branch=branch,
            last_commit_time=when,
            commit_id=commit_id,
            message=str(commit.get("message") or ""),
            html_url=latest.get("html_url"),
            api_url=latest.get("url"),
            mutable_url=self.client.raw_url(owner, repo, branch, path),
            pinned_url=self.client.raw_url(owner, repo, commit_id, path),
        )
        logger.debug("Resolved %s/%s:%s -> %s at %s", owner, repo, path, commit_id[:12], when)
        return info


__all__ = ["FileInfoResolver"]
