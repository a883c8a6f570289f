"""
Remote tree listing resolution.

Resolves a repository reference (and optional subpath) into a flat,
ordered ``Listing`` of remote items using the git data API:

    ref -> commit -> root tree -> (subtree walk) -> recursive tree

A truncated recursive response is always a hard failure; partial listings
are never returned.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from typing import Any
from urllib.parse import quote

from blobsync.core.exceptions import BadReferenceError, NotFoundError, RemoteError, TruncatedError
from blobsync.core.github.client import GitHubClient, quote_path
from blobsync.core.github.models import ItemKind, Listing, RemoteItem, parse_timestamp

logger = logging.getLogger(__name__)


def split_subpath(subpath: str | None) -> list[str]:
    """Split a slash-separated subpath into non-empty segments."""
    if not subpath:
        return []
    return [segment for segment in subpath.strip("/").split("/") if segment]


class RemoteListingResolver:
    """
    Resolve a ref and optional subpath into a ``Listing``.

    All calls are read-only.

    Example:
        >>> resolver = RemoteListingResolver(client)
        >>> listing = resolver.resolve("octocat", "tools", ref="main", subpath="bin")
        >>> [item.relative_path for item in listing.blobs()]
        ['tool.exe', 'lib/helper.dll']
    """

    def __init__(self, client: GitHubClient) -> None:
        self.client = client

    @staticmethod
    def api_calls_for(ref: str | None, subpath: str | None) -> int:
        """Number of API calls ``resolve`` makes for these arguments."""
        return 2 + (1 if ref is None else 0) + len(split_subpath(subpath))

    def _repo_path(self, owner: str, repo: str) -> str:
        return f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"

    def resolve(
        self,
        owner: str,
        repo: str,
        ref: str | None = None,
        subpath: str | None = None,
        kinds: Iterable[ItemKind] = (ItemKind.BLOB,),
    ) -> Listing:
        """
        Resolve a listing.

        Args:
            owner: Repository owner
            repo: Repository name
            ref: Branch, tag or commit; the default branch when None
            subpath: Directory inside the repository to list (root when None)
            kinds: Item kinds to include

        Returns:
            Listing of matching items in remote order

        Raises:
            NotFoundError: Unknown repository, ref, or subpath segment
            TruncatedError: The remote truncated the recursive tree
            RateLimitedError: The API budget is exhausted
        """
        wanted = set(kinds)
        repo_path = self._repo_path(owner, repo)

        if ref is None:
            ref = self.client.get_default_branch(owner, repo)
            logger.debug("Resolved default branch of %s/%s: %s", owner, repo, ref)

        try:
            commit = self.client.get_json(f"{repo_path}/commits/{quote_path(ref)}")
        except BadReferenceError as e:
            raise NotFoundError(
                f"Ref '{ref}' not found in {owner}/{repo}", status_code=e.status_code, url=e.url
            ) from e

        try:
            commit_id = commit["sha"]
            tree_id = commit["commit"]["tree"]["sha"]
        except (KeyError, TypeError) as e:
            raise RemoteError(f"Unexpected commit response for {owner}/{repo}@{ref}") from e
        commit_meta = commit["commit"].get("committer") or commit["commit"].get("author") or {}
        commit_time = parse_timestamp(commit_meta.get("date"))

        segments = split_subpath(subpath)
        walked: list[str] = []
        for segment in segments:
            tree_id = self._find_subtree(repo_path, tree_id, segment, owner, repo, walked)
            walked.append(segment)

        data = self.client.get_json(f"{repo_path}/git/trees/{tree_id}", params={"recursive": "1"})
        if not isinstance(data, dict) or not isinstance(data.get("tree"), list):
            raise RemoteError(f"Unexpected tree response for {owner}/{repo}@{ref}")
        if data.get("truncated"):
            raise TruncatedError(
                f"Remote truncated the tree listing of {owner}/{repo}@{ref}",
                tree=tree_id,
                subpath=subpath,
            )

        prefix = "/".join(segments)
        items = tuple(
            self._build_item(entry, owner, repo, ref, commit_id, prefix)
            for entry in data["tree"]
            if self._kind_of(entry) in wanted
        )

        logger.info(
            "Resolved %s/%s@%s%s: %d items (commit %s)",
            owner,
            repo,
            ref,
            f":{prefix}" if prefix else "",
            len(items),
            commit_id[:12],
        )
        return Listing(
            owner=owner,
            repo=repo,
            ref=ref,
            commit_id=commit_id,
            commit_time=commit_time,
            subpath=prefix or None,
            items=items,
        )

    def _find_subtree(
        self,
        repo_path: str,
        tree_id: str,
        segment: str,
        owner: str,
        repo: str,
        walked: list[str],
    ) -> str:
        data = self.client.get_json(f"{repo_path}/git/trees/{tree_id}")
        entries = data.get("tree", []) if isinstance(data, dict) else []
        for entry in entries:
            if entry.get("path") == segment and entry.get("type") == ItemKind.TREE.value:
                return str(entry["sha"])

        missing = "/".join([*walked, segment])
        raise NotFoundError(f"Path '{missing}' is not a directory in {owner}/{repo}")

    @staticmethod
    def _kind_of(entry: dict[str, Any]) -> ItemKind | None:
        try:
            return ItemKind(entry.get("type"))
        except ValueError:
            # Submodule entries ("commit") are never synced
            return None

    def _build_item(
        self,
        entry: dict[str, Any],
        owner: str,
        repo: str,
        ref: str,
        commit_id: str,
        prefix: str,
    ) -> RemoteItem:
        relative = str(entry["path"])
        kind = ItemKind(entry["type"])
        full_path = f"{prefix}/{relative}" if prefix else relative

        mutable_url = pinned_url = None
        if kind == ItemKind.BLOB:
            mutable_url = self.client.raw_url(owner, repo, ref, full_path)
            pinned_url = self.client.raw_url(owner, repo, commit_id, full_path)

        return RemoteItem(
            relative_path=relative,
            native_path=os.path.join(*relative.split("/")),
            kind=kind,
            object_id=str(entry["sha"]),
            size=int(entry.get("size") or 0),
            mode=str(entry.get("mode", "100644")),
            mutable_url=mutable_url,
            pinned_url=pinned_url,
        )


__all__ = ["RemoteListingResolver", "split_subpath"]
