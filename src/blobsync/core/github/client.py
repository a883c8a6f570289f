"""
HTTP client for the GitHub REST API and raw-content host.

A single long-lived ``GitHubClient`` owns the ``httpx.Client`` session used
by every resolver, the pre-flight gate and the staging downloader. It maps
HTTP failures onto the blobsync exception taxonomy and records the time of
the last failed request on the instance.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import quote, urlsplit

import httpx

from blobsync.core.config.models import GitHubConfig
from blobsync.core.exceptions import (
    BadReferenceError,
    NetworkUnavailableError,
    NotFoundError,
    RateLimitedError,
    RemoteError,
)
from blobsync.core.github.models import RateLimitStatus

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def quote_path(path: str) -> str:
    """
    Percent-encode each slash-separated segment independently.

    Example:
        >>> quote_path("docs/read me#1.md")
        'docs/read%20me%231.md'
    """
    return "/".join(quote(segment, safe="") for segment in path.split("/"))


def _epoch_to_datetime(value: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


class GitHubClient:
    """
    Session object for all remote calls.

    Example:
        >>> with GitHubClient(GitHubConfig(token="ghp_...")) as client:
        ...     data = client.get_json("/repos/octocat/hello-world")
        ...     data["default_branch"]
        'master'

    Attributes:
        config: Endpoints, token and timeouts
        last_failure_at: ``clock()`` reading of the most recent failed
            request, or None if no request has failed yet
    """

    def __init__(
        self,
        config: GitHubConfig | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or GitHubConfig()
        self.last_failure_at: float | None = None
        self._clock = clock
        self._http = httpx.Client(
            headers={"User-Agent": self.config.user_agent},
            timeout=self.config.timeout_seconds,
            transport=transport,
            follow_redirects=True,
        )
        self._trusted_hosts = {
            urlsplit(self.config.api_url).hostname,
            urlsplit(self.config.raw_url).hostname,
        }

    def __enter__(self) -> GitHubClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    @property
    def api_host(self) -> str:
        return urlsplit(self.config.api_url).hostname or ""

    @property
    def raw_host(self) -> str:
        return urlsplit(self.config.raw_url).hostname or ""

    def raw_url(self, owner: str, repo: str, ref: str, path: str) -> str:
        """Build a raw-content URL addressed by ``ref`` (branch, tag or commit)."""
        return "/".join(
            [
                self.config.raw_url,
                quote(owner, safe=""),
                quote(repo, safe=""),
                quote_path(ref),
                quote_path(path),
            ]
        )

    def _headers_for(self, url: str) -> dict[str, str]:
        # Credentials only go to the configured remote hosts
        headers: dict[str, str] = {}
        if urlsplit(url).hostname in self._trusted_hosts:
            if self.config.token:
                headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    def _record_failure(self) -> None:
        self.last_failure_at = self._clock()

    def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET an API path and decode the JSON body.

        Args:
            path: Path below the API base URL (e.g. "/repos/o/r")
            params: Optional query parameters

        Returns:
            Decoded JSON document

        Raises:
            NetworkUnavailableError: On timeouts and transport failures
            RateLimitedError: On 403 and 429
            NotFoundError: On 404
            BadReferenceError: On 409 and 422
            RemoteError: On any other error status or an undecodable body
        """
        url = f"{self.config.api_url}{path}"
        headers = {"Accept": "application/vnd.github+json", **self._headers_for(url)}

        logger.debug("GET %s params=%s", url, params)
        try:
            response = self._http.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            self._record_failure()
            raise NetworkUnavailableError(f"Request to {url} failed: {e}", url=url) from e

        if response.status_code >= 400:
            self._record_failure()
            self._raise_for_status(response, url)

        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(
                "Remote returned a body that is not JSON", status_code=response.status_code, url=url
            ) from e

    def _raise_for_status(self, response: httpx.Response, url: str) -> None:
        status = response.status_code
        try:
            detail = response.json().get("message", "")
        except (ValueError, AttributeError):
            detail = response.text[:200]

        if status in (403, 429):
            reset_at = _epoch_to_datetime(response.headers.get("x-ratelimit-reset"))
            raise RateLimitedError(
                f"Rate limited by remote (HTTP {status}): {detail}",
                status_code=status,
                url=url,
                reset_at=reset_at,
            )
        if status == 404:
            raise NotFoundError(f"Not found: {url}", status_code=status, url=url)
        if status in (409, 422):
            raise BadReferenceError(
                f"Remote rejected reference (HTTP {status}): {detail}", status_code=status, url=url
            )
        raise RemoteError(f"HTTP {status} from remote: {detail}", status_code=status, url=url)

    def get_default_branch(self, owner: str, repo: str) -> str:
        """Resolve the repository's default branch name (one API call)."""
        data = self.get_json(f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}")
        branch = data.get("default_branch") if isinstance(data, dict) else None
        if not branch:
            raise RemoteError(f"Repository {owner}/{repo} reported no default branch")
        return str(branch)

    def rate_limit(self) -> RateLimitStatus:
        """Query the core API call budget."""
        data = self.get_json("/rate_limit")
        try:
            core = data.get("resources", {}).get("core") or data["rate"]
        except (AttributeError, KeyError) as e:
            raise RemoteError("Unexpected rate limit response shape") from e
        return RateLimitStatus(
            limit=int(core.get("limit", 0)),
            remaining=int(core.get("remaining", 0)),
            reset_at=_epoch_to_datetime(core.get("reset")),
        )

    def probe(self, url: str, timeout: float) -> int:
        """
        Issue a lightweight GET and return its status code.

        Raises:
            httpx.HTTPError: On transport failures
        """
        response = self._http.get(url, timeout=timeout, headers=self._headers_for(url))
        return response.status_code

    def download(self, url: str, destination: Path, timeout: float | None = None) -> int:
        """
        Stream ``url`` into ``destination``.

        Transport and status errors are raised unchanged (``httpx.HTTPError``
        or ``OSError``) so the caller's retry policy can classify them.

        Returns:
            Number of bytes written
        """
        written = 0
        try:
            with self._http.stream(
                "GET",
                url,
                headers=self._headers_for(url),
                timeout=timeout or self.config.timeout_seconds,
            ) as response:
                response.raise_for_status()
                with destination.open("wb") as f:
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                        written += len(chunk)
        except (httpx.HTTPError, OSError):
            self._record_failure()
            raise
        return written


__all__ = ["GitHubClient", "quote_path"]
