"""
Staging downloads into an isolated temporary directory.

Every staging call gets a fresh, uniquely named directory. Files are
downloaded to paths mirroring their relative location, with a bounded
number of attempts and a fixed delay between them. If any file cannot be
fetched the whole directory is removed; partial staging is never kept.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from blobsync.core.config.models import DownloadConfig
from blobsync.core.exceptions import DownloadError
from blobsync.core.github.client import GitHubClient
from blobsync.core.github.models import Listing
from blobsync.core.http import with_retry

logger = logging.getLogger(__name__)

STAGING_PREFIX = "blobsync-stage-"


def discard(staging_dir: Path | None) -> None:
    """Remove a staging directory if it exists."""
    if staging_dir is None:
        return
    shutil.rmtree(staging_dir, ignore_errors=True)


class StagingDownloader:
    """
    Download remote files into a temporary staging directory.

    Example:
        >>> downloader = StagingDownloader(client, DownloadConfig(max_attempts=3))
        >>> staging = downloader.stage(listing)
        >>> try:
        ...     publisher.publish(listing, staging, final_dir)
        ... finally:
        ...     discard(staging)
    """

    def __init__(
        self,
        client: GitHubClient,
        config: DownloadConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.config = config or DownloadConfig()
        self._sleep = sleep

    def stage(self, listing: Listing) -> Path:
        """
        Download every blob of ``listing``, preferring pinned URLs.

        Returns:
            Path of the staging directory

        Raises:
            DownloadError: If any file exhausts its attempts
        """
        files: list[tuple[str, str]] = []
        for item in listing.blobs():
            url = item.download_url
            if not url:
                raise DownloadError(f"No download URL for {item.relative_path}")
            files.append((item.relative_path, url))
        return self.stage_files(files)

    def stage_files(self, files: Iterable[tuple[str, str]]) -> Path:
        """
        Download ``(relative_path, url)`` pairs into a new staging directory.

        Raises:
            DownloadError: If any file exhausts its attempts
        """
        root = self.config.staging_root
        if root is not None:
            Path(root).mkdir(parents=True, exist_ok=True)
        staging_dir = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=root))
        logger.debug("Staging into %s", staging_dir)

        fetch = with_retry(
            max_attempts=self.config.max_attempts,
            delay=self.config.retry_delay_seconds,
            sleep=self._sleep,
        )(self._fetch)

        try:
            count = 0
            for relative_path, url in files:
                target = staging_dir.joinpath(*relative_path.split("/"))
                target.parent.mkdir(parents=True, exist_ok=True)
                try:
                    fetch(url, target)
                except Exception as e:
                    raise DownloadError(
                        f"Failed to download {relative_path}: {e}",
                        url=url,
                        path=relative_path,
                    ) from e
                count += 1
        except BaseException:
            discard(staging_dir)
            raise

        logger.info("Staged %d file(s) in %s", count, staging_dir)
        return staging_dir

    def _fetch(self, url: str, target: Path) -> None:
        self.client.download(url, target, timeout=self.config.timeout_seconds)


__all__ = ["STAGING_PREFIX", "StagingDownloader", "discard"]
