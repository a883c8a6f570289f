"""
Batch orchestration: preflight, resolve, stage, publish, outcome.

The orchestrator resolves everything before it acts: no file in the final
directory is touched until every descriptor (or the whole listing) has been
resolved. Any failure along the way either falls back to the local copy,
when the caller allows it and that copy is complete, or aborts.

State machine::

    START -> WAITING_FOR_CONNECTIVITY -> CHECKING_HEALTH -> RESOLVING_INFO
          -> SAVING -> UPDATED
    (any failure) -> LOCAL_RUN | ABORTED
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from blobsync.core.config.loader import get_default_state_dir
from blobsync.core.config.models import BlobsyncConfig
from blobsync.core.exceptions import BlobsyncError, NetworkUnavailableError, PublishError
from blobsync.core.github.client import GitHubClient
from blobsync.core.github.file_info import FileInfoResolver
from blobsync.core.github.listing import RemoteListingResolver
from blobsync.core.github.models import FileInfo, Listing
from blobsync.core.orchestrator.layout import finalize_file, local_path_for, mtime_matches
from blobsync.core.orchestrator.manifest import ManifestStore
from blobsync.core.orchestrator.models import (
    FileAction,
    FileDescriptor,
    FileResult,
    Outcome,
    OutcomeKind,
    SyncState,
)
from blobsync.core.preflight import PreflightGate
from blobsync.core.publish.hashing import verify_item, verify_listing
from blobsync.core.publish.publisher import AtomicPublisher
from blobsync.core.publish.staging import StagingDownloader, discard

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """
    Drive a sync from pre-flight checks to an ``Outcome``.

    Collaborators are built from the client and config unless injected.

    Example:
        >>> config = load_config()
        >>> with BatchOrchestrator.from_config(config) as orchestrator:
        ...     outcome = orchestrator.run([FileDescriptor.parse("octocat/tools:tool.exe")])
        >>> outcome.kind
        <OutcomeKind.UPDATED: 'updated'>
    """

    def __init__(
        self,
        config: BlobsyncConfig,
        client: GitHubClient,
        *,
        gate: PreflightGate | None = None,
        info_resolver: FileInfoResolver | None = None,
        listing_resolver: RemoteListingResolver | None = None,
        downloader: StagingDownloader | None = None,
        publisher: AtomicPublisher | None = None,
        manifests: ManifestStore | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.gate = gate or PreflightGate(client, config.connectivity)
        self.info_resolver = info_resolver or FileInfoResolver(client)
        self.listing_resolver = listing_resolver or RemoteListingResolver(client)
        self.downloader = downloader or StagingDownloader(client, config.download)
        self.publisher = publisher or AtomicPublisher(use_lock=config.sync.use_lock)
        self.manifests = manifests or ManifestStore(config.sync.state_dir or get_default_state_dir())

    @classmethod
    def from_config(cls, config: BlobsyncConfig) -> BatchOrchestrator:
        return cls(config, GitHubClient(config.github))

    def __enter__(self) -> BatchOrchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()

    @property
    def local_root(self) -> Path:
        return Path(self.config.sync.local_root)

    def expected_path(self, descriptor: FileDescriptor) -> Path:
        """Deterministic local path of a descriptor; makes no network call."""
        return local_path_for(self.local_root, descriptor, self.config.sync.branch_scoped)

    def local_complete(self, descriptors: Iterable[FileDescriptor]) -> bool:
        """Every expected local file exists (existence only, no hashing)."""
        return all(self.expected_path(d).is_file() for d in descriptors)

    # ------------------------------------------------------------------
    # File batches
    # ------------------------------------------------------------------

    def run(
        self, descriptors: Sequence[FileDescriptor], local_fallback: bool | None = None
    ) -> Outcome:
        """
        Sync a batch of individual files into the local root.

        Args:
            descriptors: Files to sync
            local_fallback: Override ``sync.local_fallback`` for this call

        Returns:
            UPDATED with per-file results, LOCAL_RUN when the remote was
            unusable but every local file exists, or ABORTED
        """
        descriptors = list(descriptors)
        fallback = self.config.sync.local_fallback if local_fallback is None else local_fallback
        states = [SyncState.START]

        try:
            self._preflight(states, self.gate.estimate_calls(descriptors))

            states.append(SyncState.RESOLVING_INFO)
            infos = [
                self.info_resolver.resolve(d.owner, d.repo, d.path, d.ref) for d in descriptors
            ]

            states.append(SyncState.SAVING)
            results = self._save_files(descriptors, infos)
        except (BlobsyncError, OSError) as e:
            return self._fall_back(
                states,
                e,
                fallback,
                complete=lambda: self.local_complete(descriptors),
                results=lambda: [
                    FileResult(descriptor=d, local_path=self.expected_path(d), action=FileAction.SKIPPED)
                    for d in descriptors
                ],
            )

        states.append(SyncState.UPDATED)
        downloaded = sum(1 for r in results if r.action != FileAction.SKIPPED)
        return Outcome(
            kind=OutcomeKind.UPDATED,
            reason=f"{downloaded} of {len(results)} file(s) downloaded",
            results=results,
            states=states,
        )

    def _preflight(self, states: list[SyncState], required_calls: int) -> None:
        states.append(SyncState.WAITING_FOR_CONNECTIVITY)
        if not self.gate.wait_for_connectivity():
            raise NetworkUnavailableError("No network connectivity")

        states.append(SyncState.CHECKING_HEALTH)
        status = self.gate.check_health()
        self.gate.ensure_budget(required_calls, status)

    def _save_files(
        self, descriptors: list[FileDescriptor], infos: list[FileInfo]
    ) -> list[FileResult]:
        tolerance = self.config.sync.mtime_tolerance_seconds
        results: list[FileResult] = []
        pending: dict[Path, FileInfo] = {}

        for descriptor, info in zip(descriptors, infos):
            local = self.expected_path(descriptor)
            if mtime_matches(local, info.last_commit_time, tolerance):
                logger.debug("%s is current", local)
                finalize_file(local, info.last_commit_time)
                action = FileAction.SKIPPED
            else:
                action = FileAction.UPDATED if local.exists() else FileAction.DOWNLOADED
                pending[local] = info
            results.append(FileResult(descriptor=descriptor, local_path=local, action=action))

        if pending:
            root = self.local_root
            relative = {local: local.relative_to(root).as_posix() for local in pending}
            staging = self.downloader.stage_files(
                (relative[local], info.download_url) for local, info in pending.items()
            )
            try:
                pairs = [
                    (staging.joinpath(*relative[local].split("/")), local) for local in pending
                ]
                if not self.publisher.publish_files(pairs, final_dir=root):
                    raise PublishError(
                        f"Publishing failed and was rolled back: {self.publisher.last_error}"
                    )
            finally:
                discard(staging)

            for local, info in pending.items():
                finalize_file(local, info.last_commit_time)

        return results

    # ------------------------------------------------------------------
    # Directory syncs
    # ------------------------------------------------------------------

    def sync_directory(
        self,
        owner: str,
        repo: str,
        dest: Path,
        ref: str | None = None,
        subpath: str | None = None,
        local_fallback: bool | None = None,
    ) -> Outcome:
        """
        Mirror a remote directory into ``dest``.

        The whole listing is verified against ``dest``; on any mismatch the
        full listing is staged and published as one batch.
        """
        dest = Path(dest)
        fallback = self.config.sync.local_fallback if local_fallback is None else local_fallback
        key = self.manifests.key(owner, repo, ref, subpath, dest)
        states = [SyncState.START]

        try:
            self._preflight(states, 1 + self.listing_resolver.api_calls_for(ref, subpath))

            states.append(SyncState.RESOLVING_INFO)
            listing = self.listing_resolver.resolve(owner, repo, ref=ref, subpath=subpath)

            states.append(SyncState.SAVING)
            results = self._save_listing(listing, dest)
        except (BlobsyncError, OSError) as e:
            return self._fall_back(
                states,
                e,
                fallback,
                complete=lambda: self._manifest_present(key, dest),
                results=lambda: self._manifest_results(key, dest),
            )

        self.manifests.save(key, listing)
        states.append(SyncState.UPDATED)
        written = sum(1 for r in results if r.action != FileAction.SKIPPED)
        return Outcome(
            kind=OutcomeKind.UPDATED,
            reason=f"{written} of {len(results)} file(s) written at {listing.commit_id[:12]}",
            results=results,
            states=states,
        )

    def _save_listing(self, listing: Listing, dest: Path) -> list[FileResult]:
        blobs = list(listing.blobs())
        results: list[FileResult] = []

        if verify_listing(listing, dest):
            logger.info("%s already matches %s@%s", dest, listing.repo, listing.commit_id[:12])
            actions = {item.relative_path: FileAction.SKIPPED for item in blobs}
        else:
            actions = {}
            for item in blobs:
                local = dest.joinpath(*item.segments)
                if verify_item(item, dest):
                    actions[item.relative_path] = FileAction.SKIPPED
                elif local.exists():
                    actions[item.relative_path] = FileAction.UPDATED
                else:
                    actions[item.relative_path] = FileAction.DOWNLOADED

            staging = self.downloader.stage(listing)
            try:
                if not self.publisher.publish(listing, staging, dest):
                    raise PublishError(
                        f"Publishing failed and was rolled back: {self.publisher.last_error}"
                    )
            finally:
                discard(staging)

        for item in blobs:
            local = dest.joinpath(*item.segments)
            finalize_file(local, listing.commit_time)
            results.append(
                FileResult(
                    descriptor=self._descriptor_for(listing, item.relative_path),
                    local_path=local,
                    action=actions[item.relative_path],
                )
            )
        return results

    @staticmethod
    def _descriptor_for(listing: Listing, relative_path: str) -> FileDescriptor:
        path = f"{listing.subpath}/{relative_path}" if listing.subpath else relative_path
        return FileDescriptor(owner=listing.owner, repo=listing.repo, path=path, ref=listing.ref)

    def _manifest_present(self, key: str, dest: Path) -> bool:
        listing = self.manifests.load(key)
        if listing is None:
            return False
        return all(dest.joinpath(*item.segments).is_file() for item in listing.blobs())

    def _manifest_results(self, key: str, dest: Path) -> list[FileResult]:
        listing = self.manifests.load(key)
        if listing is None:
            return []
        return [
            FileResult(
                descriptor=self._descriptor_for(listing, item.relative_path),
                local_path=dest.joinpath(*item.segments),
                action=FileAction.SKIPPED,
            )
            for item in listing.blobs()
        ]

    # ------------------------------------------------------------------
    # Fallback
    # ------------------------------------------------------------------

    def _fall_back(
        self,
        states: list[SyncState],
        error: Exception,
        enabled: bool,
        *,
        complete: Callable[[], bool],
        results: Callable[[], list[FileResult]],
    ) -> Outcome:
        failed_in = states[-1].value
        logger.warning("Sync failed while %s: %s", failed_in, error)

        if not enabled:
            states.append(SyncState.ABORTED)
            return Outcome(
                kind=OutcomeKind.ABORTED,
                reason=f"{error} (while {failed_in})",
                states=states,
                error=error,
            )

        if complete():
            logger.info("Falling back to existing local files")
            states.append(SyncState.LOCAL_RUN)
            return Outcome(
                kind=OutcomeKind.LOCAL_RUN,
                reason=f"Using local files: {error}",
                results=results(),
                states=states,
                error=error,
            )

        states.append(SyncState.ABORTED)
        return Outcome(
            kind=OutcomeKind.ABORTED,
            reason=f"{error}; local files are incomplete",
            states=states,
            error=error,
        )


__all__ = ["BatchOrchestrator"]
