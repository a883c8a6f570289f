"""
Tests for BatchOrchestrator.

Runs the whole pipeline against the fake GitHub: preflight, resolution,
staging, publishing and the offline fallback, for file batches and for
directory syncs.
"""

import os
from unittest.mock import Mock, patch

import pytest
from conftest import COMMIT_ID, COMMIT_TIME, make_orchestrator, tree_id

from blobsync.core.exceptions import (
    BadReferenceError,
    DownloadError,
    NetworkUnavailableError,
    PublishError,
    RateLimitedError,
    TruncatedError,
)
from blobsync.core.orchestrator.models import FileAction, FileDescriptor, OutcomeKind, SyncState
from blobsync.core.publish.hashing import verify_listing

FILES = {
    "bin/tool.exe": b"MZ tool v2",
    "README.md": b"# tools\n",
    "bin/lib/helper.dll": b"helper v2",
}


@pytest.fixture
def repo(fake_github):
    fake_github.add_repo("octocat", "tools", FILES)
    return fake_github


def _descriptors(*paths: str, ref: str | None = "main") -> list[FileDescriptor]:
    return [FileDescriptor(owner="octocat", repo="tools", path=path, ref=ref) for path in paths]


def _local(sync_config, path: str):
    return sync_config.sync.local_root.joinpath("octocat", "tools", *path.split("/"))


# ==============================================================================
# File batches
# ==============================================================================


class TestRun:
    """Test BatchOrchestrator.run."""

    def test_downloads_missing_files(self, orchestrator, repo, sync_config) -> None:
        outcome = orchestrator.run(_descriptors("bin/tool.exe", "README.md"))

        assert outcome.kind == OutcomeKind.UPDATED
        assert outcome.states == [
            SyncState.START,
            SyncState.WAITING_FOR_CONNECTIVITY,
            SyncState.CHECKING_HEALTH,
            SyncState.RESOLVING_INFO,
            SyncState.SAVING,
            SyncState.UPDATED,
        ]
        assert [r.action for r in outcome.results] == [FileAction.DOWNLOADED, FileAction.DOWNLOADED]
        for path in ("bin/tool.exe", "README.md"):
            local = _local(sync_config, path)
            assert local.read_bytes() == FILES[path]
            assert local.stat().st_mtime == COMMIT_TIME.timestamp()

    def test_staging_cleaned_up(self, orchestrator, repo, sync_config) -> None:
        orchestrator.run(_descriptors("bin/tool.exe"))
        assert list(sync_config.download.staging_root.iterdir()) == []

    def test_current_files_skipped(self, orchestrator, repo) -> None:
        """Test that a second run with matching mtimes downloads nothing."""
        orchestrator.run(_descriptors("bin/tool.exe", "README.md"))
        downloads = len(repo.raw_requests)

        outcome = orchestrator.run(_descriptors("bin/tool.exe", "README.md"))

        assert outcome.kind == OutcomeKind.UPDATED
        assert outcome.count(FileAction.SKIPPED) == 2
        assert outcome.reason == "0 of 2 file(s) downloaded"
        assert len(repo.raw_requests) == downloads

    def test_skipped_file_timestamp_normalized(self, orchestrator, repo, sync_config) -> None:
        """Test that a file within the mtime tolerance is skipped but re-stamped."""
        orchestrator.run(_descriptors("README.md"))
        local = _local(sync_config, "README.md")
        drifted = COMMIT_TIME.timestamp() + 1
        os.utime(local, (drifted, drifted))
        downloads = len(repo.raw_requests)

        outcome = orchestrator.run(_descriptors("README.md"))

        assert outcome.results[0].action == FileAction.SKIPPED
        assert len(repo.raw_requests) == downloads
        assert local.stat().st_mtime == COMMIT_TIME.timestamp()

    @pytest.mark.skipif(not hasattr(os, "setxattr"), reason="extended attributes unavailable")
    def test_skipped_file_provenance_cleared(self, orchestrator, repo, sync_config) -> None:
        orchestrator.run(_descriptors("README.md"))
        local = _local(sync_config, "README.md")
        try:
            os.setxattr(local, "user.xdg.origin.url", b"https://example.com/README.md")
        except OSError:
            pytest.skip("filesystem does not support user xattrs")
        drifted = COMMIT_TIME.timestamp() + 1
        os.utime(local, (drifted, drifted))

        outcome = orchestrator.run(_descriptors("README.md"))

        assert outcome.results[0].action == FileAction.SKIPPED
        assert "user.xdg.origin.url" not in os.listxattr(local)
        assert local.stat().st_mtime == COMMIT_TIME.timestamp()

    def test_skipped_file_finalized(self, orchestrator, repo, sync_config) -> None:
        orchestrator.run(_descriptors("README.md"))

        with patch("blobsync.core.orchestrator.service.finalize_file") as finalize:
            outcome = orchestrator.run(_descriptors("README.md"))

        assert outcome.results[0].action == FileAction.SKIPPED
        finalize.assert_called_once_with(_local(sync_config, "README.md"), COMMIT_TIME)

    def test_stale_file_updated(self, orchestrator, repo, sync_config) -> None:
        local = _local(sync_config, "README.md")
        local.parent.mkdir(parents=True)
        local.write_bytes(b"# old readme\n")

        outcome = orchestrator.run(_descriptors("README.md"))

        assert outcome.results[0].action == FileAction.UPDATED
        assert local.read_bytes() == FILES["README.md"]

    def test_default_branch_descriptor(self, orchestrator, repo, sync_config) -> None:
        outcome = orchestrator.run(_descriptors("README.md", ref=None))
        assert outcome.kind == OutcomeKind.UPDATED
        assert _local(sync_config, "README.md").read_bytes() == FILES["README.md"]

    def test_branch_scoped_layout(self, client, repo, sync_config) -> None:
        config = sync_config.model_copy(
            update={"sync": sync_config.sync.model_copy(update={"branch_scoped": True})}
        )
        outcome = make_orchestrator(config, client).run(_descriptors("README.md"))

        expected = config.sync.local_root / "octocat" / "tools" / "main" / "README.md"
        assert outcome.results[0].local_path == expected
        assert expected.read_bytes() == FILES["README.md"]

    def test_resolution_failure_aborts_before_touching_files(self, orchestrator, repo, sync_config) -> None:
        """Test that every descriptor is resolved before any file is written."""
        outcome = orchestrator.run(_descriptors("README.md", "missing.txt"), local_fallback=False)

        assert outcome.kind == OutcomeKind.ABORTED
        assert isinstance(outcome.error, BadReferenceError)
        assert outcome.states[-2:] == [SyncState.RESOLVING_INFO, SyncState.ABORTED]
        assert "resolving_info" in outcome.reason
        assert repo.raw_requests == []
        assert not _local(sync_config, "README.md").exists()

    def test_download_failure_leaves_local_files(self, orchestrator, repo, sync_config) -> None:
        local = _local(sync_config, "README.md")
        local.parent.mkdir(parents=True)
        local.write_bytes(b"# old readme\n")
        repo.fail_raw(f"/octocat/tools/{COMMIT_ID}/bin/tool.exe", times=10)

        outcome = orchestrator.run(_descriptors("README.md", "bin/tool.exe"), local_fallback=False)

        assert outcome.kind == OutcomeKind.ABORTED
        assert isinstance(outcome.error, DownloadError)
        assert local.read_bytes() == b"# old readme\n"
        assert not _local(sync_config, "bin/tool.exe").exists()
        assert list(sync_config.download.staging_root.iterdir()) == []

    def test_publish_failure(self, orchestrator, repo, sync_config) -> None:
        orchestrator.publisher = Mock(last_error=OSError("disk full"))
        orchestrator.publisher.publish_files.return_value = False

        outcome = orchestrator.run(_descriptors("README.md"), local_fallback=False)

        assert outcome.kind == OutcomeKind.ABORTED
        assert isinstance(outcome.error, PublishError)
        assert "disk full" in outcome.reason
        assert list(sync_config.download.staging_root.iterdir()) == []

    def test_budget_gate(self, orchestrator, repo) -> None:
        """Test that a batch needing more calls than remain never starts resolving."""
        repo.rate_remaining = 3

        outcome = orchestrator.run(_descriptors("README.md", "bin/tool.exe", "bin/lib/helper.dll"), local_fallback=False)

        assert outcome.kind == OutcomeKind.ABORTED
        assert isinstance(outcome.error, RateLimitedError)
        assert SyncState.RESOLVING_INFO not in outcome.states
        assert [r.url.path for r in repo.api_requests] == ["/rate_limit"]


class TestRunFallback:
    """Test the offline fallback of file batches."""

    def test_offline_with_complete_local_copy(self, client, fake_github, sync_config) -> None:
        """Test LOCAL_RUN with zero network calls when everything is present."""
        for path in ("bin/tool.exe", "README.md"):
            local = _local(sync_config, path)
            local.parent.mkdir(parents=True, exist_ok=True)
            local.write_bytes(b"cached")
        offline = make_orchestrator(sync_config, client, online=False)

        outcome = offline.run(_descriptors("bin/tool.exe", "README.md"))

        assert outcome.kind == OutcomeKind.LOCAL_RUN
        assert outcome.ok is True
        assert fake_github.requests == []
        assert isinstance(outcome.error, NetworkUnavailableError)
        assert outcome.states == [SyncState.START, SyncState.WAITING_FOR_CONNECTIVITY, SyncState.LOCAL_RUN]
        assert all(r.action == FileAction.SKIPPED for r in outcome.results)

    def test_offline_with_incomplete_local_copy(self, client, sync_config) -> None:
        local = _local(sync_config, "README.md")
        local.parent.mkdir(parents=True)
        local.write_bytes(b"cached")
        offline = make_orchestrator(sync_config, client, online=False)

        outcome = offline.run(_descriptors("bin/tool.exe", "README.md"))

        assert outcome.kind == OutcomeKind.ABORTED
        assert "incomplete" in outcome.reason

    def test_fallback_disabled(self, client, sync_config) -> None:
        local = _local(sync_config, "README.md")
        local.parent.mkdir(parents=True)
        local.write_bytes(b"cached")
        offline = make_orchestrator(sync_config, client, online=False)

        outcome = offline.run(_descriptors("README.md"), local_fallback=False)

        assert outcome.kind == OutcomeKind.ABORTED
        assert outcome.ok is False

    def test_fallback_after_health_failure(self, orchestrator, repo, sync_config) -> None:
        orchestrator.run(_descriptors("README.md"))
        repo.rate_remaining = 0

        outcome = orchestrator.run(_descriptors("README.md"))

        assert outcome.kind == OutcomeKind.LOCAL_RUN
        assert outcome.states[-2:] == [SyncState.CHECKING_HEALTH, SyncState.LOCAL_RUN]

    def test_local_complete(self, orchestrator, sync_config) -> None:
        descriptors = _descriptors("README.md")
        assert orchestrator.local_complete(descriptors) is False
        local = orchestrator.expected_path(descriptors[0])
        local.parent.mkdir(parents=True)
        local.write_bytes(b"")
        assert orchestrator.local_complete(descriptors) is True


# ==============================================================================
# Directory syncs
# ==============================================================================


class TestSyncDirectory:
    """Test BatchOrchestrator.sync_directory."""

    def test_first_sync(self, orchestrator, repo, tmp_path) -> None:
        dest = tmp_path / "dest"

        outcome = orchestrator.sync_directory("octocat", "tools", dest, ref="main")

        assert outcome.kind == OutcomeKind.UPDATED
        assert outcome.count(FileAction.DOWNLOADED) == len(FILES)
        for path, content in FILES.items():
            local = dest.joinpath(*path.split("/"))
            assert local.read_bytes() == content
            assert local.stat().st_mtime == COMMIT_TIME.timestamp()
        listing = orchestrator.listing_resolver.resolve("octocat", "tools", ref="main")
        assert verify_listing(listing, dest)

    def test_subpath(self, orchestrator, repo, tmp_path) -> None:
        dest = tmp_path / "dest"

        outcome = orchestrator.sync_directory("octocat", "tools", dest, ref="main", subpath="bin")

        assert sorted(p.relative_to(dest).as_posix() for p in dest.rglob("*") if p.is_file()) == [
            "lib/helper.dll",
            "tool.exe",
        ]
        assert {str(r.descriptor) for r in outcome.results} == {
            "octocat/tools:bin/tool.exe@main",
            "octocat/tools:bin/lib/helper.dll@main",
        }

    def test_partial_match_redownloads_full_listing(self, orchestrator, repo, tmp_path) -> None:
        """Test that one missing file stages the whole listing again."""
        dest = tmp_path / "dest"
        (dest / "bin").mkdir(parents=True)
        (dest / "bin" / "tool.exe").write_bytes(FILES["bin/tool.exe"])

        outcome = orchestrator.sync_directory("octocat", "tools", dest, ref="main")

        assert outcome.kind == OutcomeKind.UPDATED
        assert len(repo.raw_requests) == len(FILES)
        actions = {r.local_path.relative_to(dest).as_posix(): r.action for r in outcome.results}
        assert actions["bin/tool.exe"] == FileAction.SKIPPED
        assert actions["README.md"] == FileAction.DOWNLOADED

    def test_matching_directory_downloads_nothing(self, orchestrator, repo, tmp_path) -> None:
        dest = tmp_path / "dest"
        orchestrator.sync_directory("octocat", "tools", dest, ref="main")
        downloads = len(repo.raw_requests)

        outcome = orchestrator.sync_directory("octocat", "tools", dest, ref="main")

        assert outcome.kind == OutcomeKind.UPDATED
        assert outcome.count(FileAction.SKIPPED) == len(FILES)
        assert len(repo.raw_requests) == downloads

    def test_truncated_listing_aborts(self, orchestrator, repo, tmp_path) -> None:
        dest = tmp_path / "dest"
        repo.add_json(
            f"/repos/octocat/tools/git/trees/{tree_id('octocat', 'tools', '')}",
            {"tree": [], "truncated": True},
            params={"recursive": "1"},
        )

        outcome = orchestrator.sync_directory("octocat", "tools", dest, ref="main", local_fallback=False)

        assert outcome.kind == OutcomeKind.ABORTED
        assert isinstance(outcome.error, TruncatedError)
        assert not dest.exists()

    def test_manifest_saved(self, orchestrator, repo, tmp_path) -> None:
        dest = tmp_path / "dest"
        orchestrator.sync_directory("octocat", "tools", dest, ref="main")

        key = orchestrator.manifests.key("octocat", "tools", "main", None, dest)
        manifest = orchestrator.manifests.load(key)
        assert manifest is not None
        assert manifest.commit_id == COMMIT_ID


class TestSyncDirectoryFallback:
    """Test the offline fallback of directory syncs."""

    def test_offline_uses_cached_manifest(self, orchestrator, repo, client, sync_config, tmp_path) -> None:
        dest = tmp_path / "dest"
        orchestrator.sync_directory("octocat", "tools", dest, ref="main")
        repo.requests.clear()
        offline = make_orchestrator(sync_config, client, online=False)

        outcome = offline.sync_directory("octocat", "tools", dest, ref="main")

        assert outcome.kind == OutcomeKind.LOCAL_RUN
        assert len(outcome.results) == len(FILES)
        assert repo.requests == []

    def test_offline_with_missing_file(self, orchestrator, repo, client, sync_config, tmp_path) -> None:
        dest = tmp_path / "dest"
        orchestrator.sync_directory("octocat", "tools", dest, ref="main")
        (dest / "README.md").unlink()
        offline = make_orchestrator(sync_config, client, online=False)

        outcome = offline.sync_directory("octocat", "tools", dest, ref="main")

        assert outcome.kind == OutcomeKind.ABORTED
        assert "incomplete" in outcome.reason

    def test_offline_without_manifest(self, client, sync_config, tmp_path) -> None:
        dest = tmp_path / "dest"
        dest.mkdir()
        (dest / "README.md").write_bytes(b"whatever")
        offline = make_orchestrator(sync_config, client, online=False)

        outcome = offline.sync_directory("octocat", "tools", dest, ref="main")

        assert outcome.kind == OutcomeKind.ABORTED
