"""
Atomic, all-or-nothing publishing of staged files.

Publishing runs in two phases:

1. **Stage under destination.** Each staged file is copied to a uniquely
   named sibling temp file next to its final path, so the later rename never
   crosses a volume boundary.
2. **Commit, in order.** An existing destination is hard-linked (or copied)
   to a sibling backup and then atomically replaced; a new destination is
   renamed into place. On the first failure every committed entry is undone
   in reverse order and the remaining temps are removed.

After a failed call the final directory is observably identical to its
state before the call. After a successful one no temp or backup artifacts
remain. Only individual files are renamed, never directories.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from collections.abc import Iterable
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path

from blobsync.core.exceptions import IntegrityMismatchError
from blobsync.core.github.models import Listing
from blobsync.core.publish.hashing import verify_item, verify_listing
from blobsync.core.publish.lock import publish_lock

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"
BACKUP_SUFFIX = ".bak"


@dataclass
class PlanEntry:
    """One file moving from staging to its final destination."""

    source: Path
    destination: Path
    temp_path: Path | None = None
    backup_path: Path | None = None
    existed: bool = False
    committed: bool = False


@dataclass
class StagingPlan:
    """
    Per-call publishing plan.

    Owns its temp and backup files until commit or rollback disposes of them.
    ``created_dirs`` lists directories made by this call, parents first.
    """

    entries: list[PlanEntry] = field(default_factory=list)
    created_dirs: list[Path] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def artifacts(self) -> list[Path]:
        """Temp and backup files currently owned by the plan."""
        paths: list[Path] = []
        for entry in self.entries:
            if entry.temp_path is not None:
                paths.append(entry.temp_path)
            if entry.backup_path is not None:
                paths.append(entry.backup_path)
        return paths


def _sibling(destination: Path, suffix: str) -> Path:
    return destination.with_name(f".{destination.name}.{uuid.uuid4().hex[:12]}{suffix}")


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)


class AtomicPublisher:
    """
    Commit staged files into a final directory, all-or-nothing.

    The final directory must not be written by another publisher at the same
    time; with ``use_lock`` (the default) an advisory lock next to the final
    directory serializes publishers across threads and processes.

    Example:
        >>> publisher = AtomicPublisher()
        >>> if not publisher.publish(listing, staging_dir, Path("tools")):
        ...     print(f"rolled back: {publisher.last_error}")
    """

    def __init__(self, *, use_lock: bool = True) -> None:
        self.use_lock = use_lock
        self.last_error: BaseException | None = None

    def publish(self, listing: Listing, staging_dir: Path, final_dir: Path) -> bool:
        """
        Publish every blob of ``listing`` from ``staging_dir`` into ``final_dir``.

        Blobs whose destination already matches are left untouched, so
        republishing an unchanged listing performs no writes.

        Returns:
            True if every listed file now has its new content, False if the
            batch was rolled back

        Raises:
            IntegrityMismatchError: ``staging_dir`` does not match ``listing``;
                nothing is touched
        """
        staging_dir = Path(staging_dir)
        final_dir = Path(final_dir)
        if not verify_listing(listing, staging_dir):
            raise IntegrityMismatchError(
                f"Staged files in {staging_dir} do not match listing "
                f"{listing.owner}/{listing.repo}@{listing.commit_id[:12]}",
                staging_dir=str(staging_dir),
            )

        with self._lock(final_dir):
            pairs = [
                (staging_dir.joinpath(*item.segments), final_dir.joinpath(*item.segments))
                for item in listing.blobs()
                if not verify_item(item, final_dir)
            ]
            return self._publish_locked(pairs)

    def publish_files(self, files: Iterable[tuple[Path, Path]], final_dir: Path | None = None) -> bool:
        """
        Publish ``(staged_source, final_destination)`` pairs without hash checks.

        Args:
            files: Pairs in commit order
            final_dir: Directory to lock; the common parent of the
                destinations when None

        Returns:
            True on success, False if the batch was rolled back
        """
        pairs = [(Path(src), Path(dst)) for src, dst in files]
        if not pairs:
            return True
        if final_dir is None:
            final_dir = Path(os.path.commonpath([str(dst.parent) for _, dst in pairs]))
        with self._lock(Path(final_dir)):
            return self._publish_locked(pairs)

    def _lock(self, final_dir: Path) -> AbstractContextManager[object]:
        if self.use_lock:
            return publish_lock(final_dir)
        return nullcontext()

    def _publish_locked(self, pairs: list[tuple[Path, Path]]) -> bool:
        self.last_error = None
        if not pairs:
            logger.debug("Nothing to publish; destination already up to date")
            return True

        plan = StagingPlan(entries=[PlanEntry(source=src, destination=dst) for src, dst in pairs])
        try:
            self._stage_under_destination(plan)
        except OSError as e:
            self.last_error = e
            logger.error("Staging next to destination failed: %s", e)
            self._discard(plan)
            return False

        for index, entry in enumerate(plan.entries):
            try:
                self._commit_entry(entry)
            except OSError as e:
                self.last_error = e
                logger.error(
                    "Commit of %s failed (%d/%d); rolling back: %s",
                    entry.destination,
                    index + 1,
                    len(plan),
                    e,
                )
                self._rollback(plan)
                self._discard(plan)
                return False

        for entry in plan.entries:
            for path in (entry.backup_path, entry.temp_path):
                if path is not None:
                    _unlink_quietly(path)
        logger.info("Published %d file(s)", len(plan))
        return True

    def _stage_under_destination(self, plan: StagingPlan) -> None:
        for entry in plan.entries:
            parent = entry.destination.parent
            self._make_parents(parent, plan)

            if entry.destination.is_dir():
                raise IsADirectoryError(f"Destination is a directory: {entry.destination}")
            entry.existed = entry.destination.exists()

            fd, temp_name = tempfile.mkstemp(
                dir=parent, prefix=f".{entry.destination.name}.", suffix=TEMP_SUFFIX
            )
            os.close(fd)
            entry.temp_path = Path(temp_name)
            shutil.copyfile(entry.source, entry.temp_path)
            if entry.existed:
                shutil.copymode(entry.destination, entry.temp_path)
            else:
                shutil.copymode(entry.source, entry.temp_path)

    @staticmethod
    def _make_parents(directory: Path, plan: StagingPlan) -> None:
        missing: list[Path] = []
        current = directory
        while not current.exists():
            missing.append(current)
            if current.parent == current:
                break
            current = current.parent
        for path in reversed(missing):
            path.mkdir()
            plan.created_dirs.append(path)

    def _commit_entry(self, entry: PlanEntry) -> None:
        """Swap one staged temp file into place."""
        if entry.temp_path is None:
            raise FileNotFoundError(f"No staged temp file for {entry.destination}")
        if entry.existed:
            # Owned before it exists so a partial copy is still discarded
            entry.backup_path = _sibling(entry.destination, BACKUP_SUFFIX)
            try:
                os.link(entry.destination, entry.backup_path)
            except OSError:
                shutil.copy2(entry.destination, entry.backup_path)
        os.replace(entry.temp_path, entry.destination)
        entry.temp_path = None
        entry.committed = True

    def _rollback(self, plan: StagingPlan) -> None:
        for entry in reversed(plan.entries):
            if not entry.committed:
                continue
            try:
                if entry.existed and entry.backup_path is not None:
                    os.replace(entry.backup_path, entry.destination)
                    entry.backup_path = None
                else:
                    entry.destination.unlink()
                entry.committed = False
            except OSError as e:
                logger.error("Rollback of %s failed: %s", entry.destination, e)

    def _discard(self, plan: StagingPlan) -> None:
        for entry in plan.entries:
            if entry.temp_path is not None:
                _unlink_quietly(entry.temp_path)
            if entry.backup_path is None:
                continue
            if entry.committed:
                # Rollback failed; the backup is the only copy of the old content
                logger.error("Keeping backup %s of %s", entry.backup_path, entry.destination)
            else:
                _unlink_quietly(entry.backup_path)
        for directory in reversed(plan.created_dirs):
            try:
                directory.rmdir()
            except OSError:
                logger.debug("Leaving non-empty directory %s", directory)


__all__ = ["AtomicPublisher", "PlanEntry", "StagingPlan", "BACKUP_SUFFIX", "TEMP_SUFFIX"]
