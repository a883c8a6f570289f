"""
Cache of the last successfully published listing per directory sync.

The offline fallback of a directory sync has no network access, so it
checks the files named by the last listing that was published to the same
destination.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from blobsync.core.github.models import Listing

logger = logging.getLogger(__name__)


class ManifestStore:
    """
    JSON manifests stored under ``state_dir/manifests``.

    Example:
        >>> store = ManifestStore(Path("~/.local/share/blobsync").expanduser())
        >>> key = store.key("octocat", "tools", "main", "bin", Path("tools"))
        >>> store.save(key, listing)
        >>> store.load(key).commit_id == listing.commit_id
        True
    """

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)

    @property
    def manifest_dir(self) -> Path:
        return self.state_dir / "manifests"

    @staticmethod
    def key(owner: str, repo: str, ref: str | None, subpath: str | None, dest: Path) -> str:
        """Stable key for one (remote source, destination) pair."""
        raw = "\n".join(
            [owner, repo, ref or "", (subpath or "").strip("/"), os.path.realpath(dest)]
        )
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def path_for(self, key: str) -> Path:
        return self.manifest_dir / f"{key}.json"

    def save(self, key: str, listing: Listing) -> bool:
        """Write the manifest atomically. Returns False (and logs) on I/O errors."""
        target = self.path_for(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=target.parent, prefix=".manifest_", suffix=".json.tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(listing.model_dump_json(indent=2))
                os.replace(temp_path, target)
            except BaseException:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise
        except OSError as e:
            logger.warning("Could not save manifest %s: %s", target, e)
            return False
        return True

    def load(self, key: str) -> Listing | None:
        """Load a manifest, or None if it is missing or unreadable."""
        path = self.path_for(key)
        try:
            return Listing.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable manifest %s: %s", path, e)
            return None


__all__ = ["ManifestStore"]
