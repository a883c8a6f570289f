"""
Local integrity verification against git object ids.

A blob's object id is the hash of ``b"blob " + str(size) + b"\\0" + content``.
Repositories in SHA-1 format use 40-character ids, SHA-256 repositories
use 64-character ids; the id length picks the algorithm.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from blobsync.core.github.models import Listing, RemoteItem

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_ALGORITHM_BY_LENGTH = {40: "sha1", 64: "sha256"}


def algorithm_for(object_id: str) -> str | None:
    """Hash algorithm implied by an object id's length, or None if unknown."""
    return _ALGORITHM_BY_LENGTH.get(len(object_id))


def git_object_id(path: Path, algorithm: str = "sha1") -> str:
    """
    Compute the git blob object id of a file by streaming its content.

    Args:
        path: File to hash
        algorithm: "sha1" or "sha256"

    Returns:
        Lowercase hex object id

    Raises:
        OSError: If the file cannot be read
    """
    size = path.stat().st_size
    digest = hashlib.new(algorithm)
    digest.update(b"blob " + str(size).encode("ascii") + b"\0")
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_item(item: RemoteItem, local_root: Path) -> bool:
    """Check one blob item against ``local_root``; never raises."""
    algorithm = algorithm_for(item.object_id)
    if algorithm is None:
        logger.debug("Unsupported object id length for %s: %s", item.relative_path, item.object_id)
        return False

    local = Path(local_root).joinpath(*item.segments)
    try:
        if not local.is_file():
            return False
        return git_object_id(local, algorithm) == item.object_id.lower()
    except OSError as e:
        logger.debug("Cannot hash %s: %s", local, e)
        return False


def verify_listing(listing: Listing, local_root: Path) -> bool:
    """
    Check that every blob in ``listing`` exists under ``local_root`` with a
    matching object id.

    Files under ``local_root`` that are not in the listing are ignored.
    Returns False on the first missing file, mismatch or I/O error; never
    raises.
    """
    for item in listing.blobs():
        if not verify_item(item, local_root):
            logger.debug("Integrity check failed for %s under %s", item.relative_path, local_root)
            return False
    return True


__all__ = ["algorithm_for", "git_object_id", "verify_item", "verify_listing"]
