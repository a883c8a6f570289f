"""
Local layout and file metadata helpers.

Synced files live at ``root/owner/repo[/ref]/path``. The layout is computed
from the caller's descriptor alone, so the offline fallback finds exactly
the paths an online run writes.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from blobsync.core.orchestrator.models import FileDescriptor

logger = logging.getLogger(__name__)

DEFAULT_REF_DIR = "HEAD"

# Extended attributes browsers and downloaders use to mark network provenance
PROVENANCE_XATTRS = (
    "user.xdg.origin.url",
    "user.xdg.referrer.url",
    "com.apple.quarantine",
)


def local_path_for(root: Path, descriptor: FileDescriptor, branch_scoped: bool = False) -> Path:
    """
    Expected local path of ``descriptor`` under ``root``.

    With ``branch_scoped``, the requested ref (or ``HEAD`` when none was
    requested) becomes a directory level below the repository.
    """
    parts = [descriptor.owner, descriptor.repo]
    if branch_scoped:
        parts.extend((descriptor.ref or DEFAULT_REF_DIR).split("/"))
    parts.extend(segment for segment in descriptor.path.split("/") if segment)
    return Path(root).joinpath(*parts)


def mtime_matches(path: Path, when: datetime, tolerance: float) -> bool:
    """True if ``path`` exists and its mtime is within ``tolerance`` seconds of ``when``."""
    try:
        mtime = path.stat().st_mtime
    except OSError:
        return False
    return abs(mtime - when.timestamp()) <= tolerance


def normalize_timestamp(path: Path, when: datetime) -> None:
    """Set access and modification time of ``path`` to ``when``."""
    stamp = when.timestamp()
    os.utime(path, (stamp, stamp))


def clear_provenance(path: Path) -> None:
    """
    Remove "downloaded from the network" markers from ``path``.

    A missing marker is not an error.
    """
    if sys.platform == "win32":
        stream = Path(f"{path}:Zone.Identifier")
        try:
            os.remove(stream)
        except OSError:
            pass
        return

    removexattr = getattr(os, "removexattr", None)
    if removexattr is None:
        return
    for name in PROVENANCE_XATTRS:
        try:
            removexattr(path, name)
        except OSError:
            pass


def finalize_file(path: Path, when: datetime | None) -> None:
    """Normalize the timestamp to the commit time and clear provenance markers."""
    if when is not None:
        normalize_timestamp(path, when)
    clear_provenance(path)


__all__ = [
    "DEFAULT_REF_DIR",
    "clear_provenance",
    "finalize_file",
    "local_path_for",
    "mtime_matches",
    "normalize_timestamp",
]
