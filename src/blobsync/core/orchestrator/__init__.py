"""
Sync orchestration: state machine, local layout and outcomes.
"""

from blobsync.core.orchestrator.layout import (
    clear_provenance,
    finalize_file,
    local_path_for,
    mtime_matches,
    normalize_timestamp,
)
from blobsync.core.orchestrator.manifest import ManifestStore
from blobsync.core.orchestrator.models import (
    FileAction,
    FileDescriptor,
    FileResult,
    Outcome,
    OutcomeKind,
    SyncState,
)
from blobsync.core.orchestrator.service import BatchOrchestrator

__all__ = [
    "BatchOrchestrator",
    "FileAction",
    "FileDescriptor",
    "FileResult",
    "ManifestStore",
    "Outcome",
    "OutcomeKind",
    "SyncState",
    "clear_provenance",
    "finalize_file",
    "local_path_for",
    "mtime_matches",
    "normalize_timestamp",
]
