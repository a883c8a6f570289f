"""
blobsync - verified, atomic self-update from a hosted git repository

Synchronizes files from a GitHub repository into a local directory with
hash verification, all-or-nothing publishing and an offline fallback.
"""

__version__ = "0.4.0"

# Re-export the main entry points for convenience
from blobsync.core.config.models import BlobsyncConfig
from blobsync.core.orchestrator.models import FileDescriptor, Outcome, OutcomeKind
from blobsync.core.orchestrator.service import BatchOrchestrator

__all__ = [
    "BatchOrchestrator",
    "BlobsyncConfig",
    "FileDescriptor",
    "Outcome",
    "OutcomeKind",
    "__version__",
]
