"""
Local side of a sync: verification, staging and atomic publishing.
"""

from blobsync.core.publish.hashing import algorithm_for, git_object_id, verify_item, verify_listing
from blobsync.core.publish.lock import lock_path_for, publish_lock
from blobsync.core.publish.publisher import AtomicPublisher, PlanEntry, StagingPlan
from blobsync.core.publish.staging import StagingDownloader, discard

__all__ = [
    "AtomicPublisher",
    "PlanEntry",
    "StagingDownloader",
    "StagingPlan",
    "algorithm_for",
    "discard",
    "git_object_id",
    "lock_path_for",
    "publish_lock",
    "verify_item",
    "verify_listing",
]
