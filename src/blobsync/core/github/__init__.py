"""
GitHub remote access for blobsync.

Provides the REST client, listing and file-info resolvers, and the
remote data models.
"""

from blobsync.core.github.client import GitHubClient, quote_path
from blobsync.core.github.file_info import FileInfoResolver
from blobsync.core.github.listing import RemoteListingResolver, split_subpath
from blobsync.core.github.models import (
    FileInfo,
    ItemKind,
    Listing,
    RateLimitStatus,
    RemoteItem,
    parse_timestamp,
)

__all__ = [
    "FileInfo",
    "FileInfoResolver",
    "GitHubClient",
    "ItemKind",
    "Listing",
    "RateLimitStatus",
    "RemoteItem",
    "RemoteListingResolver",
    "parse_timestamp",
    "quote_path",
    "split_subpath",
]
