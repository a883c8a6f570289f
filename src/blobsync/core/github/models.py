"""
Remote data models for blobsync.

Defines immutable Pydantic models for tree listings, per-file commit
metadata, and the API rate-limit budget.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ItemKind(str, Enum):
    """Kind of a remote tree entry."""

    BLOB = "blob"
    TREE = "tree"


class RemoteItem(BaseModel):
    """
    One entry of a remote tree listing.

    ``object_id`` is the git object id of the entry; its length selects the
    hash algorithm used to verify it (40 hex chars for SHA-1, 64 for SHA-256).

    Example:
        >>> item = RemoteItem(
        ...     relative_path="bin/tool.exe",
        ...     native_path="bin/tool.exe",
        ...     kind=ItemKind.BLOB,
        ...     object_id="e69de29bb2d1d6434b8b29ae775ad8c2e48c5391",
        ...     size=0,
        ... )
        >>> item.segments
        ('bin', 'tool.exe')
    """

    model_config = ConfigDict(frozen=True)

    relative_path: str = Field(..., description="Slash-separated path relative to the listing root")
    native_path: str = Field(..., description="OS-native form of relative_path")
    kind: ItemKind = Field(..., description="blob or tree")
    object_id: str = Field(..., description="Hex object id")
    size: int = Field(default=0, ge=0, description="Blob size in bytes (0 for trees)")
    mode: str = Field(default="100644", description="Git file mode")
    mutable_url: str | None = Field(default=None, description="Ref-addressed download URL")
    pinned_url: str | None = Field(default=None, description="Commit-addressed download URL")

    @property
    def segments(self) -> tuple[str, ...]:
        return tuple(self.relative_path.split("/"))

    @property
    def download_url(self) -> str | None:
        """Pinned URL when present, otherwise the mutable one."""
        return self.pinned_url or self.mutable_url


class Listing(BaseModel):
    """
    Ordered, flat list of remote items under one ref and optional subpath.

    A Listing is only ever built from a complete remote response; the
    resolver raises TruncatedError instead of constructing one from a
    truncated tree, so ``truncated`` is False on every instance it returns.
    """

    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    ref: str = Field(..., description="Resolved ref name")
    commit_id: str = Field(..., description="Commit the listing was resolved from")
    commit_time: datetime | None = Field(default=None, description="Commit time (UTC)")
    subpath: str | None = Field(default=None, description="Listing root inside the repository")
    items: tuple[RemoteItem, ...] = Field(default_factory=tuple)
    truncated: bool = False

    def blobs(self) -> Iterator[RemoteItem]:
        """Iterate over blob items in listing order."""
        return (item for item in self.items if item.kind == ItemKind.BLOB)

    def __len__(self) -> int:
        return len(self.items)


class FileInfo(BaseModel):
    """
    Latest-commit metadata for a single remote file.

    ``last_commit_time`` is authoritative for local freshness comparisons.
    """

    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    path: str
    branch: str | None = Field(default=None, description="Requested ref, or the default branch")
    last_commit_time: datetime
    commit_id: str
    message: str = ""
    html_url: str | None = None
    api_url: str | None = None
    mutable_url: str
    pinned_url: str

    @property
    def download_url(self) -> str:
        return self.pinned_url or self.mutable_url


class RateLimitStatus(BaseModel):
    """Remaining API call budget."""

    model_config = ConfigDict(frozen=True)

    limit: int = 0
    remaining: int = 0
    reset_at: datetime | None = None

    @property
    def healthy(self) -> bool:
        return self.remaining > 0


def parse_timestamp(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 API timestamp into an aware UTC datetime.

    Example:
        >>> parse_timestamp("2024-01-02T03:04:05Z")
        datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
