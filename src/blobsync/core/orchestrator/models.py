"""
Data models for sync orchestration.

Defines the file descriptors a caller asks for, the per-file results, and
the outcome of a batch.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class SyncState(str, Enum):
    """States of the orchestration state machine."""

    START = "start"
    WAITING_FOR_CONNECTIVITY = "waiting_for_connectivity"
    CHECKING_HEALTH = "checking_health"
    RESOLVING_INFO = "resolving_info"
    SAVING = "saving"
    UPDATED = "updated"
    LOCAL_RUN = "local_run"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (SyncState.UPDATED, SyncState.LOCAL_RUN, SyncState.ABORTED)


class OutcomeKind(str, Enum):
    """How a batch ended."""

    UPDATED = "updated"
    LOCAL_RUN = "local_run"
    ABORTED = "aborted"


class FileAction(str, Enum):
    """What happened to one file."""

    SKIPPED = "skipped"
    DOWNLOADED = "downloaded"
    UPDATED = "updated"


class FileDescriptor(BaseModel):
    """
    A remote file the caller wants kept in sync.

    Example:
        >>> FileDescriptor.parse("octocat/tools:bin/tool.exe@v2")
        FileDescriptor(owner='octocat', repo='tools', path='bin/tool.exe', ref='v2')
    """

    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1)
    ref: str | None = Field(default=None, description="Branch, tag or commit; default branch when None")

    @classmethod
    def parse(cls, spec: str) -> FileDescriptor:
        """
        Parse ``owner/repo:path[@ref]``.

        Raises:
            ValueError: If the descriptor is malformed
        """
        repo_part, sep, path_part = spec.partition(":")
        if not sep:
            raise ValueError(f"Expected owner/repo:path[@ref], got '{spec}'")
        owner, slash, repo = repo_part.partition("/")
        if not slash or not owner or not repo or "/" in repo:
            raise ValueError(f"Expected owner/repo before ':', got '{repo_part}'")

        path, at, ref = path_part.rpartition("@")
        if not at:
            path, ref = path_part, ""
        path = path.strip("/")
        if not path:
            raise ValueError(f"Missing file path in '{spec}'")
        return cls(owner=owner, repo=repo, path=path, ref=ref or None)

    def __str__(self) -> str:
        suffix = f"@{self.ref}" if self.ref else ""
        return f"{self.owner}/{self.repo}:{self.path}{suffix}"


class FileResult(BaseModel):
    """Result for one file of a batch."""

    descriptor: FileDescriptor
    local_path: Path
    action: FileAction


class Outcome(BaseModel):
    """
    Outcome of an orchestration call.

    ``error`` is the failure that sent the batch to the fallback path or
    aborted it; it is None for a successful update.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: OutcomeKind
    reason: str
    results: list[FileResult] = Field(default_factory=list)
    states: list[SyncState] = Field(default_factory=list)
    error: Exception | None = Field(default=None, exclude=True)

    @property
    def ok(self) -> bool:
        """True when the caller can proceed with the files on disk."""
        return self.kind != OutcomeKind.ABORTED

    def count(self, action: FileAction) -> int:
        return sum(1 for result in self.results if result.action == action)
