"""
Configuration data models for blobsync.

These models define the structure of .blobsync.json and
~/.config/blobsync/config.json files, with validation and type safety via
Pydantic.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GitHubConfig(BaseModel):
    """
    Remote endpoints and credentials.

    An optional bearer token raises the API call budget; without one the
    remote applies its unauthenticated rate limit.
    """
    api_url: str = Field(
        default="https://api.github.com",
        description="Base URL of the REST API"
    )
    raw_url: str = Field(
        default="https://raw.githubusercontent.com",
        description="Base URL of the raw-content host"
    )
    token: Optional[str] = Field(
        default=None,
        description="Bearer token used for API and raw-content requests"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout for a single API request"
    )
    user_agent: str = Field(
        default="blobsync",
        description="User-Agent header sent with every request"
    )

    @field_validator("api_url", "raw_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class ConnectivityConfig(BaseModel):
    """
    Pre-flight connectivity settings.

    The probe URL must answer with 204 No Content (200 is also accepted).
    """
    probe_url: str = Field(
        default="https://www.gstatic.com/generate_204",
        description="Lightweight URL probed to confirm internet access"
    )
    probe_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Timeout for the probe request"
    )
    wait_timeout_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Overall time to wait for connectivity before giving up"
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="Fixed delay between connectivity checks"
    )


class DownloadConfig(BaseModel):
    """Staging download behavior."""
    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per file before the staging step fails"
    )
    retry_delay_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Fixed delay between download attempts"
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Timeout for a single download"
    )
    staging_root: Optional[Path] = Field(
        default=None,
        description="Parent directory for staging directories (system temp when unset)"
    )


class SyncConfig(BaseModel):
    """
    Local layout and orchestration behavior.
    """
    local_root: Path = Field(
        default=Path("./blobsync-files"),
        description="Root directory for per-file syncs (root/owner/repo/path)"
    )
    branch_scoped: bool = Field(
        default=False,
        description="Insert the requested ref as a directory level under owner/repo"
    )
    local_fallback: bool = Field(
        default=True,
        description="Fall back to existing local files when the remote is unusable"
    )
    mtime_tolerance_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Tolerance when comparing local mtimes to commit times"
    )
    use_lock: bool = Field(
        default=True,
        description="Hold an advisory lock on the final directory while publishing"
    )
    state_dir: Optional[Path] = Field(
        default=None,
        description="Directory for cached listing manifests (XDG data dir when unset)"
    )


class BlobsyncConfig(BaseModel):
    """
    Top-level blobsync configuration.

    Loaded from defaults, user config, project config, and env vars.

    Example:
        >>> config = BlobsyncConfig(download=DownloadConfig(max_attempts=5))
        >>> config.download.max_attempts
        5
    """
    github: GitHubConfig = Field(
        default_factory=GitHubConfig,
        description="Remote endpoints and credentials"
    )
    connectivity: ConnectivityConfig = Field(
        default_factory=ConnectivityConfig,
        description="Pre-flight connectivity checks"
    )
    download: DownloadConfig = Field(
        default_factory=DownloadConfig,
        description="Staging download behavior"
    )
    sync: SyncConfig = Field(
        default_factory=SyncConfig,
        description="Local layout and orchestration"
    )

    model_config = ConfigDict(
        extra="allow",  # Allow extra fields for forward compatibility
        validate_assignment=True,
    )
