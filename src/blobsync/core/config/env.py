"""
Layered ``.env`` loading.

A GitHub token usually lives in the user's ``.env`` while a project may pin
its own local root or fallback policy. Values are applied as:

  exported environment > project .env > user .env

Nothing read from a file replaces a variable the process already had.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


def default_user_env_path() -> Path:
    """``$XDG_CONFIG_HOME/blobsync/.env`` (``~/.config`` when unset)."""
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / "blobsync" / ".env"


def _collect(paths: Iterable[Path]) -> dict[str, str]:
    """Merge the given env files in order; later files win."""
    merged: dict[str, str] = {}
    for path in map(Path, paths):
        if not path.is_file():
            continue
        logger.debug("Reading environment from %s", path)
        merged.update({k: v for k, v in dotenv_values(path).items() if k and v is not None})
    return merged


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths: Iterable[Path] | None = None,
) -> None:
    """
    Populate ``os.environ`` from user and project ``.env`` files.

    Args:
        project_dir: Directory holding the project ``.env`` (defaults to cwd)
        user_env_paths: Override the user-level files
        project_env_paths: Override the project-level files
    """
    if user_env_paths is None:
        user_env_paths = [default_user_env_path()]
    if project_env_paths is None:
        project_env_paths = [(project_dir or Path.cwd()) / ".env"]

    exported = set(os.environ)
    values = _collect(user_env_paths)
    values.update(_collect(project_env_paths))

    for key, value in values.items():
        if key not in exported:
            os.environ[key] = value
