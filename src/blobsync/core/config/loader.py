"""
Configuration loading.

Sources are layered, lowest precedence first:

    built-in defaults < user config.json < project .blobsync.json < BLOBSYNC_* env

The result is validated once into a ``BlobsyncConfig`` and cached for the
life of the process (see ``clear_cache``).
"""

import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .models import BlobsyncConfig

logger = logging.getLogger(__name__)

USER_CONFIG_NAME = "config.json"
PROJECT_CONFIG_NAME = ".blobsync.json"

_config_cache: BlobsyncConfig | None = None


def _xdg_dir(variable: str, *fallback: str) -> Path:
    value = os.environ.get(variable)
    return Path(value) if value else Path.home().joinpath(*fallback)


def get_xdg_config_home() -> Path:
    """``$XDG_CONFIG_HOME``, or ``~/.config``."""
    return _xdg_dir("XDG_CONFIG_HOME", ".config")


def get_xdg_data_home() -> Path:
    """``$XDG_DATA_HOME``, or ``~/.local/share``."""
    return _xdg_dir("XDG_DATA_HOME", ".local", "share")


def get_user_config_path() -> Path:
    return get_xdg_config_home() / "blobsync" / USER_CONFIG_NAME


def get_project_config_path(cwd: Path | None = None) -> Path:
    return (cwd or Path.cwd()) / PROJECT_CONFIG_NAME


def get_default_state_dir() -> Path:
    """Where listing manifests are kept unless ``sync.state_dir`` is set."""
    return get_xdg_data_home() / "blobsync"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Return ``base`` updated with ``override``, recursing into nested dicts.

    Neither input is modified.

    Example:
        >>> deep_merge({"sync": {"local_fallback": True, "use_lock": True}},
        ...            {"sync": {"local_fallback": False}})
        {'sync': {'local_fallback': False, 'use_lock': True}}
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Read a JSON object from ``path``.

    A missing file, unreadable file or non-object document yields None;
    broken files are logged rather than raised so one bad layer does not
    prevent a sync.
    """
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() not in ("false", "0", "no", "off", "")


def _parse_attempts(raw: str) -> int:
    attempts = int(raw)
    if attempts < 1:
        raise ValueError(f"must be >= 1, got {attempts}")
    return attempts


# variable -> (section, key, parser)
_ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "BLOBSYNC_LOCAL_ROOT": ("sync", "local_root", str),
    "BLOBSYNC_LOCAL_FALLBACK": ("sync", "local_fallback", _parse_bool),
    "BLOBSYNC_DOWNLOAD_ATTEMPTS": ("download", "max_attempts", _parse_attempts),
}


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Overlay ``BLOBSYNC_*`` environment variables onto a config dict.

    ``BLOBSYNC_GITHUB_TOKEN`` (falling back to ``GITHUB_TOKEN``) sets
    ``github.token``. Values that fail to parse are logged and skipped.
    """
    overrides: dict[str, dict[str, Any]] = {}

    token = os.environ.get("BLOBSYNC_GITHUB_TOKEN") or os.environ.get("GITHUB_TOKEN")
    if token:
        overrides.setdefault("github", {})["token"] = token

    for variable, (section, key, parse) in _ENV_OVERRIDES.items():
        raw = os.environ.get(variable)
        if not raw:
            continue
        try:
            overrides.setdefault(section, {})[key] = parse(raw)
        except ValueError as e:
            logger.warning("Ignoring %s=%r: %s", variable, raw, e)

    return deep_merge(config_dict, overrides)


def get_default_config() -> dict[str, Any]:
    """Defaults that differ from, or are worth pinning over, the model defaults."""
    return {
        "connectivity": {"wait_timeout_seconds": 30.0, "poll_interval_seconds": 2.0},
        "download": {"max_attempts": 3, "retry_delay_seconds": 2.0},
        "sync": {"local_fallback": True, "mtime_tolerance_seconds": 2.0},
    }


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> BlobsyncConfig:
    """
    Build the effective configuration.

    Args:
        project_dir: Directory containing ``.blobsync.json`` (defaults to cwd)
        use_cache: Return the config from an earlier call when available

    Raises:
        ValidationError: If the merged layers fail validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()
    for path in (get_user_config_path(), get_project_config_path(project_dir)):
        layer = load_json_file(path)
        if layer:
            logger.debug("Applying config layer %s", path)
            merged = deep_merge(merged, layer)

    _config_cache = BlobsyncConfig.model_validate(apply_env_overrides(merged))
    return _config_cache


def clear_cache() -> None:
    """Forget the cached configuration so the next load re-reads every layer."""
    global _config_cache
    _config_cache = None
