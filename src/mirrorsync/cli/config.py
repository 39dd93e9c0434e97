"""Configuration utilities for the mirrorsync CLI.

Defaults live in ~/.mirrorsync/config.json (directory overridable with
MIRRORSYNC_CONFIG_DIR). Command-line options win over the file; list
settings (ignore patterns, rsync options) are concatenated.

Example config.json:
    {
        "rsync_path": "/usr/local/bin/rsync",
        "retry_delay": 2.0,
        "ignore": ["*.swp", "node_modules/"],
        "rsync_options": ["--compress"]
    }
"""

from __future__ import annotations

import json
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from mirrorsync.core.config import MirrorConfig, TargetLocation
from mirrorsync.sync.retry import DEFAULT_RETRY_DELAY
from mirrorsync.sync.types import InvalidConfigurationError

CONFIG_DIR_ENV = "MIRRORSYNC_CONFIG_DIR"


def get_config_dir() -> Path:
    """Get the configuration directory for mirrorsync.

    Returns:
        Path from MIRRORSYNC_CONFIG_DIR, or ~/.mirrorsync.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".mirrorsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file.

    Raises:
        InvalidConfigurationError: If the file is not a JSON object
    """
    config_file = get_config_file()
    if not config_file.exists():
        return {}

    try:
        data = json.loads(config_file.read_text())
    except (OSError, ValueError) as e:
        raise InvalidConfigurationError(f"Cannot read {config_file}: {e}") from e
    if not isinstance(data, dict):
        raise InvalidConfigurationError(f"{config_file} must contain a JSON object")
    return data


def _string_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvalidConfigurationError(f"Config key {key!r} must be a list of strings")
    return list(value)


def build_config(
    source: str | Path | None,
    target: str | None,
    retry_delay: float | None = None,
    rsync_path: str | None = None,
    rsync_options: Sequence[str] = (),
    ignore_patterns: Sequence[str] = (),
    reconcile: bool | None = None,
    watcher: str | None = None,
    watch_command: Sequence[str] = (),
) -> MirrorConfig:
    """Merge command-line values over the config file into a MirrorConfig.

    Raises:
        InvalidConfigurationError: If source, target or any setting is invalid
    """
    if not source:
        raise InvalidConfigurationError("Source directory is required")
    if not target or not target.strip():
        raise InvalidConfigurationError("Target must not be empty")

    file_config = load_config()

    if retry_delay is None:
        try:
            retry_delay = float(file_config.get("retry_delay", DEFAULT_RETRY_DELAY))
        except (TypeError, ValueError) as e:
            raise InvalidConfigurationError(f"Config key 'retry_delay' must be a number: {e}") from e
    if reconcile is None:
        reconcile = bool(file_config.get("reconcile", True))

    return MirrorConfig(
        source=Path(source),
        target=TargetLocation.parse(target),
        retry_delay=retry_delay,
        rsync_path=rsync_path or str(file_config.get("rsync_path", "rsync")),
        rsync_options=[
            *_string_list(file_config.get("rsync_options"), "rsync_options"),
            *rsync_options,
        ],
        ignore_patterns=[
            *_string_list(file_config.get("ignore"), "ignore"),
            *ignore_patterns,
        ],
        reconcile=reconcile,
        watcher=watcher or ("command" if watch_command else str(file_config.get("watcher", "watchdog"))),
        watch_command=list(watch_command),
    )
