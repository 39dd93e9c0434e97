"""Core module - Configuration shared by the CLI and the sync service."""

from mirrorsync.core.config import WATCHERS, MirrorConfig, TargetLocation

__all__ = [
    "MirrorConfig",
    "TargetLocation",
    "WATCHERS",
]
