"""Runtime configuration for mirrorsync.

This module defines the validated configuration objects built by the CLI and
consumed by MirrorService.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from mirrorsync.sync.retry import DEFAULT_RETRY_DELAY
from mirrorsync.sync.types import InvalidConfigurationError

# [user@]host:path, where host is not a single drive letter
_REMOTE_SHORTHAND = re.compile(
    r"^(?:(?P<user>[^@/:]+)@)?(?P<host>\[[^\]]+\]|[^@/:\[\]]{2,}):(?P<path>.*)$"
)

WATCHERS = ("watchdog", "inotifywait", "command")


@dataclass(frozen=True)
class TargetLocation:
    """A parsed rsync target descriptor.

    Attributes:
        raw: The descriptor as given by the operator.
        host: Remote host (None for local targets).
        user: Remote user, if given in the shorthand.
        path: Path on the target machine (or module path for rsync://).
    """

    raw: str
    host: str | None = None
    user: str | None = None
    path: str = ""

    @classmethod
    def parse(cls, descriptor: str) -> TargetLocation:
        """Parse a local path, [user@]host:path shorthand, or rsync:// URL.

        Raises:
            InvalidConfigurationError: If the descriptor is empty
        """
        raw = descriptor.strip()
        if not raw:
            raise InvalidConfigurationError("Target must not be empty")

        if raw.startswith("rsync://"):
            rest = raw[len("rsync://"):]
            authority, _, module_path = rest.partition("/")
            user, _, host = authority.rpartition("@")
            if not host:
                raise InvalidConfigurationError(f"Target has no host: {raw}")
            return cls(raw=raw, host=host, user=user or None, path=module_path)

        match = _REMOTE_SHORTHAND.match(raw)
        if match:
            return cls(
                raw=raw,
                host=match.group("host"),
                user=match.group("user"),
                path=match.group("path"),
            )

        return cls(raw=raw, path=str(Path(raw).expanduser()))

    @property
    def is_remote(self) -> bool:
        """Check if the target lives on another host."""
        return self.host is not None

    @property
    def rsync_destination(self) -> str:
        """Render the rsync destination argument, with a trailing slash."""
        dest = self.raw if self.is_remote else self.path
        return dest if dest.endswith("/") or dest.endswith(":") else dest + "/"


@dataclass
class MirrorConfig:
    """Validated configuration for one source/target pair.

    Attributes:
        source: Local directory to mirror.
        target: Where to mirror it.
        retry_delay: Seconds between attempts of a failed transfer.
        rsync_path: rsync executable.
        rsync_options: Extra rsync arguments.
        ignore_patterns: Paths never synced incrementally, passed as --exclude.
        reconcile: Run a full pass after each incremental cycle.
        watcher: "watchdog", "inotifywait" or "command".
        watch_command: Command line for watcher="command".
    """

    source: Path
    target: TargetLocation
    retry_delay: float = DEFAULT_RETRY_DELAY
    rsync_path: str = "rsync"
    rsync_options: list[str] = field(default_factory=list)
    ignore_patterns: list[str] = field(default_factory=list)
    reconcile: bool = True
    watcher: str = "watchdog"
    watch_command: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Normalize paths and validate.

        Raises:
            InvalidConfigurationError: On any invalid setting
        """
        if isinstance(self.target, str):
            self.target = TargetLocation.parse(self.target)

        self.source = Path(self.source).expanduser().resolve()
        if not self.source.is_dir():
            raise InvalidConfigurationError(f"Source is not a directory: {self.source}")
        if not os.access(self.source, os.R_OK | os.X_OK):
            raise InvalidConfigurationError(f"Source is not readable: {self.source}")

        if not self.target.is_remote:
            target_path = Path(self.target.path).resolve()
            if target_path == self.source:
                raise InvalidConfigurationError("Target must differ from source")
            # Writes to the target would be watched and re-synced forever
            if target_path.is_relative_to(self.source):
                raise InvalidConfigurationError(
                    f"Target must not be inside the source: {target_path}"
                )

        if self.retry_delay < 0:
            raise InvalidConfigurationError(
                f"Retry delay must not be negative: {self.retry_delay}"
            )

        if self.watcher not in WATCHERS:
            raise InvalidConfigurationError(
                f"Unknown watcher {self.watcher!r} (expected one of {', '.join(WATCHERS)})"
            )
        if self.watcher == "command" and not self.watch_command:
            raise InvalidConfigurationError("Watcher 'command' needs a watch command")
