"""Shared types and dataclasses for mirror synchronization.

This module provides:
- MirrorSyncError and its subclasses: the error taxonomy
- SchedulerState: The sync scheduler state machine states
- TransferOutcome, TransferResult: Transfer engine results
- ChangeKind, WatchEvent: Normalized watch source events
- SchedulerStats, ReconcilerStats, WatchStats: Counters for logging and tests
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum, auto


class MirrorSyncError(Exception):
    """Base exception for mirrorsync errors."""


class InvalidConfigurationError(MirrorSyncError):
    """Source or target is unusable; raised before any watching begins."""


class WatchSourceError(MirrorSyncError):
    """The change-notification mechanism exited or could not start."""


class MalformedWatchEventError(MirrorSyncError):
    """A single watch notification could not be parsed."""

    def __init__(self, line: str, reason: str) -> None:
        self.line = line
        self.reason = reason
        super().__init__(f"Malformed watch event ({reason}): {line!r}")


# =============================================================================
# Scheduler Types
# =============================================================================


class SchedulerState(IntEnum):
    """State of the sync scheduler.

    IDLE is the quiescent rest state. RUNNING_PENDING means a change was
    reported while a pass was executing and one follow-up pass is owed.
    """

    IDLE = auto()
    RUNNING = auto()
    RUNNING_PENDING = auto()


@dataclass
class SchedulerStats:
    """Statistics for the sync scheduler."""

    requests: int = 0
    workers_started: int = 0
    passes_completed: int = 0
    transfer_calls: int = 0
    transient_failures: int = 0
    fatal_failures: int = 0
    paths_synced: int = 0


# =============================================================================
# Transfer Types
# =============================================================================


class TransferOutcome(IntEnum):
    """Tri-state transfer result, plus cancellation for full passes."""

    SUCCESS = auto()
    TRANSIENT_FAILURE = auto()
    FATAL_FAILURE = auto()
    CANCELLED = auto()


@dataclass
class TransferResult:
    """Result of a single transfer engine invocation.

    Attributes:
        outcome: Classified outcome
        exit_code: Raw exit status of the engine (negative if killed by signal)
        paths: Paths covered by the call (empty for full passes)
        elapsed_time: Wall-clock seconds spent in the engine
        stderr: Tail of the engine's diagnostic output
    """

    outcome: TransferOutcome
    exit_code: int = 0
    paths: tuple[str, ...] = ()
    elapsed_time: float = 0.0
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Check if the transfer succeeded."""
        return self.outcome == TransferOutcome.SUCCESS


@dataclass
class ReconcilerStats:
    """Statistics for the periodic reconciler."""

    triggered: int = 0
    started: int = 0
    completed: int = 0
    cancelled: int = 0
    failed: int = 0


# =============================================================================
# Watch Types
# =============================================================================


class ChangeKind(str, Enum):
    """Kind of filesystem change reported by a watch source.

    The kind is informational only: every kind results in the path being
    queued and a sync being requested.
    """

    MODIFY = "modify"
    MOVE = "move"
    CREATE = "create"
    DELETE = "delete"
    ATTRIB = "attrib"
    CLOSE_WRITE = "close_write"


@dataclass(frozen=True)
class WatchEvent:
    """A normalized watch event.

    Attributes:
        kind: What happened
        path: Path relative to the source root, forward slashes
        is_directory: Whether the watch source flagged a directory
    """

    kind: ChangeKind
    path: str
    is_directory: bool = field(default=False, compare=False)


@dataclass
class WatchStats:
    """Statistics for the watch adapter."""

    received: int = 0
    accepted: int = 0
    ignored: int = 0
    malformed: int = 0
