"""Change-coalescing mirror synchronization.

Architecture:
    Watch source → WatchAdapter → ChangeQueue → SyncScheduler → TransferEngine

Components:
- **WatchAdapter**: Normalizes watch events, appends paths, requests syncs
- **ChangeQueue**: Double-buffered pending paths, deduplicated at swap time
- **SyncScheduler**: Single-flight state machine owning the sync worker
- **TransferEngine**: rsync adapter (full passes and path-list passes)
- **PeriodicReconciler**: Best-effort full pass after each quiescence
- **MirrorService**: Wires everything together and supervises the watch source
"""

from mirrorsync.sync.ignore import IGNORE_FILE_NAME, IgnorePatterns
from mirrorsync.sync.queue import ChangeQueue, dedupe
from mirrorsync.sync.reconciler import PeriodicReconciler
from mirrorsync.sync.retry import DEFAULT_RETRY_DELAY, retry_until_success
from mirrorsync.sync.scheduler import SyncScheduler
from mirrorsync.sync.service import MirrorService
from mirrorsync.sync.transfer import (
    TRANSIENT_EXIT_CODES,
    RsyncTransferEngine,
    TransferEngine,
    classify_exit_code,
)
from mirrorsync.sync.types import (
    ChangeKind,
    InvalidConfigurationError,
    MalformedWatchEventError,
    MirrorSyncError,
    ReconcilerStats,
    SchedulerState,
    SchedulerStats,
    TransferOutcome,
    TransferResult,
    WatchEvent,
    WatchSourceError,
    WatchStats,
)
from mirrorsync.sync.watcher import (
    CommandWatchSource,
    FileWatcher,
    WatchAdapter,
    WatchSource,
    parse_watch_line,
)

__all__ = [
    # Retry
    "DEFAULT_RETRY_DELAY",
    "retry_until_success",
    # Errors
    "InvalidConfigurationError",
    "MalformedWatchEventError",
    "MirrorSyncError",
    "WatchSourceError",
    # Types
    "ChangeKind",
    "ReconcilerStats",
    "SchedulerState",
    "SchedulerStats",
    "TransferOutcome",
    "TransferResult",
    "WatchEvent",
    "WatchStats",
    # Queue & scheduler
    "ChangeQueue",
    "SyncScheduler",
    "dedupe",
    # Transfer
    "RsyncTransferEngine",
    "TRANSIENT_EXIT_CODES",
    "TransferEngine",
    "classify_exit_code",
    # Reconciler & service
    "MirrorService",
    "PeriodicReconciler",
    # Watcher
    "CommandWatchSource",
    "FileWatcher",
    "IGNORE_FILE_NAME",
    "IgnorePatterns",
    "WatchAdapter",
    "WatchSource",
    "parse_watch_line",
]
