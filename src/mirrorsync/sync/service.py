"""Mirror service: wires the sync components together and supervises them.

Startup order:
1. Start the watch source, so changes made during the initial pass are queued
2. Run one conservative full sync (no deletions), retried until it succeeds
3. Incremental passes run as the watch source reports changes

The service fails (WatchSourceError) as soon as the watch source dies:
without notifications the incremental design cannot make progress.
No state survives the process; a restart always begins with a full pass.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from mirrorsync.sync.ignore import IGNORE_FILE_NAME, IgnorePatterns
from mirrorsync.sync.queue import ChangeQueue
from mirrorsync.sync.reconciler import PeriodicReconciler
from mirrorsync.sync.retry import retry_until_success
from mirrorsync.sync.scheduler import SyncScheduler
from mirrorsync.sync.transfer import RsyncTransferEngine
from mirrorsync.sync.types import TransferResult, WatchSourceError
from mirrorsync.sync.watcher import CommandWatchSource, FileWatcher, WatchAdapter

if TYPE_CHECKING:
    from mirrorsync.core.config import MirrorConfig
    from mirrorsync.sync.transfer import TransferEngine
    from mirrorsync.sync.watcher import WatchSource

logger = logging.getLogger(__name__)


class MirrorService:
    """Composition root for one source/target pair.

    Usage:
        service = MirrorService(config)
        try:
            service.start()
            service.run()
        finally:
            service.stop()
    """

    def __init__(
        self,
        config: MirrorConfig,
        engine: TransferEngine | None = None,
        watch_source: WatchSource | None = None,
    ) -> None:
        """Build all components.

        Args:
            config: Validated configuration.
            engine: Transfer engine (default: rsync built from config).
            watch_source: Watch source (default: chosen by config.watcher).
        """
        self._config = config

        self._ignore = IgnorePatterns(config.ignore_patterns)
        loaded = self._ignore.load_from_file(config.source / IGNORE_FILE_NAME)
        if loaded:
            logger.info("Loaded %d ignore pattern(s) from %s", loaded, IGNORE_FILE_NAME)

        self._engine: TransferEngine = engine or RsyncTransferEngine(
            source=config.source,
            destination=config.target.rsync_destination,
            rsync_path=config.rsync_path,
            extra_options=config.rsync_options,
            exclude_patterns=self._ignore.patterns,
        )
        self._queue = ChangeQueue()
        self._reconciler = PeriodicReconciler(self._engine) if config.reconcile else None
        self._scheduler = SyncScheduler(
            self._queue,
            self._engine,
            reconciler=self._reconciler,
            retry_delay=config.retry_delay,
        )
        self._adapter = WatchAdapter(
            config.source,
            self._queue,
            self._scheduler,
            ignore_patterns=self._ignore,
        )
        self._watch_source = watch_source or self._build_watch_source()
        self._stop_event = threading.Event()

    @property
    def queue(self) -> ChangeQueue:
        """Get the change queue."""
        return self._queue

    @property
    def scheduler(self) -> SyncScheduler:
        """Get the sync scheduler."""
        return self._scheduler

    @property
    def reconciler(self) -> PeriodicReconciler | None:
        """Get the reconciler, if enabled."""
        return self._reconciler

    @property
    def adapter(self) -> WatchAdapter:
        """Get the watch adapter."""
        return self._adapter

    @property
    def watch_source(self) -> WatchSource:
        """Get the watch source."""
        return self._watch_source

    @property
    def stopping(self) -> bool:
        """Check if stop was requested."""
        return self._stop_event.is_set()

    def _build_watch_source(self) -> WatchSource:
        if self._config.watcher == "inotifywait":
            return CommandWatchSource.inotifywait(self._adapter)
        if self._config.watcher == "command":
            return CommandWatchSource(self._adapter, self._config.watch_command)
        return FileWatcher(self._adapter)

    def start(self) -> TransferResult:
        """Start watching, then run the initial full sync.

        Returns:
            Result of the initial full sync (CANCELLED if stopped meanwhile)

        Raises:
            WatchSourceError: If the watch source cannot start
        """
        self._watch_source.start()
        logger.info(
            "Watching %s with %s",
            self._config.source,
            self._watch_source.describe(),
        )

        logger.info("Initial full sync to %s", self._config.target.raw)
        result = retry_until_success(
            lambda: self._engine.full_sync(
                exclude_deletes=True,
                cancel_check=self._stop_event.is_set,
            ),
            delay=self._config.retry_delay,
            stop_event=self._stop_event,
            description="initial full sync",
        )
        if result.ok:
            logger.info("Initial full sync completed in %.1fs", result.elapsed_time)
        return result

    def run(self, poll_interval: float = 1.0) -> None:
        """Supervise the watch source until stop is requested.

        Raises:
            WatchSourceError: If the watch source terminates
        """
        while not self._stop_event.wait(poll_interval):
            if not self._watch_source.is_alive:
                raise WatchSourceError(
                    f"Watch source terminated: {self._watch_source.describe()}"
                )

    def request_stop(self) -> None:
        """Ask run() and any in-progress initial sync to return. Non-blocking."""
        self._stop_event.set()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop all components and discard pending changes."""
        self._stop_event.set()
        self._watch_source.stop()
        self._scheduler.stop(timeout=timeout)
        if self._reconciler is not None:
            self._reconciler.stop(timeout=timeout)

    def summary(self) -> dict[str, Any]:
        """Collect counters from every component."""
        stats: dict[str, Any] = {
            "scheduler": self._scheduler.stats,
            "watch": self._adapter.stats,
            "queue": self._queue.stats(),
        }
        if self._reconciler is not None:
            stats["reconciler"] = self._reconciler.stats
        return stats

    def __enter__(self) -> MirrorService:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()
