"""Single-flight, change-coalescing sync scheduler.

This module provides:
- SyncScheduler: Owns the scheduler state machine and the sync worker thread

The scheduler is the only place that decides whether a synchronization pass
runs. State transitions:

    | State           | Event           | Next            | Action                   |
    |-----------------|-----------------|-----------------|--------------------------|
    | IDLE            | request_sync    | RUNNING         | Start worker, cancel     |
    |                 |                 |                 | reconciliation           |
    | RUNNING         | request_sync    | RUNNING_PENDING | Record pending           |
    | RUNNING_PENDING | request_sync    | RUNNING_PENDING | Absorbed                 |
    | RUNNING         | worker drained  | IDLE            | Trigger reconciliation   |
    | RUNNING_PENDING | worker drained  | RUNNING         | Worker takes a new batch |

However many requests arrive during a pass, at most one follow-up pass runs,
and its batch covers every path appended before it was taken.

The worker retries a failed batch after a fixed delay without re-taking the
queue, so a stuck target never makes the batch grow.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from mirrorsync.sync.retry import DEFAULT_RETRY_DELAY, retry_until_success
from mirrorsync.sync.types import (
    SchedulerState,
    SchedulerStats,
    TransferOutcome,
    TransferResult,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from mirrorsync.sync.queue import ChangeQueue
    from mirrorsync.sync.reconciler import PeriodicReconciler
    from mirrorsync.sync.transfer import TransferEngine

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Coalesces sync requests into at most one running pass plus one follow-up.

    Usage:
        queue = ChangeQueue()
        engine = RsyncTransferEngine(source, destination)
        scheduler = SyncScheduler(queue, engine, reconciler=PeriodicReconciler(engine))

        # From the watch adapter, for every change:
        queue.append(path)
        scheduler.request_sync()

        # On shutdown:
        scheduler.stop()
    """

    def __init__(
        self,
        queue: ChangeQueue,
        engine: TransferEngine,
        reconciler: PeriodicReconciler | None = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        """Initialize the scheduler.

        Args:
            queue: Change queue drained by the worker
            engine: Transfer engine for path passes
            reconciler: Optional reconciler triggered on quiescence
            retry_delay: Seconds between attempts of a failed batch
        """
        self._queue = queue
        self._engine = engine
        self._reconciler = reconciler
        self._retry_delay = retry_delay

        # State
        self._state = SchedulerState.IDLE
        self._lock = threading.Lock()
        self._state_changed = threading.Condition(self._lock)
        self._stop_event = threading.Event()

        # Worker thread
        self._thread: threading.Thread | None = None

        # Stats
        self._stats = SchedulerStats()

        # Callbacks
        self._on_pass_complete: Callable[[TransferResult], None] | None = None
        self._on_idle: Callable[[], None] | None = None

    @property
    def state(self) -> SchedulerState:
        """Get current scheduler state."""
        with self._lock:
            return self._state

    @property
    def is_idle(self) -> bool:
        """Check if no pass is running or owed."""
        return self.state == SchedulerState.IDLE

    @property
    def stats(self) -> SchedulerStats:
        """Get scheduler statistics."""
        return self._stats

    @property
    def retry_delay(self) -> float:
        """Get the delay between attempts of a failed batch."""
        return self._retry_delay

    def set_on_pass_complete(
        self,
        callback: Callable[[TransferResult], None],
    ) -> None:
        """Set callback for each successfully synced batch."""
        self._on_pass_complete = callback

    def set_on_idle(self, callback: Callable[[], None]) -> None:
        """Set callback for RUNNING -> IDLE transitions.

        Called with the scheduler lock held; must not block or call back
        into the scheduler.
        """
        self._on_idle = callback

    def request_sync(self) -> None:
        """Request a synchronization pass. O(1), never blocks on I/O."""
        with self._lock:
            if self._stop_event.is_set():
                return

            self._stats.requests += 1

            if self._state == SchedulerState.IDLE:
                self._state = SchedulerState.RUNNING
                self._state_changed.notify_all()
                if self._reconciler is not None:
                    self._reconciler.cancel()
                self._start_worker()
            elif self._state == SchedulerState.RUNNING:
                self._state = SchedulerState.RUNNING_PENDING
                self._state_changed.notify_all()
                logger.debug("Sync requested while running: follow-up pass recorded")
            # RUNNING_PENDING: already owed one pass

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until the scheduler is IDLE.

        Args:
            timeout: Maximum seconds to wait (None = wait forever)

        Returns:
            True if IDLE was reached, False on timeout
        """
        with self._state_changed:
            return self._state_changed.wait_for(
                lambda: self._state == SchedulerState.IDLE,
                timeout=timeout,
            )

    def stop(self, timeout: float = 5.0) -> None:
        """Stop accepting requests and let the worker exit.

        A worker waiting to retry is woken immediately. A worker inside an
        engine call exits once that call returns.

        Args:
            timeout: Maximum time to wait for the worker thread
        """
        with self._lock:
            if self._stop_event.is_set():
                return
            self._stop_event.set()
            thread = self._thread
            logger.info("Scheduler stopping...")

        if thread is not None and thread.is_alive():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Sync worker still running after %.1fs", timeout)

        self._queue.clear()
        logger.info("Scheduler stopped")

    def _start_worker(self) -> None:
        """Launch the worker thread. Caller holds the lock."""
        self._stats.workers_started += 1
        self._thread = threading.Thread(
            target=self._run_worker,
            name="SyncWorker",
            daemon=True,
        )
        self._thread.start()

    def _run_worker(self) -> None:
        """Worker loop: drain the queue until no follow-up pass is owed."""
        logger.debug("Sync worker started")

        while True:
            batch = self._queue.take_and_reset()
            if batch:
                self._sync_batch(batch)

            with self._lock:
                if self._stop_event.is_set():
                    self._state = SchedulerState.IDLE
                    self._state_changed.notify_all()
                    break

                if self._state == SchedulerState.RUNNING_PENDING:
                    self._state = SchedulerState.RUNNING
                    self._state_changed.notify_all()
                    continue

                self._state = SchedulerState.IDLE
                self._state_changed.notify_all()
                if self._reconciler is not None:
                    self._reconciler.trigger()
                if self._on_idle:
                    self._on_idle()
                break

        logger.debug("Sync worker finished")

    def _sync_batch(self, batch: list[str]) -> None:
        """Push one batch through the engine, retrying until it succeeds."""
        logger.info("Syncing %d changed path(s)", len(batch))

        def attempt() -> TransferResult:
            self._stats.transfer_calls += 1
            try:
                return self._engine.path_sync(batch)
            except Exception as e:
                # Engine raised instead of reporting an exit status; the
                # batch is kept and retried like any fatal failure
                logger.exception("Sync of %d path(s) crashed", len(batch))
                return TransferResult(
                    outcome=TransferOutcome.FATAL_FAILURE,
                    exit_code=-1,
                    paths=tuple(batch),
                    stderr=f"{type(e).__name__}: {e}",
                )

        def on_failure(result: TransferResult, attempt_number: int) -> None:
            if result.outcome == TransferOutcome.TRANSIENT_FAILURE:
                self._stats.transient_failures += 1
            else:
                self._stats.fatal_failures += 1

        result = retry_until_success(
            attempt,
            delay=self._retry_delay,
            stop_event=self._stop_event,
            on_failure=on_failure,
            description=f"sync of {len(batch)} path(s)",
        )

        if not result.ok:
            logger.warning("Abandoned batch of %d path(s) at shutdown", len(batch))
            return

        self._stats.passes_completed += 1
        self._stats.paths_synced += len(batch)
        logger.info("Synced %d path(s) in %.1fs", len(batch), result.elapsed_time)

        if self._on_pass_complete:
            self._on_pass_complete(result)
