"""Best-effort full resync after each incremental cycle quiesces.

The watch source has blind spots (a directory created and populated before
it can be enumerated surfaces as a single directory event). After every
RUNNING -> IDLE transition the scheduler triggers one conservative full pass
(no delete propagation) to pick up what the incremental passes missed.

A new incremental sync request cancels the pass in flight and drops a
triggered pass that has not started yet. The next quiescence triggers a
fresh one. Convergence within one reconciliation is not guaranteed.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from mirrorsync.sync.types import ReconcilerStats, TransferOutcome

if TYPE_CHECKING:
    from mirrorsync.sync.transfer import TransferEngine

logger = logging.getLogger(__name__)


class PeriodicReconciler:
    """Runs at most one background full_sync at a time.

    Usage:
        reconciler = PeriodicReconciler(engine)
        scheduler = SyncScheduler(queue, engine, reconciler=reconciler)
    """

    def __init__(self, engine: TransferEngine) -> None:
        """Initialize the reconciler.

        Args:
            engine: Transfer engine used for the full passes
        """
        self._engine = engine
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._pending = False
        # Token for the next pass, and the token of the pass in flight
        self._cancel_event = threading.Event()
        self._running_cancel: threading.Event | None = None
        self._stopped = False
        self._stats = ReconcilerStats()

    @property
    def stats(self) -> ReconcilerStats:
        """Get reconciler statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if a reconciliation thread is alive."""
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def trigger(self) -> None:
        """Schedule one full pass. Never blocks."""
        with self._lock:
            if self._stopped:
                return

            self._stats.triggered += 1
            self._pending = True
            # Fresh token per trigger: cancelling an older pass must not
            # cancel this one
            self._cancel_event = threading.Event()

            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(
                    target=self._run,
                    name="PeriodicReconciler",
                    daemon=True,
                )
                self._thread.start()

    def cancel(self) -> bool:
        """Cancel the in-flight pass and drop any pass not yet started.

        Returns:
            True if there was something to cancel
        """
        with self._lock:
            had_work = self._pending or (
                self._thread is not None and self._thread.is_alive()
            )
            self._pending = False
            self._cancel_event.set()
            if self._running_cancel is not None:
                self._running_cancel.set()
        if had_work:
            logger.debug("Reconciliation superseded by incremental sync")
        return had_work

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for the reconciliation thread to finish.

        Args:
            timeout: Maximum seconds to wait (None = wait forever)

        Returns:
            True if no reconciliation is running on return
        """
        with self._lock:
            thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
            return not thread.is_alive()
        return True

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel any pass and refuse further triggers."""
        with self._lock:
            self._stopped = True
        self.cancel()
        if not self.wait(timeout=timeout):
            logger.warning("Reconciliation did not stop within %.1fs", timeout)

    def _run(self) -> None:
        """Reconciliation loop: runs passes while triggers are pending."""
        while True:
            with self._lock:
                self._running_cancel = None
                if not self._pending or self._stopped:
                    self._thread = None
                    return
                self._pending = False
                cancel_event = self._cancel_event
                self._running_cancel = cancel_event
                self._stats.started += 1

            logger.info("Starting reconciliation pass")
            try:
                result = self._engine.full_sync(
                    exclude_deletes=True,
                    cancel_check=cancel_event.is_set,
                )
            except Exception:
                logger.exception("Reconciliation pass crashed")
                self._stats.failed += 1
                continue

            if result.outcome == TransferOutcome.SUCCESS:
                self._stats.completed += 1
                logger.info("Reconciliation pass completed in %.1fs", result.elapsed_time)
            elif result.outcome == TransferOutcome.CANCELLED:
                self._stats.cancelled += 1
                logger.info("Reconciliation pass cancelled")
            else:
                self._stats.failed += 1
                logger.warning(
                    "Reconciliation pass failed with exit code %d: %s",
                    result.exit_code,
                    result.stderr or "no output",
                )
