"""Double-buffered change queue for sync batching.

This module provides:
- ChangeQueue: Thread-safe append buffer swapped out whole by the scheduler
- dedupe: Order-preserving duplicate removal applied once per swap

Writers (the watch adapter) only ever append to the pending buffer. The
scheduler's worker takes the whole buffer in one critical section and installs
a fresh one, so an append racing with the swap lands either in the batch being
taken or in the new buffer, never in both and never nowhere.

Deduplication happens once per swap, never on append.

Usage with the scheduler:
    queue = ChangeQueue()
    scheduler = SyncScheduler(queue, engine)
    queue.append("docs/readme.md")
    scheduler.request_sync()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


def dedupe(batch: Iterable[str]) -> list[str]:
    """Collapse duplicate paths, keeping first-arrival order.

    Idempotent: dedupe(dedupe(b)) == dedupe(b).

    Args:
        batch: Paths, possibly with duplicates

    Returns:
        Paths with duplicates removed
    """
    return list(dict.fromkeys(batch))


class ChangeQueue:
    """Thread-safe pending-path buffer with atomic take-and-reset.

    The lock is held only for a list append or a reference swap, so
    append() never waits on an in-flight synchronization pass.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: list[str] = []
        self._appended = 0
        self._taken = 0

    def append(self, path: str) -> None:
        """Add a relative path to the pending batch.

        Args:
            path: Path relative to the source root
        """
        with self._lock:
            self._pending.append(path)
            self._appended += 1

    def take_and_reset(self) -> list[str]:
        """Atomically take the pending batch and install an empty one.

        Returns:
            The deduplicated batch (may be empty)
        """
        with self._lock:
            taken = self._pending
            self._pending = []
            self._taken += len(taken)

        batch = dedupe(taken)
        if taken:
            logger.debug(
                "Took batch of %d paths (%d raw events)",
                len(batch),
                len(taken),
            )
        return batch

    def clear(self) -> int:
        """Discard all pending paths.

        Returns:
            Number of raw events discarded
        """
        with self._lock:
            count = len(self._pending)
            self._pending = []
        if count:
            logger.info("Discarded %d pending change events", count)
        return count

    def __len__(self) -> int:
        """Get number of raw pending events (duplicates included)."""
        with self._lock:
            return len(self._pending)

    def __bool__(self) -> bool:
        """Check if any events are pending."""
        with self._lock:
            return bool(self._pending)

    def stats(self) -> dict[str, int]:
        """Get queue statistics.

        Returns:
            Dictionary with appended, taken and pending counts
        """
        with self._lock:
            return {
                "appended": self._appended,
                "taken": self._taken,
                "pending": len(self._pending),
            }
