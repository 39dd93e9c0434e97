"""Tests for the sync scheduler state machine."""

from __future__ import annotations

import time

from mirrorsync.sync.queue import ChangeQueue
from mirrorsync.sync.reconciler import PeriodicReconciler
from mirrorsync.sync.scheduler import SyncScheduler
from mirrorsync.sync.types import SchedulerState, TransferOutcome, TransferResult


class TestSchedulerBasics:
    """Tests for single requests."""

    def test_initial_state(self, engine) -> None:
        """A new scheduler is idle."""
        scheduler = SyncScheduler(ChangeQueue(), engine)

        assert scheduler.state == SchedulerState.IDLE
        assert scheduler.is_idle

    def test_single_request(self, engine) -> None:
        """One request runs one pass with the queued paths, then goes idle."""
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine)

        queue.append("a.txt")
        queue.append("b/c.txt")
        scheduler.request_sync()

        assert scheduler.wait_idle(timeout=2.0)
        assert engine.path_calls == [["a.txt", "b/c.txt"]]
        assert scheduler.stats.passes_completed == 1
        assert scheduler.stats.paths_synced == 2

    def test_request_moves_to_running(self, make_engine) -> None:
        """request_sync from IDLE enters RUNNING before returning."""
        engine = make_engine(delay=0.2)
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine)

        queue.append("a.txt")
        scheduler.request_sync()

        assert scheduler.state == SchedulerState.RUNNING
        assert scheduler.wait_idle(timeout=2.0)

    def test_empty_batch_skips_engine(self, engine) -> None:
        """A request with nothing queued returns to idle without a transfer."""
        scheduler = SyncScheduler(ChangeQueue(), engine)

        scheduler.request_sync()

        assert scheduler.wait_idle(timeout=2.0)
        assert engine.path_calls == []
        assert scheduler.stats.transfer_calls == 0

    def test_duplicates_synced_once(self, engine) -> None:
        """Repeated events for a path collapse into one entry."""
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine)

        for _ in range(3):
            queue.append("a.txt")
        scheduler.request_sync()

        assert scheduler.wait_idle(timeout=2.0)
        assert engine.path_calls == [["a.txt"]]

    def test_on_pass_complete_callback(self, engine) -> None:
        """The pass callback receives each successful result."""
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine)
        results: list[TransferResult] = []
        scheduler.set_on_pass_complete(results.append)

        queue.append("a.txt")
        scheduler.request_sync()

        assert scheduler.wait_idle(timeout=2.0)
        assert len(results) == 1
        assert results[0].paths == ("a.txt",)

    def test_on_idle_callback(self, engine) -> None:
        """The idle callback runs on every RUNNING -> IDLE transition."""
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine)
        idles: list[bool] = []
        scheduler.set_on_idle(lambda: idles.append(True))

        queue.append("a.txt")
        scheduler.request_sync()
        assert scheduler.wait_idle(timeout=2.0)
        queue.append("b.txt")
        scheduler.request_sync()
        assert scheduler.wait_idle(timeout=2.0)

        assert idles == [True, True]


class TestCoalescing:
    """Tests for requests arriving during a pass."""

    def test_request_during_pass_forces_follow_up(self, make_engine) -> None:
        """A request while RUNNING yields exactly one more pass."""
        engine = make_engine(delay=0.3)
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine)

        queue.append("a.txt")
        scheduler.request_sync()
        assert engine.path_started.wait(timeout=2.0)

        queue.append("b.txt")
        scheduler.request_sync()
        assert scheduler.state == SchedulerState.RUNNING_PENDING

        assert scheduler.wait_idle(timeout=3.0)
        assert engine.path_calls == [["a.txt"], ["b.txt"]]
        assert scheduler.stats.workers_started == 1

    def test_requests_while_pending_absorbed(self, make_engine) -> None:
        """Further requests in RUNNING_PENDING do not add passes."""
        engine = make_engine(delay=0.3)
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine)

        queue.append("a.txt")
        scheduler.request_sync()
        assert engine.path_started.wait(timeout=2.0)

        for name in ("b.txt", "c.txt", "d.txt"):
            queue.append(name)
            scheduler.request_sync()

        assert scheduler.wait_idle(timeout=3.0)
        assert engine.path_calls == [["a.txt"], ["b.txt", "c.txt", "d.txt"]]

    def test_burst_coalesced_into_one_follow_up(self, make_engine) -> None:
        """1000 changes during a 500ms pass produce one follow-up pass."""
        engine = make_engine(delay=0.5)
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine)

        queue.append("first.txt")
        scheduler.request_sync()
        assert engine.path_started.wait(timeout=2.0)

        for i in range(1000):
            queue.append(f"dir/file{i % 250}.txt")
            scheduler.request_sync()

        assert scheduler.wait_idle(timeout=5.0)
        assert len(engine.path_calls) == 2
        assert engine.path_calls[1] == [f"dir/file{i}.txt" for i in range(250)]
        assert scheduler.stats.requests == 1001

    def test_paths_appended_after_take_go_to_next_pass(self, make_engine) -> None:
        """A path queued during a pass is never lost."""
        engine = make_engine()
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine)

        def append_during_first(paths: list[str]) -> None:
            if paths == ["a.txt"]:
                queue.append("late.txt")
                scheduler.request_sync()

        engine.on_path_sync = append_during_first

        queue.append("a.txt")
        scheduler.request_sync()

        assert scheduler.wait_idle(timeout=2.0)
        assert engine.path_calls == [["a.txt"], ["late.txt"]]


class TestRetry:
    """Tests for failed transfers."""

    def test_transient_failure_retried_with_same_batch(self, make_engine) -> None:
        """A transient failure is retried with the identical batch."""
        engine = make_engine(outcomes=[TransferOutcome.TRANSIENT_FAILURE])
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine, retry_delay=0.05)
        states: list[SchedulerState] = []
        engine.on_path_sync = lambda paths: states.append(scheduler.state)

        queue.append("a.txt")
        queue.append("b/c.txt")
        scheduler.request_sync()

        assert scheduler.wait_idle(timeout=2.0)
        assert engine.path_calls == [["a.txt", "b/c.txt"], ["a.txt", "b/c.txt"]]
        assert states == [SchedulerState.RUNNING, SchedulerState.RUNNING]
        assert scheduler.stats.transient_failures == 1
        assert scheduler.stats.passes_completed == 1

    def test_fatal_failure_retried(self, make_engine) -> None:
        """A fatal failure is retried the same way."""
        engine = make_engine(
            outcomes=[TransferOutcome.FATAL_FAILURE, TransferOutcome.FATAL_FAILURE]
        )
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine, retry_delay=0.01)

        queue.append("a.txt")
        scheduler.request_sync()

        assert scheduler.wait_idle(timeout=2.0)
        assert engine.path_calls == [["a.txt"]] * 3
        assert scheduler.stats.fatal_failures == 2

    def test_retry_does_not_take_new_paths(self, make_engine) -> None:
        """Paths queued during a failed pass wait for the follow-up pass."""
        engine = make_engine(outcomes=[TransferOutcome.TRANSIENT_FAILURE])
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine, retry_delay=0.05)

        def append_once(paths: list[str]) -> None:
            if len(engine.path_calls) == 1:
                queue.append("late.txt")
                scheduler.request_sync()

        engine.on_path_sync = append_once

        queue.append("a.txt")
        scheduler.request_sync()

        assert scheduler.wait_idle(timeout=2.0)
        assert engine.path_calls == [["a.txt"], ["a.txt"], ["late.txt"]]

    def test_engine_exception_retried_with_same_batch(self, engine) -> None:
        """An engine that raises is retried like a fatal failure; the batch is kept."""
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine, retry_delay=0.01)

        def explode_once(paths: list[str]) -> None:
            if len(engine.path_calls) == 1:
                raise RuntimeError("boom")

        engine.on_path_sync = explode_once

        queue.append("a.txt")
        queue.append("gone/b.txt")
        scheduler.request_sync()

        assert scheduler.wait_idle(timeout=2.0)
        assert engine.path_calls == [["a.txt", "gone/b.txt"]] * 2
        assert scheduler.stats.fatal_failures == 1
        assert scheduler.stats.passes_completed == 1
        assert scheduler.stats.paths_synced == 2

    def test_engine_exception_abandoned_only_at_shutdown(self, engine) -> None:
        """A batch whose engine keeps raising stays owed until stop()."""
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine, retry_delay=0.01)

        def explode(paths: list[str]) -> None:
            raise RuntimeError("boom")

        engine.on_path_sync = explode

        queue.append("a.txt")
        scheduler.request_sync()

        assert engine.path_started.wait(timeout=2.0)
        time.sleep(0.1)
        assert scheduler.state == SchedulerState.RUNNING
        assert len(engine.path_calls) > 1

        scheduler.stop(timeout=2.0)

        assert scheduler.is_idle
        assert scheduler.stats.passes_completed == 0


class TestStop:
    """Tests for shutdown."""

    def test_stop_interrupts_retry_wait(self, make_engine) -> None:
        """stop() wakes a worker sleeping between attempts."""
        engine = make_engine(outcomes=[TransferOutcome.FATAL_FAILURE] * 100)
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine, retry_delay=10.0)

        queue.append("a.txt")
        scheduler.request_sync()
        assert engine.path_started.wait(timeout=2.0)

        start = time.monotonic()
        scheduler.stop(timeout=2.0)

        assert time.monotonic() - start < 2.0
        assert scheduler.is_idle
        assert len(engine.path_calls) == 1
        assert scheduler.stats.passes_completed == 0

    def test_requests_ignored_after_stop(self, engine) -> None:
        """request_sync is a no-op once stopped."""
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine)
        scheduler.stop()

        queue.append("a.txt")
        scheduler.request_sync()

        assert scheduler.is_idle
        assert scheduler.stats.requests == 0
        assert engine.path_calls == []

    def test_stop_clears_queue(self, engine) -> None:
        """Pending paths are discarded at shutdown."""
        queue = ChangeQueue()
        scheduler = SyncScheduler(queue, engine)
        queue.append("a.txt")

        scheduler.stop()

        assert len(queue) == 0


class TestReconciliation:
    """Tests for the scheduler driving the reconciler."""

    def test_reconciliation_after_idle(self, engine) -> None:
        """Quiescence triggers exactly one full pass without deletions."""
        queue = ChangeQueue()
        reconciler = PeriodicReconciler(engine)
        scheduler = SyncScheduler(queue, engine, reconciler=reconciler)

        queue.append("a.txt")
        scheduler.request_sync()

        assert scheduler.wait_idle(timeout=2.0)
        assert reconciler.wait(timeout=2.0)
        assert engine.full_calls == [True]
        assert reconciler.stats.completed == 1

    def test_request_cancels_reconciliation(self, make_engine) -> None:
        """A new request cancels the running full pass."""
        engine = make_engine(full_delay=5.0)
        queue = ChangeQueue()
        reconciler = PeriodicReconciler(engine)
        scheduler = SyncScheduler(queue, engine, reconciler=reconciler)

        queue.append("a.txt")
        scheduler.request_sync()
        assert scheduler.wait_idle(timeout=2.0)
        assert engine.full_started.wait(timeout=2.0)

        # Later reconciliations finish immediately
        engine.full_delay = 0.0
        start = time.monotonic()
        queue.append("b.txt")
        scheduler.request_sync()

        assert scheduler.wait_idle(timeout=2.0)
        assert reconciler.wait(timeout=3.0)
        assert time.monotonic() - start < 3.0
        assert engine.path_calls == [["a.txt"], ["b.txt"]]
        assert engine.full_calls == [True, True]
        assert reconciler.stats.cancelled == 1
        assert reconciler.stats.completed == 1
