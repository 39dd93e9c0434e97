"""Shared fixtures for sync tests."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence

import pytest

from mirrorsync.sync.types import TransferOutcome, TransferResult

_EXIT_CODES = {
    TransferOutcome.SUCCESS: 0,
    TransferOutcome.TRANSIENT_FAILURE: 24,
    TransferOutcome.FATAL_FAILURE: 12,
    TransferOutcome.CANCELLED: -15,
}


class FakeEngine:
    """Transfer engine double that records every call.

    Attributes:
        outcomes: Scripted outcomes for path_sync, consumed in order
            (SUCCESS once exhausted)
        full_outcomes: Scripted outcomes for full_sync
        delay: Seconds each path_sync takes
        full_delay: Seconds each full_sync takes (cancellable)
    """

    def __init__(
        self,
        outcomes: Sequence[TransferOutcome] = (),
        full_outcomes: Sequence[TransferOutcome] = (),
        delay: float = 0.0,
        full_delay: float = 0.0,
    ) -> None:
        self.outcomes = list(outcomes)
        self.full_outcomes = list(full_outcomes)
        self.delay = delay
        self.full_delay = full_delay
        self.path_calls: list[list[str]] = []
        self.full_calls: list[bool] = []
        self.path_started = threading.Event()
        self.full_started = threading.Event()
        self.on_path_sync: Callable[[list[str]], None] | None = None
        self._lock = threading.Lock()

    def path_sync(self, paths: Sequence[str]) -> TransferResult:
        with self._lock:
            self.path_calls.append(list(paths))
            outcome = self.outcomes.pop(0) if self.outcomes else TransferOutcome.SUCCESS
        self.path_started.set()

        if self.on_path_sync:
            self.on_path_sync(list(paths))
        if self.delay:
            time.sleep(self.delay)

        return TransferResult(
            outcome=outcome,
            exit_code=_EXIT_CODES[outcome],
            paths=tuple(paths),
            elapsed_time=self.delay,
        )

    def full_sync(
        self,
        exclude_deletes: bool = True,
        cancel_check: Callable[[], bool] | None = None,
    ) -> TransferResult:
        with self._lock:
            self.full_calls.append(exclude_deletes)
            outcome = (
                self.full_outcomes.pop(0) if self.full_outcomes else TransferOutcome.SUCCESS
            )
        self.full_started.set()

        deadline = time.monotonic() + self.full_delay
        while True:
            if cancel_check and cancel_check():
                return TransferResult(outcome=TransferOutcome.CANCELLED, exit_code=-15)
            if time.monotonic() >= deadline:
                break
            time.sleep(0.01)

        return TransferResult(outcome=outcome, exit_code=_EXIT_CODES[outcome])


class RecordingScheduler:
    """Scheduler stand-in counting request_sync calls."""

    def __init__(self) -> None:
        self.requests = 0

    def request_sync(self) -> None:
        self.requests += 1


def wait_for(condition: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll condition until it holds or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


@pytest.fixture
def engine() -> FakeEngine:
    """A fake engine where every call succeeds immediately."""
    return FakeEngine()


@pytest.fixture
def make_engine() -> Callable[..., FakeEngine]:
    """Factory for fake engines with scripted behavior."""
    return FakeEngine


@pytest.fixture
def recording_scheduler() -> RecordingScheduler:
    """A scheduler stand-in that only counts requests."""
    return RecordingScheduler()


@pytest.fixture
def waiter() -> Callable[..., bool]:
    """The wait_for polling helper."""
    return wait_for
