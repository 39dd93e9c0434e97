"""Transfer engine adapter around rsync.

This module provides:
- TransferEngine: Protocol the scheduler and reconciler program against
- RsyncTransferEngine: Runs rsync as a subprocess and classifies its exit code
- classify_exit_code: Maps rsync exit statuses to TransferOutcome

Two kinds of invocation:
- full_sync: whole tree, deletions disabled by default (startup and
  reconciliation passes must never destroy data on an unknown target)
- path_sync: an explicit list of relative paths fed on stdin with
  --files-from; paths missing at source are deleted at the target and
  extraneous entries inside listed directories are pruned

Only one rsync process runs at a time per engine; calls block on the engine
lock until the previous one returns.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from mirrorsync.sync.types import TransferOutcome, TransferResult

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

logger = logging.getLogger(__name__)

# rsync exit statuses worth retrying as-is:
# 23 = partial transfer due to error, 24 = source files vanished
TRANSIENT_EXIT_CODES = frozenset({23, 24})

# Reported when the rsync binary cannot be launched at all
LAUNCH_FAILURE_EXIT_CODE = 127

STDERR_TAIL_CHARS = 2000


def classify_exit_code(exit_code: int) -> TransferOutcome:
    """Classify an rsync exit status.

    Args:
        exit_code: Process return code

    Returns:
        SUCCESS for 0, TRANSIENT_FAILURE for recoverable statuses,
        FATAL_FAILURE otherwise
    """
    if exit_code == 0:
        return TransferOutcome.SUCCESS
    if exit_code in TRANSIENT_EXIT_CODES:
        return TransferOutcome.TRANSIENT_FAILURE
    return TransferOutcome.FATAL_FAILURE


class TransferEngine(Protocol):
    """Protocol for transfer engines.

    Engines must serialize their own invocations.
    """

    def full_sync(
        self,
        exclude_deletes: bool = True,
        cancel_check: Callable[[], bool] | None = None,
    ) -> TransferResult:
        """Synchronize the whole source tree to the target.

        Args:
            exclude_deletes: Do not delete target entries missing at source
            cancel_check: Optional function that returns True if cancelled

        Returns:
            The classified result
        """
        ...

    def path_sync(self, paths: Sequence[str]) -> TransferResult:
        """Synchronize only the listed relative paths, propagating deletions.

        Args:
            paths: Relative paths under the source root

        Returns:
            The classified result
        """
        ...


class RsyncTransferEngine:
    """Runs rsync between a local source directory and a target.

    Usage:
        engine = RsyncTransferEngine(Path("/data"), "backup:/srv/data")
        result = engine.path_sync(["a.txt", "b/c.txt"])
        if not result.ok:
            ...
    """

    def __init__(
        self,
        source: Path,
        destination: str,
        rsync_path: str = "rsync",
        extra_options: Iterable[str] = (),
        exclude_patterns: Iterable[str] = (),
        poll_interval: float = 0.1,
        terminate_grace: float = 5.0,
    ) -> None:
        """Initialize the engine.

        Args:
            source: Local source directory.
            destination: rsync destination argument (local path or remote).
            rsync_path: rsync executable.
            extra_options: Additional rsync arguments appended to every call.
            exclude_patterns: Patterns passed as --exclude.
            poll_interval: Seconds between cancellation checks.
            terminate_grace: Seconds to wait after SIGTERM before SIGKILL.
        """
        self._source = Path(source)
        self._destination = destination
        self._rsync_path = rsync_path
        self._extra_options = list(extra_options)
        self._exclude_patterns = list(exclude_patterns)
        self._poll_interval = poll_interval
        self._terminate_grace = terminate_grace
        self._lock = threading.Lock()

    @property
    def source(self) -> Path:
        """Get the source directory."""
        return self._source

    @property
    def destination(self) -> str:
        """Get the rsync destination argument."""
        return self._destination

    def _common_options(self) -> list[str]:
        options = ["--archive"]
        options.extend(f"--exclude={pattern}" for pattern in self._exclude_patterns)
        options.extend(self._extra_options)
        return options

    def _endpoints(self) -> list[str]:
        # Trailing slash: copy the contents of source, not source itself
        return [f"{self._source}/", self._destination]

    def build_full_command(self, exclude_deletes: bool = True) -> list[str]:
        """Build the rsync command line for a full-tree pass."""
        cmd = [self._rsync_path, *self._common_options()]
        if not exclude_deletes:
            cmd.append("--delete")
        return [*cmd, *self._endpoints()]

    def build_path_command(self) -> list[str]:
        """Build the rsync command line for a path-list pass."""
        return [
            self._rsync_path,
            *self._common_options(),
            "--dirs",
            "--delete",
            "--delete-missing-args",
            "--files-from=-",
            *self._endpoints(),
        ]

    def full_sync(
        self,
        exclude_deletes: bool = True,
        cancel_check: Callable[[], bool] | None = None,
    ) -> TransferResult:
        """Synchronize the whole source tree to the target.

        Args:
            exclude_deletes: Do not delete target entries missing at source.
            cancel_check: Optional function that returns True if cancelled;
                polled while rsync runs.

        Returns:
            The classified result (CANCELLED if stopped via cancel_check)
        """
        cmd = self.build_full_command(exclude_deletes=exclude_deletes)
        return self._run(cmd, stdin_data=None, paths=(), cancel_check=cancel_check)

    def path_sync(self, paths: Sequence[str]) -> TransferResult:
        """Synchronize only the listed relative paths, propagating deletions.

        Args:
            paths: Relative paths under the source root; must not contain
                line breaks.

        Returns:
            The classified result

        Raises:
            ValueError: If a path contains a line break
        """
        for path in paths:
            if "\n" in path or "\r" in path:
                raise ValueError(f"Path contains a line break: {path!r}")

        # rsync drops files-from lines starting with # or ; as comments
        stdin_data = "".join(f"./{path}\n" for path in paths)
        return self._run(
            self.build_path_command(),
            stdin_data=stdin_data,
            paths=tuple(paths),
            cancel_check=None,
        )

    def _run(
        self,
        cmd: list[str],
        stdin_data: str | None,
        paths: tuple[str, ...],
        cancel_check: Callable[[], bool] | None,
    ) -> TransferResult:
        """Run one rsync process under the engine lock."""
        with self._lock:
            if cancel_check is not None and cancel_check():
                return TransferResult(outcome=TransferOutcome.CANCELLED, paths=paths)

            logger.debug("Running: %s", " ".join(cmd))
            start_time = time.monotonic()

            try:
                proc = subprocess.Popen(
                    cmd,
                    stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    text=True,
                    errors="surrogateescape",
                )
            except OSError as e:
                logger.error("Failed to start %s: %s", self._rsync_path, e)
                return TransferResult(
                    outcome=TransferOutcome.FATAL_FAILURE,
                    exit_code=LAUNCH_FAILURE_EXIT_CODE,
                    paths=paths,
                    stderr=str(e),
                )

            stderr, cancelled = self._wait(proc, stdin_data, cancel_check)
            elapsed = time.monotonic() - start_time

        exit_code = proc.returncode
        outcome = TransferOutcome.CANCELLED if cancelled else classify_exit_code(exit_code)
        result = TransferResult(
            outcome=outcome,
            exit_code=exit_code,
            paths=paths,
            elapsed_time=elapsed,
            stderr=(stderr or "").strip()[-STDERR_TAIL_CHARS:],
        )
        logger.debug(
            "rsync finished: %s (exit code %d, %.2fs)",
            outcome.name,
            exit_code,
            elapsed,
        )
        return result

    def _wait(
        self,
        proc: subprocess.Popen[str],
        stdin_data: str | None,
        cancel_check: Callable[[], bool] | None,
    ) -> tuple[str, bool]:
        """Feed stdin and wait for exit, terminating if cancellation is requested.

        Returns:
            (stderr output, whether the process was cancelled)
        """
        if cancel_check is None:
            _, stderr = proc.communicate(stdin_data)
            return stderr, False

        input_data = stdin_data
        while True:
            try:
                _, stderr = proc.communicate(input_data, timeout=self._poll_interval)
                return stderr, False
            except subprocess.TimeoutExpired:
                # communicate() refuses input after the first call
                input_data = None

            if cancel_check():
                break

        logger.info("Cancelling rsync (pid %d)", proc.pid)
        proc.terminate()
        try:
            _, stderr = proc.communicate(timeout=self._terminate_grace)
        except subprocess.TimeoutExpired:
            logger.warning("rsync (pid %d) ignored SIGTERM, killing", proc.pid)
            proc.kill()
            _, stderr = proc.communicate()
        return stderr, True
