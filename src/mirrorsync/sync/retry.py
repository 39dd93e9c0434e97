"""Retry logic with a fixed backoff for transfer engine calls.

This module provides:
- retry_until_success: Re-run a transfer until it succeeds, is cancelled,
  or shutdown is requested
- DEFAULT_RETRY_DELAY: Fixed backoff between attempts

Transient and fatal transfer failures are both retried indefinitely with the
same delay: a batch that was partially applied to the target cannot be safely
abandoned, so the only way out is success or shutdown.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from mirrorsync.sync.types import TransferOutcome, TransferResult

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_RETRY_DELAY = 1.0  # seconds


def retry_until_success(
    func: Callable[[], TransferResult],
    delay: float = DEFAULT_RETRY_DELAY,
    stop_event: threading.Event | None = None,
    on_failure: Callable[[TransferResult, int], None] | None = None,
    description: str = "transfer",
) -> TransferResult:
    """Execute a transfer, retrying failures after a fixed delay.

    Args:
        func: Performs one transfer attempt.
        delay: Seconds to wait between attempts.
        stop_event: When set, the wait is interrupted and the last failed
            result is returned.
        on_failure: Optional callback (result, attempt) after each failure.
        description: Human-readable name for log messages.

    Returns:
        The successful result, a CANCELLED result, or the last failure if
        stop_event was set.
    """
    attempt = 0

    while True:
        attempt += 1
        result = func()

        if result.outcome in (TransferOutcome.SUCCESS, TransferOutcome.CANCELLED):
            if attempt > 1 and result.ok:
                logger.info("%s succeeded after %d attempts", description.capitalize(), attempt)
            return result

        if result.outcome == TransferOutcome.TRANSIENT_FAILURE:
            logger.warning(
                "%s attempt %d failed with transient exit code %d. Retrying in %.1fs...",
                description.capitalize(),
                attempt,
                result.exit_code,
                delay,
            )
        else:
            logger.error(
                "%s attempt %d failed with exit code %d: %s. Retrying in %.1fs...",
                description.capitalize(),
                attempt,
                result.exit_code,
                result.stderr or "no output",
                delay,
            )

        if on_failure:
            on_failure(result, attempt)

        if stop_event is None:
            time.sleep(delay)
        elif stop_event.wait(delay):
            logger.info("Giving up on %s: shutdown requested", description)
            return result
