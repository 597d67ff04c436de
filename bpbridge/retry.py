"""
Bounded retry helper.

Only the binary-mode handshake retries in this package; everything else
fails on the first bad reply. Keeping the loop here makes the attempt
count and spacing testable with a MockClock.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .interfaces import ClockInterface

logger = logging.getLogger(__name__)


@dataclass
class AttemptOutcome:
    """Result of :func:`attempt`."""
    succeeded: bool
    attempts: int
    value: Any = None


def attempt(
    action: Callable[[], Any],
    max_attempts: int = 30,
    interval: float = 0.010,
    success: Callable[[Any], bool] = bool,
    clock: Optional[ClockInterface] = None,
    label: str = "attempt",
) -> AttemptOutcome:
    """
    Call `action` until `success(value)` is true or attempts run out.

    Sleeps `interval` seconds between failed attempts (not after the last).
    Exceptions raised by `action` propagate immediately; they are not
    counted as failed attempts.

    Returns an AttemptOutcome with the number of calls made and the last
    value returned by `action`.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    value = None
    for n in range(1, max_attempts + 1):
        value = action()
        if success(value):
            logger.debug("%s succeeded on try %d/%d", label, n, max_attempts)
            return AttemptOutcome(succeeded=True, attempts=n, value=value)

        if n < max_attempts and interval > 0:
            if clock is not None:
                clock.sleep(interval)
            else:
                time.sleep(interval)

    logger.warning("%s gave up after %d tries", label, max_attempts)
    return AttemptOutcome(succeeded=False, attempts=max_attempts, value=value)
