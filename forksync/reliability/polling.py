"""
Bounded Polling — Wait for an external condition with a fixed budget.

Used where the pipeline waits on something asynchronous (a restarted
service becoming healthy). Fixed interval, fixed attempt count, no
cancellation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    ok: bool
    attempts: int


def poll_until(
    check: Callable[[], bool],
    attempts: int = 10,
    interval: float = 3.0,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "condition",
) -> PollResult:
    """
    Call ``check`` up to ``attempts`` times, sleeping ``interval`` between.

    Exceptions raised by ``check`` count as a failed attempt.
    """
    for attempt in range(1, attempts + 1):
        try:
            if check():
                logger.debug(f"{label}: ok after {attempt} attempt(s)")
                return PollResult(ok=True, attempts=attempt)
        except Exception as e:
            logger.debug(f"{label}: attempt {attempt} raised {e}")
        if attempt < attempts:
            sleep(interval)
    logger.warning(f"{label}: not satisfied after {attempts} attempt(s)")
    return PollResult(ok=False, attempts=attempts)
