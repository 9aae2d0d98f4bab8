"""
Cancellable, deadline-bound waits for the polling loops.

Every blocking wait in the order state machine goes through a Waiter, so a
caller can bound a verification with a timeout or abort it from another
thread with ``cancel()``.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, Optional


class Waiter:
    """
    ``sleep(seconds)`` returns True after waiting, or False as soon as the
    deadline has passed or ``cancel()`` was called.  ``timeout=None`` means
    no deadline.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._deadline = None if timeout is None else clock() + timeout
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def sleep(self, seconds: float) -> bool:
        if self.cancelled:
            return False
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            # Wait out what is left so a cancel still interrupts, then give up.
            self._cancelled.wait(remaining)
            return False
        return not self._cancelled.wait(seconds)
