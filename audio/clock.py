"""
Monotonic playback clock.

Trigger requests carry absolute times on this clock; the scheduler only
waits on it to decide when to issue the next look-ahead batch.
"""
import threading
import time


class Clock:
    """Time source the scheduler waits on."""

    def now(self) -> float:
        raise NotImplementedError()

    def wait_until(self, deadline: float, cancel: threading.Event) -> bool:
        """
        Block until deadline or until cancel is set.

        Returns:
            True if the deadline was reached, False if cancelled
        """
        raise NotImplementedError()


class MonotonicClock(Clock):
    """Wall clock backed by time.monotonic."""

    def now(self) -> float:
        return time.monotonic()

    def wait_until(self, deadline: float, cancel: threading.Event) -> bool:
        while not cancel.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return True
            cancel.wait(remaining)
        return False
