"""Per-request deadline and cancellation token.

A Deadline is created for each question and handed to every external call.
Callers pass `deadline.bound(call_timeout)` as the client-side timeout so no
single call can outlive the request, and `cancel()` lets the owner of the
request abort it between stages.
"""

import threading
import time
from typing import Optional

from .errors import DeadlineExceeded, RequestCancelled


class Deadline:
    def __init__(self, timeout_s: Optional[float] = None, clock=time.monotonic):
        self._clock = clock
        self._expires_at = clock() + timeout_s if timeout_s is not None else None
        self._cancelled = threading.Event()

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> Optional[float]:
        """Seconds left, or None for an unbounded deadline."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def check(self) -> None:
        if self.cancelled:
            raise RequestCancelled("request cancelled by caller")
        if self.expired:
            raise DeadlineExceeded("request deadline exceeded")

    def bound(self, call_timeout: Optional[float]) -> Optional[float]:
        """Timeout for one external call: the smaller of call_timeout and what's left."""
        self.check()
        remaining = self.remaining()
        if remaining is None:
            return call_timeout
        if call_timeout is None:
            return remaining
        return min(call_timeout, remaining)
