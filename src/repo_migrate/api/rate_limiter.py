"""Rate limit bookkeeping for API clients."""

import math
import threading
import time
from dataclasses import dataclass
from typing import Mapping, Optional


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


@dataclass(frozen=True)
class RateLimitState:
    """Quota information reported by a single response."""

    remaining: Optional[int] = None
    reset_at: Optional[int] = None
    retry_after: Optional[int] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> 'RateLimitState':
        """Parse the X-RateLimit-* and Retry-After headers."""
        return cls(
            remaining=_to_int(_header(headers, 'X-RateLimit-Remaining')),
            reset_at=_to_int(_header(headers, 'X-RateLimit-Reset')),
            retry_after=_to_int(_header(headers, 'Retry-After')),
        )

    @property
    def exhausted(self) -> bool:
        return self.remaining is not None and self.remaining <= 0

    def delay(self, now: Optional[float] = None) -> int:
        """Seconds until the quota resets, never negative."""
        if self.reset_at is None:
            return 0
        now = time.time() if now is None else now
        return max(math.ceil(self.reset_at - now), 0)


class RetryDelay:
    """Delay that the next outgoing request of a client must honour.

    The value is owned by this object and guarded by a lock: apply() holds
    the lock across read, sleep and clear, so concurrent callers sharing a
    client serialize behind a pending delay instead of racing past it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._seconds = 0.0

    @property
    def pending(self) -> float:
        with self._lock:
            return self._seconds

    def set(self, seconds: float) -> None:
        """Store a delay; a longer pending delay is never shortened."""
        with self._lock:
            self._seconds = max(self._seconds, float(seconds))

    def apply(self) -> float:
        """Sleep for the pending delay, then clear it.

        Returns:
            Seconds slept
        """
        with self._lock:
            seconds = self._seconds
            if seconds > 0:
                time.sleep(seconds)
            self._seconds = 0.0
            return seconds
