"""
Fixed-window rate limiting of outbound AI calls.

- Each caller id gets its own window of `window_seconds` with a cap of `limit`
  calls (defaults: 20 calls per hour).
- check_limit() never increments; consume() increments only after a
  successful admission check, so a window's count never exceeds its limit.
- A window whose duration has elapsed is reset on the next check or consume.
  Elapsed windows of other callers are swept at most once per window
  duration, so idle caller ids do not accumulate.
- Premium callers bypass the limiter entirely.
"""
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional

from wizard_ai.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CALLER_ID = "global"


@dataclass
class RateWindow:
    """Counting window for one logical caller."""

    window_start: float
    count: int
    limit: int
    window_duration: float

    def is_elapsed(self, now: float) -> bool:
        return now - self.window_start >= self.window_duration

    @property
    def reset_at(self) -> float:
        return self.window_start + self.window_duration


@dataclass(frozen=True)
class RateLimitStatus:
    """Admission snapshot returned by check_limit()."""

    is_limited: bool
    remaining: int
    reset_at: float
    limit: int


class RateLimiter:
    """
    Thread-safe fixed-window rate limiter keyed by caller id.

    Contract:
    - check_limit() -> RateLimitStatus (pure read apart from window reset)
    - consume() -> bool (increments only when admitted)
    """

    def __init__(
        self,
        limit: int = 20,
        window_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        if limit <= 0:
            raise ValueError("limit must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = Lock()
        self._windows: Dict[str, RateWindow] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        """Number of caller windows currently tracked."""
        with self._lock:
            return len(self._windows)

    def _sweep(self, now: float) -> None:
        # Caller holds the lock. Dropping an elapsed window equals resetting it.
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        expired = [cid for cid, w in self._windows.items() if w.is_elapsed(now)]
        for cid in expired:
            del self._windows[cid]
        if expired:
            logger.debug("rate_limit_windows_swept", removed=len(expired), tracked=len(self._windows))

    def _window(self, caller_id: str, now: float) -> RateWindow:
        # Caller holds the lock.
        self._sweep(now)
        window = self._windows.get(caller_id)
        if window is None:
            window = RateWindow(
                window_start=now,
                count=0,
                limit=self.limit,
                window_duration=self.window_seconds,
            )
            self._windows[caller_id] = window
        elif window.is_elapsed(now):
            window.window_start = now
            window.count = 0
            logger.debug("rate_limit_window_reset", caller=caller_id)
        return window

    def _status(self, window: RateWindow) -> RateLimitStatus:
        remaining = max(0, window.limit - window.count)
        return RateLimitStatus(
            is_limited=remaining == 0,
            remaining=remaining,
            reset_at=window.reset_at,
            limit=window.limit,
        )

    def _premium_status(self, now: float) -> RateLimitStatus:
        return RateLimitStatus(
            is_limited=False,
            remaining=self.limit,
            reset_at=now + self.window_seconds,
            limit=self.limit,
        )

    def check_limit(
        self,
        caller_id: str = DEFAULT_CALLER_ID,
        premium: bool = False,
    ) -> RateLimitStatus:
        """Report admission state for a caller without consuming quota."""
        with self._lock:
            now = self._clock()
            if premium:
                return self._premium_status(now)
            return self._status(self._window(caller_id, now))

    def consume(self, caller_id: str = DEFAULT_CALLER_ID, premium: bool = False) -> bool:
        """
        Count one outbound call against the caller's window.

        Returns:
            True if the call was admitted, False if the window is exhausted
            (nothing is counted in that case).
        """
        with self._lock:
            if premium:
                return True
            window = self._window(caller_id, self._clock())
            if window.count >= window.limit:
                return False
            window.count += 1
            return True

    def try_acquire(
        self,
        caller_id: str = DEFAULT_CALLER_ID,
        premium: bool = False,
    ) -> RateLimitStatus:
        """
        Atomically check admission and consume one unit when admitted.

        Returns:
            Status after the decision; `is_limited` is True only when the call
            was refused.
        """
        with self._lock:
            now = self._clock()
            if premium:
                return self._premium_status(now)
            window = self._window(caller_id, now)
            if window.count >= window.limit:
                return self._status(window)
            window.count += 1
            remaining = window.limit - window.count
            return RateLimitStatus(
                is_limited=False,
                remaining=remaining,
                reset_at=window.reset_at,
                limit=window.limit,
            )

    def time_until_reset(self, caller_id: str = DEFAULT_CALLER_ID) -> float:
        """Seconds until the caller's window resets (0 if it already has)."""
        status = self.check_limit(caller_id)
        return max(0.0, status.reset_at - self._clock())

    def reset(self, caller_id: Optional[str] = None) -> None:
        """Drop one caller's window, or every window when caller_id is None."""
        with self._lock:
            if caller_id is None:
                self._windows.clear()
            else:
                self._windows.pop(caller_id, None)
