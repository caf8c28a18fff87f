"""
Priority admission queue for outbound AI calls.

- At most `max_concurrent` remote calls hold a slot at once.
- Further calls wait in the queue; premium callers are admitted before
  normal callers, first come first served within a priority.
- At most `max_queue_size` calls may wait. A call that would have to wait in
  a full queue is refused with QueueFullError.
- A released slot is handed directly to the next waiter, so the number of
  slots in use never exceeds `max_concurrent`.

Usage:
    async with queue.slot(caller_id, premium=False):
        result = await remote_call()
"""
import asyncio
import heapq
import itertools
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Deque, List

from wizard_ai.core.logging import get_logger
from wizard_ai.core.metrics import record_queue_wait, update_queue_state

logger = get_logger(__name__)

PRIORITY_PREMIUM = 0
PRIORITY_NORMAL = 1


class QueueFullError(Exception):
    """Raised when a call would have to wait and the queue is at capacity."""

    def __init__(self, max_queue_size: int):
        super().__init__(f"Request queue is full ({max_queue_size} waiting)")
        self.max_queue_size = max_queue_size


@dataclass(order=True)
class _Waiter:
    priority: int
    seq: int
    caller_id: str = field(compare=False)
    future: asyncio.Future = field(compare=False)


@dataclass(frozen=True)
class QueueStats:
    """Point-in-time view of the queue."""

    active: int
    waiting: int
    completed: int
    failed: int
    average_wait_ms: float
    max_concurrent: int
    max_queue_size: int


class RequestQueue:
    """
    Caps concurrent remote calls, admitting premium callers first.

    Must be used from a single event loop.
    """

    def __init__(
        self,
        max_concurrent: int = 3,
        max_queue_size: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be > 0")
        if max_queue_size < 0:
            raise ValueError("max_queue_size must be >= 0")

        self.max_concurrent = max_concurrent
        self.max_queue_size = max_queue_size
        self._clock = clock
        self._active = 0
        self._waiting: List[_Waiter] = []
        self._seq = itertools.count()
        self._completed = 0
        self._failed = 0
        self._wait_times_ms: Deque[float] = deque(maxlen=100)

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return len(self._waiting)

    def is_full(self) -> bool:
        """True when a new call would be refused."""
        return self._active >= self.max_concurrent and len(self._waiting) >= self.max_queue_size

    def position(self, caller_id: str) -> int:
        """1-based admission position of the caller's first waiting call, 0 if none."""
        for index, waiter in enumerate(sorted(self._waiting), start=1):
            if waiter.caller_id == caller_id:
                return index
        return 0

    def stats(self) -> QueueStats:
        waits = list(self._wait_times_ms)
        return QueueStats(
            active=self._active,
            waiting=len(self._waiting),
            completed=self._completed,
            failed=self._failed,
            average_wait_ms=sum(waits) / len(waits) if waits else 0.0,
            max_concurrent=self.max_concurrent,
            max_queue_size=self.max_queue_size,
        )

    @asynccontextmanager
    async def slot(self, caller_id: str, premium: bool = False) -> AsyncIterator[None]:
        """
        Hold one concurrency slot for the duration of the block.

        Raises:
            QueueFullError: If the call would have to wait and the queue is full.
        """
        enqueued_at = self._clock()
        await self._acquire(caller_id, premium)
        waited = self._clock() - enqueued_at
        self._wait_times_ms.append(waited * 1000.0)
        record_queue_wait(waited)
        try:
            yield
        except BaseException:
            self._failed += 1
            raise
        else:
            self._completed += 1
        finally:
            self._release()

    async def _acquire(self, caller_id: str, premium: bool) -> None:
        if self._active < self.max_concurrent and not self._waiting:
            self._active += 1
            update_queue_state(self._active, len(self._waiting))
            return

        if len(self._waiting) >= self.max_queue_size:
            logger.warning(
                "request_queue_full",
                caller=caller_id,
                waiting=len(self._waiting),
                max_queue_size=self.max_queue_size,
            )
            raise QueueFullError(self.max_queue_size)

        waiter = _Waiter(
            priority=PRIORITY_PREMIUM if premium else PRIORITY_NORMAL,
            seq=next(self._seq),
            caller_id=caller_id,
            future=asyncio.get_running_loop().create_future(),
        )
        heapq.heappush(self._waiting, waiter)
        update_queue_state(self._active, len(self._waiting))
        logger.info(
            "request_queue_waiting",
            caller=caller_id,
            premium=premium,
            position=self.position(caller_id),
            waiting=len(self._waiting),
        )

        try:
            await waiter.future
        except asyncio.CancelledError:
            if waiter.future.done() and not waiter.future.cancelled():
                # The slot was handed over before the cancellation landed.
                self._release()
            elif waiter in self._waiting:
                self._waiting.remove(waiter)
                heapq.heapify(self._waiting)
                update_queue_state(self._active, len(self._waiting))
            raise

    def _release(self) -> None:
        while self._waiting:
            waiter = heapq.heappop(self._waiting)
            if not waiter.future.done():
                # Slot passes to the waiter; the active count is unchanged.
                waiter.future.set_result(None)
                update_queue_state(self._active, len(self._waiting))
                return
        self._active -= 1
        update_queue_state(self._active, len(self._waiting))
