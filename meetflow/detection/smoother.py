"""
Detection Smoother

Turns the noisy per-frame person count into a stable participant count.

    raw count -> DetectionHistory (last N) -> smoothed = round(mean)
              -> smoothed > debounced_count ? schedule commit after D
              -> commit sets debounced_count and fires on_increase

`debounced_count` is only ever written by a committed timer, never by a raw
sample. The value a timer commits is captured when it is scheduled.

Overlapping timers:
    supersede   (default) keep one pending target; a higher smoothed value
                cancels the outstanding timer and schedules a fresh one, a
                lower or equal one leaves it alone.
    independent every upward crossing schedules its own timer and none are
                cancelled, so commits land in fire order.
"""

import asyncio
import logging
import math
from collections import deque
from typing import Any, Callable, Deque, List, Optional

logger = logging.getLogger(__name__)

Scheduler = Callable[[float, Callable[[], None]], Any]
IncreaseCallback = Callable[[int, int], None]

DEFAULT_HISTORY_SIZE = 5
DEFAULT_DEBOUNCE_S = 2.0


def round_half_up(value: float) -> int:
    """round() with .5 going up, as participant counts are never negative."""
    return int(math.floor(value + 0.5))


class DetectionHistory:
    """Bounded FIFO of the most recent person counts."""

    def __init__(self, size: int = DEFAULT_HISTORY_SIZE):
        if size <= 0:
            raise ValueError("history size must be positive")
        self.size = size
        self._samples: Deque[int] = deque(maxlen=size)

    def __len__(self) -> int:
        return len(self._samples)

    def push(self, count: int) -> None:
        if count < 0:
            raise ValueError("person count cannot be negative")
        self._samples.append(count)

    def smoothed(self) -> int:
        if not self._samples:
            return 0
        return round_half_up(sum(self._samples) / len(self._samples))

    def values(self) -> List[int]:
        return list(self._samples)

    def clear(self) -> None:
        self._samples.clear()


class DetectionThrottle:
    """Accept at most one detection attempt per interval."""

    def __init__(self, interval_s: float = 1.0):
        self.interval_s = interval_s
        self._last_accepted: Optional[float] = None

    def accept(self, now: float) -> bool:
        if self._last_accepted is not None and now - self._last_accepted < self.interval_s:
            return False
        self._last_accepted = now
        return True

    def reset(self) -> None:
        self._last_accepted = None


class DetectionSmoother:
    """Rolling-average person count with debounced upward commits."""

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        debounce_s: float = DEFAULT_DEBOUNCE_S,
        supersede_pending: bool = True,
        on_increase: Optional[IncreaseCallback] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.history = DetectionHistory(history_size)
        self.debounce_s = debounce_s
        self.supersede_pending = supersede_pending
        self.on_increase = on_increase
        self._scheduler = scheduler

        self.debounced_count = 0
        self.pending_target: Optional[int] = None
        self._timers: List[Any] = []

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    def add_sample(self, count: int) -> int:
        """Record one raw count. Returns the smoothed count."""
        self.history.push(count)
        smoothed = self.history.smoothed()

        if smoothed > self.debounced_count:
            self._request_commit(smoothed)
        return smoothed

    def _request_commit(self, value: int) -> None:
        if self.supersede_pending:
            if self.pending_target is not None and value <= self.pending_target:
                return
            self._cancel_timers()
        self.pending_target = value
        self._schedule(value)

    def _schedule(self, value: int) -> None:
        scheduler = self._scheduler or asyncio.get_running_loop().call_later
        holder = {}

        def fire():
            self._commit(value, holder.get("handle"))

        holder["handle"] = scheduler(self.debounce_s, fire)
        self._timers.append(holder["handle"])
        logger.debug(f"Debounce scheduled: {self.debounced_count} -> {value} in {self.debounce_s}s")

    def _commit(self, value: int, handle: Any) -> None:
        if handle in self._timers:
            self._timers.remove(handle)
        if self.pending_target == value and not self._timers:
            self.pending_target = None

        previous = self.debounced_count
        self.debounced_count = value
        logger.info(f"👥 Participant count committed: {previous} -> {value}")

        if value > previous and self.on_increase:
            try:
                self.on_increase(previous, value)
            except Exception as e:
                logger.error(f"Participant increase callback error: {e}", exc_info=True)

    def _cancel_timers(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()

    def reset(self) -> None:
        self._cancel_timers()
        self.history.clear()
        self.debounced_count = 0
        self.pending_target = None
