"""Debounced batching of change notifications."""

from __future__ import annotations

import threading
from typing import Any, Callable, List, Optional, Sequence

from .models import ChangeInfo
from .observability import log_debug

# threading.Timer-compatible: factory(interval, function) -> object with start()/cancel()
TimerFactory = Callable[[float, Callable[[], None]], Any]


class ChangeBatcher:
    """Collects changes until ``delay`` seconds pass without a new one.

    Every ``enqueue`` cancels the outstanding timer and arms a fresh one, so
    at most one timer exists per batcher. When a timer expires the whole
    queue is drained and passed to ``on_fire`` on the timer thread.
    """

    def __init__(
        self,
        delay: float,
        on_fire: Callable[[List[ChangeInfo]], Any],
        *,
        timer_factory: TimerFactory = threading.Timer,
    ):
        self.delay = delay
        self._on_fire = on_fire
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._queue: List[ChangeInfo] = []
        self._timer: Optional[Any] = None

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def has_pending_timer(self) -> bool:
        with self._lock:
            return self._timer is not None

    def enqueue(self, change: ChangeInfo) -> int:
        with self._lock:
            self._queue.append(change)
            self._arm_locked()
            count = len(self._queue)
        log_debug(f"Commit scheduled in {self.delay:g}s", pending=count)
        return count

    def cancel_pending(self) -> None:
        """Stop the timer without firing; queued changes stay queued."""
        with self._lock:
            self._cancel_locked()

    def take_all(self) -> List[ChangeInfo]:
        """Stop the timer and hand back everything queued, in one step."""
        with self._lock:
            self._cancel_locked()
            batch, self._queue = self._queue, []
            return batch

    def restore(self, batch: Sequence[ChangeInfo], *, rearm: bool = False) -> None:
        """Put an unconsumed batch back ahead of anything queued since."""
        if not batch:
            return
        with self._lock:
            self._queue = list(batch) + self._queue
            if rearm:
                self._arm_locked()

    def shutdown(self) -> None:
        self.cancel_pending()

    def _arm_locked(self) -> None:
        self._cancel_locked()
        timer = None

        def fire() -> None:
            self._fire(timer)

        timer = self._timer_factory(self.delay, fire)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, timer: Any) -> None:
        with self._lock:
            if timer is not self._timer:
                # Cancelled or superseded after it had already started running
                return
            self._timer = None
            batch, self._queue = self._queue, []
        self._on_fire(batch)
