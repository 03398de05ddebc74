"""
Keyed single-shot scheduling.

The flush scheduler only depends on the ``Scheduler`` interface. The service
runs on ``ThreadingScheduler``; ``ManualScheduler`` replays timers on a
virtual clock.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Hashable, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


class Scheduler(ABC):
    """At most one pending callback per key."""

    @abstractmethod
    def schedule_once(self, key: Hashable, delay_seconds: float, callback: Callable[[], None]) -> None:
        """Run ``callback`` after ``delay_seconds``, replacing any pending callback for ``key``."""

    @abstractmethod
    def cancel(self, key: Hashable) -> bool:
        """Cancel the pending callback for ``key``. Returns True if one was pending."""

    @abstractmethod
    def pending(self) -> int:
        """Number of callbacks waiting to fire."""

    def shutdown(self) -> None:
        """Drop every pending callback."""


class ThreadingScheduler(Scheduler):
    """One daemon ``threading.Timer`` per key."""

    def __init__(self):
        self._timers: Dict[Hashable, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule_once(self, key, delay_seconds, callback):
        timer = None

        def run():
            with self._lock:
                if self._timers.get(key) is timer:
                    del self._timers[key]
            try:
                callback()
            except Exception as e:
                logger.exception("Scheduled callback failed", key=str(key), error=str(e))

        timer = threading.Timer(max(0.0, delay_seconds), run)
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._timers[key] = timer
        timer.start()

    def cancel(self, key):
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending(self):
        with self._lock:
            return len(self._timers)

    def shutdown(self):
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        logger.info("Scheduler stopped", cancelled=len(timers))


class ManualScheduler(Scheduler):
    """Virtual-clock scheduler: callbacks fire only when ``advance`` moves time past them."""

    def __init__(self):
        self.now = 0.0
        self._pending: Dict[Hashable, Tuple[float, int, Callable[[], None]]] = {}
        self._seq = itertools.count()

    def schedule_once(self, key, delay_seconds, callback):
        self._pending[key] = (self.now + max(0.0, delay_seconds), next(self._seq), callback)

    def cancel(self, key):
        return self._pending.pop(key, None) is not None

    def pending(self):
        return len(self._pending)

    def due_at(self, key: Hashable) -> Optional[float]:
        entry = self._pending.get(key)
        return entry[0] if entry else None

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due callbacks in order. Returns how many fired."""
        target = self.now + seconds
        fired = 0
        while True:
            due = [(when, seq, key) for key, (when, seq, _) in self._pending.items() if when <= target]
            if not due:
                break
            when, _, key = min(due)
            _, _, callback = self._pending.pop(key)
            self.now = when
            callback()
            fired += 1
        self.now = target
        return fired

    def shutdown(self):
        self._pending.clear()
