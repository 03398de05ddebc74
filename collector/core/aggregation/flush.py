"""
Per-key debounce timers for the aggregation store.

Each key has a single timer slot in the underlying ``Scheduler``: arming a
flush replaces a pending eviction and vice versa, so a stale timer can never
fire next to a live one. Callbacks receive the generation they were armed
with; the store ignores any callback whose generation is no longer current.
"""

from typing import Callable

import structlog

from collector.core.models.config import CollectorConfig
from collector.core.utils.scheduler import Scheduler

logger = structlog.get_logger(__name__)


class FlushScheduler:
    """Arm quiet-period flushes and post-flush evictions per key."""

    def __init__(self, config: CollectorConfig, scheduler: Scheduler):
        self.config = config
        self.scheduler = scheduler

    def arm(self, key: str, generation: int, on_elapse: Callable[[str, int], None]) -> None:
        """(Re)start the aggregation window for ``key``."""
        self.scheduler.schedule_once(
            key,
            self.config.aggregation_window_sec,
            lambda: on_elapse(key, generation),
        )

    def hold(self, key: str, generation: int, on_evict: Callable[[str, int], None]) -> None:
        """Keep ``key`` allocated for the hold period, then evict it."""
        self.scheduler.schedule_once(
            key,
            self.config.hold_sec,
            lambda: on_evict(key, generation),
        )

    def cancel(self, key: str) -> bool:
        return self.scheduler.cancel(key)

    def pending(self) -> int:
        return self.scheduler.pending()

    def shutdown(self) -> None:
        self.scheduler.shutdown()
