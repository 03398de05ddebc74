"""
Aggregation store for beacon events.

Merges events that share an identity key into one in-flight ``Burst`` and
hands a snapshot of it to the delivery adapter once the key has been quiet
for the aggregation window. One lock guards the burst map and every
read-check-write on a burst; delivery always runs with the lock released.
"""

import itertools
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional

import structlog

from collector.core.aggregation.flush import FlushScheduler
from collector.core.models.config import CollectorConfig, CountMode
from collector.core.models.events import Burst, BurstSnapshot, BurstState, Event, ScoreResult
from collector.core.utils.metrics import ACTIVE_BURSTS, BURST_SIZE, EVENTS_INGESTED, FLUSHES
from collector.core.utils.scheduler import Scheduler, ThreadingScheduler

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IngestResult:
    """Outcome of merging one event into the store."""
    key: str
    outcome: str  # "created" or "merged"
    count: int


class AggregationStore:
    """Keyed map of in-flight bursts with debounce-then-hold flushing."""

    def __init__(self, config: CollectorConfig, delivery, scheduler: Optional[Scheduler] = None):
        """
        Args:
            config: Collector configuration (window, hold, count mode)
            delivery: Object exposing ``deliver(snapshot)``
            scheduler: Keyed single-shot scheduler (threading timers by default)
        """
        self.config = config
        self.delivery = delivery
        self.flush_scheduler = FlushScheduler(config, scheduler or ThreadingScheduler())

        self._bursts: Dict[str, Burst] = {}
        self._lock = threading.Lock()
        self._generations = itertools.count(1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._bursts)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._bursts)

    def get(self, key: str) -> Optional[BurstSnapshot]:
        with self._lock:
            burst = self._bursts.get(key)
            return burst.snapshot() if burst else None

    def state_of(self, key: str) -> Optional[BurstState]:
        with self._lock:
            burst = self._bursts.get(key)
            return burst.state if burst else None

    def stats(self) -> Dict[str, int]:
        with self._lock:
            by_state = Counter(burst.state.value for burst in self._bursts.values())
            total = len(self._bursts)
        stats = {state.value: by_state.get(state.value, 0) for state in BurstState}
        stats["total"] = total
        return stats

    def ingest(self, event: Event, score: ScoreResult) -> IngestResult:
        """Create or merge the burst for ``event`` and restart its quiet period."""
        key = event.key
        seen_at = event.timestamp

        with self._lock:
            burst = self._bursts.get(key)
            generation = next(self._generations)

            if burst is None:
                burst = Burst(
                    key=key,
                    latest_event=event,
                    latest_score=score,
                    first_seen_at=seen_at,
                    last_seen_at=seen_at,
                    generation=generation,
                )
                self._bursts[key] = burst
                outcome = "created"
            else:
                post_flush = burst.state in (BurstState.FLUSHING, BurstState.HELD)
                if post_flush and self.config.count_mode == CountMode.RESET:
                    burst.count = 1
                    burst.first_seen_at = seen_at
                else:
                    burst.count += 1
                burst.latest_event = event
                burst.latest_score = score
                burst.last_seen_at = seen_at
                burst.state = BurstState.ARMED
                burst.generation = generation
                outcome = "merged"

            count = burst.count
            self.flush_scheduler.arm(key, generation, self.handle_flush)
            ACTIVE_BURSTS.set(len(self._bursts))

        EVENTS_INGESTED.labels(outcome=outcome).inc()
        logger.debug("Event ingested", key=key, outcome=outcome, count=count)
        return IngestResult(key=key, outcome=outcome, count=count)

    def handle_flush(self, key: str, generation: int) -> None:
        """Timer callback: deliver the burst once its window has elapsed."""
        with self._lock:
            burst = self._bursts.get(key)
            if burst is None:
                FLUSHES.labels(outcome='missing').inc()
                logger.debug("Flush for evicted key ignored", key=key)
                return
            if burst.generation != generation or burst.state != BurstState.ARMED:
                FLUSHES.labels(outcome='stale').inc()
                logger.debug("Stale flush timer ignored", key=key, generation=generation)
                return
            burst.state = BurstState.FLUSHING
            snapshot = burst.snapshot()

        BURST_SIZE.observe(snapshot.count)
        try:
            self.delivery.deliver(snapshot)
            FLUSHES.labels(outcome='delivered').inc()
            logger.info("Burst flushed",
                       key=key,
                       count=snapshot.count,
                       score=snapshot.latest_score.score)
        except Exception as e:
            FLUSHES.labels(outcome='error').inc()
            logger.exception("Burst delivery raised", key=key, error=str(e))

        with self._lock:
            if self._bursts.get(key) is not burst:
                return
            burst.flush_count += 1
            if burst.state != BurstState.FLUSHING:
                # merged while delivering; the new flush timer is already armed
                return
            burst.state = BurstState.HELD
            burst.generation = next(self._generations)
            self.flush_scheduler.hold(key, burst.generation, self.handle_evict)

    def handle_evict(self, key: str, generation: int) -> None:
        """Timer callback: drop a held burst once its hold period has elapsed."""
        with self._lock:
            burst = self._bursts.get(key)
            if burst is None or burst.generation != generation or burst.state != BurstState.HELD:
                logger.debug("Stale eviction ignored", key=key, generation=generation)
                return
            del self._bursts[key]
            ACTIVE_BURSTS.set(len(self._bursts))
        logger.debug("Burst evicted", key=key)

    def drain(self) -> int:
        """Flush every armed burst now. Returns the number of bursts flushed."""
        with self._lock:
            keys = list(self._bursts)

        flushed = 0
        for key in keys:
            # timer cancel and generation read share one critical section
            with self._lock:
                burst = self._bursts.get(key)
                if burst is None or burst.state != BurstState.ARMED:
                    continue
                self.flush_scheduler.cancel(key)
                generation = burst.generation
            # a later merge re-arms its own timer; this flush is then stale
            self.handle_flush(key, generation)
            flushed += 1
        logger.info("Aggregation store drained", flushed=flushed)
        return flushed

    def close(self, drain: bool = False) -> None:
        if drain:
            self.drain()
        self.flush_scheduler.shutdown()
