#!/usr/bin/env python3
"""
Tests for the aggregation store and its flush/hold lifecycle.

Timing is driven by ManualScheduler so windows and holds can be stepped
through deterministically; one test runs on real threading timers.
"""

import sys
import threading
import time
from datetime import datetime, timedelta, timezone

from collector.core.aggregation.store import AggregationStore
from collector.core.models.config import CollectorConfig, CountMode
from collector.core.models.events import BurstState, Event, IdentitySeed, ScoreResult
from collector.core.utils.scheduler import ManualScheduler, ThreadingScheduler

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class RecordingDelivery:
    """Collects delivered snapshots; optionally runs a hook while 'delivering'."""

    def __init__(self, hook=None, fail=False):
        self.snapshots = []
        self.hook = hook
        self.fail = fail

    def deliver(self, snapshot):
        self.snapshots.append(snapshot)
        if self.hook:
            self.hook(snapshot)
        if self.fail:
            raise RuntimeError("sink exploded")


def make_event(scheduler=None, ip="203.0.113.7", path="/", seconds=None):
    offset = seconds if seconds is not None else (scheduler.now if scheduler else 0.0)
    return Event(
        identity=IdentitySeed(ip=ip, device="PC", browser="Chrome", path=path),
        timestamp=BASE_TIME + timedelta(seconds=offset),
        client_signals={"language": "en-US"},
    )


def make_store(window_ms=3000, hold_ms=12000, count_mode=CountMode.ACCUMULATE, delivery=None):
    config = CollectorConfig(aggregation_window_ms=window_ms, hold_ms=hold_ms, count_mode=count_mode)
    scheduler = ManualScheduler()
    delivery = delivery or RecordingDelivery()
    store = AggregationStore(config, delivery, scheduler=scheduler)
    return store, scheduler, delivery


def test_three_events_collapse_into_one_flush():
    print("🧪 Testing burst collapse (3 events, 500ms apart, 3000ms window)...")
    store, scheduler, delivery = make_store()

    results = []
    for i in range(3):
        if i:
            scheduler.advance(0.5)
        results.append(store.ingest(make_event(scheduler), ScoreResult()))

    assert [r.outcome for r in results] == ["created", "merged", "merged"]
    assert [r.count for r in results] == [1, 2, 3]
    assert len(store) == 1

    key = results[0].key
    assert scheduler.due_at(key) == 4.0

    scheduler.advance(2.5)
    assert delivery.snapshots == []

    scheduler.advance(0.5)
    assert len(delivery.snapshots) == 1
    snapshot = delivery.snapshots[0]
    assert snapshot.count == 3
    assert snapshot.first_seen_at == BASE_TIME
    assert snapshot.last_seen_at == BASE_TIME + timedelta(seconds=1.0)
    print(f"  ✅ One flush, count={snapshot.count}")


def test_latest_event_and_score_overwrite():
    store, scheduler, delivery = make_store()
    store.ingest(make_event(scheduler), ScoreResult(score=0))
    scheduler.advance(1.0)
    second = make_event(scheduler)
    store.ingest(second, ScoreResult(score=35, reasons=["ASN: AMAZON-02"]))

    scheduler.advance(3.0)
    snapshot = delivery.snapshots[0]
    assert snapshot.latest_event == second
    assert snapshot.latest_score.score == 35
    assert snapshot.latest_score.reasons == ["ASN: AMAZON-02"]


def test_flushed_burst_is_held_then_evicted():
    print("🧪 Testing hold and eviction...")
    store, scheduler, delivery = make_store(window_ms=3000, hold_ms=12000)
    key = store.ingest(make_event(scheduler), ScoreResult()).key

    scheduler.advance(3.0)
    assert len(delivery.snapshots) == 1
    assert store.state_of(key) == BurstState.HELD
    assert scheduler.due_at(key) == 15.0

    scheduler.advance(11.5)
    assert store.state_of(key) == BurstState.HELD

    scheduler.advance(0.5)
    assert store.get(key) is None
    assert len(store) == 0
    assert scheduler.pending() == 0


def test_event_after_eviction_starts_independent_burst():
    store, scheduler, delivery = make_store(window_ms=3000, hold_ms=12000)
    store.ingest(make_event(scheduler), ScoreResult())
    scheduler.advance(20.0)
    assert len(store) == 0

    result = store.ingest(make_event(scheduler), ScoreResult())
    assert result.outcome == "created"
    assert result.count == 1

    scheduler.advance(3.0)
    assert len(delivery.snapshots) == 2
    assert delivery.snapshots[1].count == 1
    assert delivery.snapshots[1].first_seen_at == BASE_TIME + timedelta(seconds=20.0)


def test_event_during_hold_accumulates_count():
    print("🧪 Testing merge during hold (accumulate mode)...")
    store, scheduler, delivery = make_store(window_ms=3000, hold_ms=12000)
    key = None
    for _ in range(3):
        key = store.ingest(make_event(scheduler), ScoreResult()).key
    scheduler.advance(3.0)
    assert store.state_of(key) == BurstState.HELD

    scheduler.advance(5.0)
    result = store.ingest(make_event(scheduler), ScoreResult())
    assert result.outcome == "merged"
    assert result.count == 4
    assert store.state_of(key) == BurstState.ARMED
    # the flush timer replaced the pending eviction
    assert scheduler.due_at(key) == 11.0

    scheduler.advance(3.0)
    assert [s.count for s in delivery.snapshots] == [3, 4]
    assert delivery.snapshots[1].first_seen_at == BASE_TIME
    assert store.get(key).flush_count == 2


def test_event_during_hold_resets_count_in_reset_mode():
    store, scheduler, delivery = make_store(count_mode=CountMode.RESET)
    store.ingest(make_event(scheduler), ScoreResult())
    store.ingest(make_event(scheduler), ScoreResult())
    scheduler.advance(3.0)

    scheduler.advance(1.0)
    result = store.ingest(make_event(scheduler), ScoreResult())
    assert result.count == 1

    scheduler.advance(3.0)
    assert [s.count for s in delivery.snapshots] == [2, 1]
    assert delivery.snapshots[1].first_seen_at == BASE_TIME + timedelta(seconds=4.0)


def test_distinct_keys_flush_independently():
    store, scheduler, delivery = make_store()
    store.ingest(make_event(scheduler, path="/a"), ScoreResult())
    scheduler.advance(1.0)
    store.ingest(make_event(scheduler, path="/b"), ScoreResult())
    assert len(store) == 2

    scheduler.advance(2.0)
    assert [s.latest_event.identity.path for s in delivery.snapshots] == ["/a"]
    scheduler.advance(1.0)
    assert [s.latest_event.identity.path for s in delivery.snapshots] == ["/a", "/b"]


def test_flush_for_missing_key_is_a_noop():
    print("🧪 Testing flush for an evicted key...")
    store, scheduler, delivery = make_store()
    store.handle_flush("203.0.113.7|PC|Chrome|/|-|-", 1)
    assert delivery.snapshots == []


def test_flush_after_concurrent_eviction_is_a_noop():
    store, scheduler, delivery = make_store(window_ms=3000, hold_ms=1000)
    key = store.ingest(make_event(scheduler), ScoreResult()).key
    stale_generation = 1

    scheduler.advance(3.0)
    scheduler.advance(1.0)
    assert store.get(key) is None

    # a flush timer that lost the race with eviction
    store.handle_flush(key, stale_generation)
    assert len(delivery.snapshots) == 1


def test_stale_generation_is_ignored():
    store, scheduler, delivery = make_store()
    key = store.ingest(make_event(scheduler), ScoreResult()).key
    store.ingest(make_event(scheduler), ScoreResult())

    # generation 1 belonged to the timer that was re-armed
    store.handle_flush(key, 1)
    assert delivery.snapshots == []
    assert store.state_of(key) == BurstState.ARMED

    scheduler.advance(3.0)
    assert len(delivery.snapshots) == 1


def test_stale_eviction_is_ignored():
    store, scheduler, delivery = make_store()
    key = store.ingest(make_event(scheduler), ScoreResult()).key
    store.handle_evict(key, 1)
    assert store.state_of(key) == BurstState.ARMED


def test_delivery_errors_do_not_escape():
    store, scheduler, delivery = make_store(delivery=RecordingDelivery(fail=True))
    key = store.ingest(make_event(scheduler), ScoreResult()).key

    scheduler.advance(3.0)
    assert len(delivery.snapshots) == 1
    assert store.state_of(key) == BurstState.HELD


def test_merge_while_delivering_rearms_instead_of_holding():
    print("🧪 Testing merge during delivery (lock released while delivering)...")
    holder = {}

    def merge_during_delivery(snapshot):
        holder["store"].ingest(make_event(seconds=10.0), ScoreResult())

    delivery = RecordingDelivery(hook=merge_during_delivery)
    store, scheduler, _ = make_store(delivery=delivery)
    holder["store"] = store

    key = store.ingest(make_event(scheduler), ScoreResult()).key
    scheduler.advance(3.0)

    assert len(delivery.snapshots) == 1
    assert store.state_of(key) == BurstState.ARMED
    assert store.get(key).count == 2
    assert store.get(key).flush_count == 1


def test_drain_flushes_armed_bursts():
    store, scheduler, delivery = make_store()
    store.ingest(make_event(scheduler, path="/a"), ScoreResult())
    store.ingest(make_event(scheduler, path="/b"), ScoreResult())

    assert store.drain() == 2
    assert len(delivery.snapshots) == 2
    assert store.stats()["held"] == 2

    # the drained flush timers were cancelled; only evictions remain
    scheduler.advance(3.0)
    assert len(delivery.snapshots) == 2


class MergeBeforeFlushStore(AggregationStore):
    """Lands one merge for the key just before the first flush callback runs."""

    merged = False

    def handle_flush(self, key, generation):
        if not self.merged:
            self.merged = True
            self.ingest(make_event(seconds=1.0), ScoreResult())
        super().handle_flush(key, generation)


def test_merge_during_drain_still_flushes_and_evicts():
    print("🧪 Testing merge racing a drain...")
    config = CollectorConfig(aggregation_window_ms=3000, hold_ms=12000)
    scheduler = ManualScheduler()
    delivery = RecordingDelivery()
    store = MergeBeforeFlushStore(config, delivery, scheduler=scheduler)
    key = store.ingest(make_event(scheduler), ScoreResult()).key

    store.drain()

    # the drained flush went stale; the merge's own timer is live
    assert delivery.snapshots == []
    assert store.state_of(key) == BurstState.ARMED
    assert scheduler.pending() == 1

    scheduler.advance(3.0)
    assert [s.count for s in delivery.snapshots] == [2]

    scheduler.advance(100.0)
    assert store.get(key) is None
    assert scheduler.pending() == 0


def test_drain_skips_held_bursts():
    store, scheduler, delivery = make_store()
    store.ingest(make_event(scheduler, path="/a"), ScoreResult())
    scheduler.advance(3.0)
    store.ingest(make_event(scheduler, path="/b"), ScoreResult())

    assert store.drain() == 1
    assert [s.latest_event.identity.path for s in delivery.snapshots] == ["/a", "/b"]
    assert store.stats()["held"] == 2


def test_stats_by_state():
    store, scheduler, delivery = make_store()
    store.ingest(make_event(scheduler, path="/a"), ScoreResult())
    scheduler.advance(3.0)
    store.ingest(make_event(scheduler, path="/b"), ScoreResult())

    assert store.stats() == {"armed": 1, "flushing": 0, "held": 1, "total": 2}


def test_concurrent_ingest_creates_single_burst():
    print("🧪 Testing concurrent ingest for one key...")
    store, scheduler, delivery = make_store()
    barrier = threading.Barrier(8)
    outcomes = []
    outcomes_lock = threading.Lock()

    def worker():
        barrier.wait()
        for _ in range(25):
            result = store.ingest(make_event(seconds=0.0), ScoreResult())
            with outcomes_lock:
                outcomes.append(result.outcome)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("created") == 1
    assert len(store) == 1
    assert scheduler.pending() == 1

    scheduler.advance(3.0)
    assert len(delivery.snapshots) == 1
    assert delivery.snapshots[0].count == 200


def test_threading_scheduler_end_to_end():
    print("🧪 Testing real timers (100ms window, 200ms hold)...")
    config = CollectorConfig(aggregation_window_ms=100, hold_ms=200)
    delivery = RecordingDelivery()
    store = AggregationStore(config, delivery, scheduler=ThreadingScheduler())
    try:
        key = None
        for _ in range(3):
            key = store.ingest(make_event(), ScoreResult()).key
            time.sleep(0.02)

        deadline = time.monotonic() + 3.0
        while not delivery.snapshots and time.monotonic() < deadline:
            time.sleep(0.01)
        assert len(delivery.snapshots) == 1
        assert delivery.snapshots[0].count == 3

        deadline = time.monotonic() + 3.0
        while store.get(key) is not None and time.monotonic() < deadline:
            time.sleep(0.01)
        assert store.get(key) is None
        assert len(delivery.snapshots) == 1
    finally:
        store.close()


def main():
    tests = [obj for name, obj in sorted(globals().items()) if name.startswith("test_") and callable(obj)]
    for test in tests:
        test()
    print(f"\n✅ {len(tests)} aggregation store tests passed!")
    return True


if __name__ == '__main__':
    sys.exit(0 if main() else 1)
