"""
Shared Prometheus metrics for the collector core.

This module provides centralized metric definitions to avoid
duplicate registrations across the store, scorer and sinks.
"""

from prometheus_client import Counter, Gauge, Histogram

# Ingest metrics
EVENTS_INGESTED = Counter(
    'collector_events_ingested_total',
    'Total events ingested into the aggregation store',
    ['outcome']
)

ACTIVE_BURSTS = Gauge(
    'collector_active_bursts',
    'Bursts currently held in the aggregation store'
)

# Flush metrics
FLUSHES = Counter(
    'collector_flushes_total',
    'Flush timer firings by outcome',
    ['outcome']
)

BURST_SIZE = Histogram(
    'collector_burst_event_count',
    'Number of merged events per flushed burst',
    buckets=[1, 2, 3, 5, 10, 25, 50, 100]
)

# Delivery metrics
DELIVERY_PAYLOADS = Counter(
    'collector_delivery_payloads_total',
    'Payloads sent to the notification sink',
    ['kind', 'status']
)

DELIVERY_DURATION = Histogram(
    'collector_delivery_duration_seconds',
    'Time spent delivering one flushed burst'
)

# Scoring metrics
RDNS_LOOKUPS = Counter(
    'collector_rdns_lookups_total',
    'Reverse-DNS lookups by status',
    ['status']
)

RDNS_DURATION = Histogram(
    'collector_rdns_duration_seconds',
    'Reverse-DNS lookup wall time',
    buckets=[0.01, 0.05, 0.1, 0.2, 0.35, 0.5, 1.0, 2.0]
)

SCORE_DISTRIBUTION = Histogram(
    'collector_vpn_score',
    'Distribution of proxy/VPN likelihood scores',
    buckets=[0, 10, 20, 35, 50, 70, 85, 100]
)
