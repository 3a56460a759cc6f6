"""Prometheus metrics describing the pipeline itself.

These are the collector's and proxy's own counters, exposed at
/internal/prometheus; they are separate from the stored metric records.
"""

from prometheus_client import Counter, Gauge, Histogram

ingest_total = Counter(
    'routewatch_ingest_total',
    'Metric payloads received by the collector',
    ['outcome'],
)

purged_records_total = Counter(
    'routewatch_purged_records_total',
    'Metric records removed by the retention sweep',
)

fanout_deliveries_total = Counter(
    'routewatch_fanout_deliveries_total',
    'Live events handed to dashboard sessions',
    ['result'],
)

active_sessions_gauge = Gauge(
    'routewatch_active_sessions',
    'Dashboard sessions connected to the real-time channel',
)

upstream_duration_seconds = Histogram(
    'routewatch_upstream_duration_seconds',
    'Round trip of proxied requests to the upstream service',
    ['method', 'outcome'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0],
)

report_failures_total = Counter(
    'routewatch_report_failures_total',
    'Metric reports that could not be delivered to the collector',
)


def record_ingest(outcome: str) -> None:
    """Count one ingestion outcome.

    Args:
        outcome: 'accepted', 'ignored', 'rejected' or 'failed'
    """
    ingest_total.labels(outcome=outcome).inc()


def record_purge(count: int) -> None:
    """Count records removed by a retention sweep."""
    if count > 0:
        purged_records_total.inc(count)


def record_fanout(delivered: int, dropped: int) -> None:
    """Count live events delivered and dropped for full queues."""
    if delivered:
        fanout_deliveries_total.labels(result='delivered').inc(delivered)
    if dropped:
        fanout_deliveries_total.labels(result='dropped').inc(dropped)


def record_upstream_call(method: str, outcome: str, duration_seconds: float) -> None:
    """Record a proxied upstream round trip.

    Args:
        method: HTTP method of the proxied request
        outcome: 'ok', 'unreachable', 'timeout' or 'error'
        duration_seconds: Elapsed wall-clock time
    """
    upstream_duration_seconds.labels(method=method, outcome=outcome).observe(duration_seconds)


def record_report_failure() -> None:
    report_failures_total.inc()


def update_active_sessions(count: int) -> None:
    active_sessions_gauge.set(count)
