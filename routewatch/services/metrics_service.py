"""Metrics service for windowed aggregate queries over stored records.

Every query is read-only, optionally filtered by service name, and (except
export and stats) limited to a trailing window of minutes and stripped of
noise routes. Empty windows produce zeros and empty lists, never errors.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import case, func, not_, select

from routewatch.models.metric_record import MetricRecord
from routewatch.services.noise_filter import noise_route_clause

DEFAULT_WINDOW_MINUTES = 60
ERROR_BUCKET_CAP = 50


def round_ms(value: Optional[float]) -> int:
    """Round a time value to the nearest integer, halves rounding up."""
    if value is None:
        return 0
    return int(math.floor(float(value) + 0.5))


def round_percent(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    return round(float(value), 2)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class MetricsService:
    """Aggregation queries over a MetricStore."""

    def __init__(self, store):
        """Initialize metrics service.

        Args:
            store: MetricStore providing sessions, clock and noise prefixes
        """
        self.store = store

    def _error_sum(self):
        return func.sum(case((MetricRecord.is_error.is_(True), 1), else_=0))

    def _filters(self, minutes: Optional[int], service: Optional[str]) -> list:
        """WHERE conditions for a window, a service and the noise exclusion."""
        conditions = []
        if minutes is not None:
            cutoff = self.store.now() - timedelta(minutes=minutes)
            conditions.append(MetricRecord.timestamp >= cutoff)
        if service:
            conditions.append(MetricRecord.service_name == service)
        conditions.append(not_(noise_route_clause(MetricRecord.route, self.store.noise_prefixes)))
        return conditions

    def summary(self, minutes: int = DEFAULT_WINDOW_MINUTES, service: Optional[str] = None) -> Dict:
        """Overall request count, mean latency and error rate.

        Returns:
            {'totalRequests', 'avgResponseTime' (ms, integer), 'errorRate' (percent)}
        """
        query = select(
            func.count(MetricRecord.id),
            func.avg(MetricRecord.response_time),
            self._error_sum(),
        ).where(*self._filters(minutes, service))

        with self.store.read_session() as session:
            total, avg_time, errors = session.execute(query).one()

        total = total or 0
        if total == 0:
            return {'totalRequests': 0, 'avgResponseTime': 0, 'errorRate': 0}

        return {
            'totalRequests': total,
            'avgResponseTime': round_ms(avg_time),
            'errorRate': round_percent((errors or 0) * 100.0 / total),
        }

    def route_breakdown(
        self, minutes: int = DEFAULT_WINDOW_MINUTES, service: Optional[str] = None
    ) -> List[Dict]:
        """Per (route, method) statistics, busiest first.

        Each row's `id` is derived from the (method, route) pair so repeated
        queries produce the same keys.
        """
        hits = func.count(MetricRecord.id)
        query = (
            select(
                MetricRecord.route,
                MetricRecord.method,
                hits.label('hits'),
                func.avg(MetricRecord.response_time),
                func.max(MetricRecord.response_time),
                func.min(MetricRecord.response_time),
                self._error_sum(),
            )
            .where(*self._filters(minutes, service))
            .group_by(MetricRecord.route, MetricRecord.method)
            .order_by(hits.desc(), MetricRecord.route, MetricRecord.method)
        )

        with self.store.read_session() as session:
            rows = session.execute(query).all()

        breakdown = []
        for route, method, count, avg_time, max_time, min_time, errors in rows:
            avg_ms = round_ms(avg_time)
            breakdown.append({
                'id': f'{method} {route}',
                'route': route,
                'method': method,
                'hits': count,
                'avgTime': avg_ms,
                'maxTime': round_ms(max_time),
                'minTime': round_ms(min_time),
                'errorPercent': round_percent((errors or 0) * 100.0 / count),
                'isSlow': avg_ms > self.store.slow_route_ms,
            })
        return breakdown

    def latency_series(
        self,
        minutes: int = DEFAULT_WINDOW_MINUTES,
        service: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict]:
        """Most recent response times in chronological order.

        Fetches newest-first to bound the scan, then reverses for charting.
        """
        query = (
            select(
                MetricRecord.timestamp,
                MetricRecord.response_time,
                MetricRecord.route,
                MetricRecord.method,
            )
            .where(*self._filters(minutes, service))
            .order_by(MetricRecord.id.desc())
            .limit(limit)
        )

        with self.store.read_session() as session:
            rows = session.execute(query).all()

        points = [
            {
                'time': timestamp.strftime('%H:%M:%S'),
                'latency': response_time,
                'route': route,
                'method': method,
            }
            for timestamp, response_time, route, method in rows
        ]
        points.reverse()
        return points

    def error_buckets(
        self, minutes: int = DEFAULT_WINDOW_MINUTES, service: Optional[str] = None
    ) -> List[Dict]:
        """Error counts grouped by minute and route, most recent first.

        Grouping is done here rather than in SQL so minute truncation does not
        depend on the database dialect. A group's status is the highest status
        seen in it.
        """
        query = (
            select(MetricRecord.timestamp, MetricRecord.route, MetricRecord.status)
            .where(MetricRecord.is_error.is_(True), *self._filters(minutes, service))
            .order_by(MetricRecord.id.desc())
        )

        buckets: Dict[tuple, Dict] = {}
        with self.store.read_session() as session:
            for timestamp, route, status in session.execute(query):
                key = (timestamp.strftime('%Y-%m-%d %H:%M'), route)
                bucket = buckets.get(key)
                if bucket is None:
                    if len(buckets) >= ERROR_BUCKET_CAP:
                        continue
                    bucket = buckets[key] = {
                        'time': timestamp.strftime('%H:%M'),
                        'count': 0,
                        'route': route,
                        'status': status,
                    }
                bucket['count'] += 1
                bucket['status'] = max(bucket['status'], status)

        return list(buckets.values())

    def raw_export(self, service: Optional[str] = None, limit: int = 25) -> List[Dict]:
        """Most recent full records, newest first."""
        query = select(MetricRecord).order_by(MetricRecord.id.desc()).limit(limit)
        if service:
            query = query.where(MetricRecord.service_name == service)

        with self.store.read_session() as session:
            return [record.to_dict() for record in session.scalars(query)]

    def is_connected(self, service: Optional[str] = None) -> bool:
        """Liveness probe: true when the store holds at least one record."""
        return len(self.raw_export(service, limit=1)) > 0

    def stats(self, service: Optional[str] = None) -> Dict:
        """Size and age range of the stored history."""
        query = select(
            func.count(MetricRecord.id),
            func.count(func.distinct(MetricRecord.route)),
            func.min(MetricRecord.timestamp),
            func.max(MetricRecord.timestamp),
        )
        if service:
            query = query.where(MetricRecord.service_name == service)

        with self.store.read_session() as session:
            total, unique_routes, oldest, newest = session.execute(query).one()

        return {
            'totalRecords': total or 0,
            'uniqueRoutes': unique_routes or 0,
            'oldestRecord': _iso(oldest),
            'newestRecord': _iso(newest),
        }

    def services(self) -> List[Dict]:
        """Distinct service names with their request counts, busiest first."""
        requests = func.count(MetricRecord.id)
        query = (
            select(MetricRecord.service_name, requests)
            .group_by(MetricRecord.service_name)
            .order_by(requests.desc(), MetricRecord.service_name)
        )

        with self.store.read_session() as session:
            return [
                {'serviceName': name, 'requests': count} for name, count in session.execute(query)
            ]
