"""Durable store for metric records.

Owns the engine, applies Alembic migrations, serializes writes and enforces
retention. Reads go through `read_session()` and may run concurrently with
writes; the windowed queries themselves live in MetricsService.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, delete, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from routewatch.lib.config import DEFAULT_NOISE_PREFIXES, Settings
from routewatch.lib.database import create_metrics_engine, create_session_factory
from routewatch.lib.errors import MigrationFailure, PersistenceError
from routewatch.models.metric_payload import ResolvedMetric
from routewatch.models.metric_record import MetricRecord, utcnow

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / 'migrations'

QUERY_KINDS = ('summary', 'routes', 'latency', 'errors', 'export')


class MetricStore:
    """SQLAlchemy-backed metric store.

    All writes take `_write_lock` and run as one transaction each, so there is
    a single logical writer per process and timestamps never go backwards
    relative to ids.
    """

    def __init__(
        self,
        engine: Engine,
        clock: Callable[[], datetime] = utcnow,
        noise_prefixes: Tuple[str, ...] = DEFAULT_NOISE_PREFIXES,
        slow_route_ms: int = 500,
    ):
        """Initialize the store.

        Args:
            engine: Engine from create_metrics_engine
            clock: Returns the current naive-UTC time; injectable for tests
            noise_prefixes: Routes excluded from aggregate queries
            slow_route_ms: Average latency above which a route is flagged slow
        """
        self.engine = engine
        self.clock = clock
        self.noise_prefixes = tuple(noise_prefixes)
        self.slow_route_ms = slow_route_ms
        self._session_factory = create_session_factory(engine)
        self._write_lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = utcnow) -> 'MetricStore':
        engine = create_metrics_engine(settings.database_url, settings.busy_timeout_ms)
        return cls(
            engine,
            clock=clock,
            noise_prefixes=settings.noise_prefixes,
            slow_route_ms=settings.slow_route_ms,
        )

    def now(self) -> datetime:
        return self.clock()

    # ==========================================================================
    # Schema
    # ==========================================================================

    def _alembic_config(self) -> Config:
        cfg = Config()
        cfg.set_main_option('script_location', str(MIGRATIONS_DIR))
        url = self.engine.url.render_as_string(hide_password=False)
        cfg.set_main_option('sqlalchemy.url', url.replace('%', '%%'))
        return cfg

    def migrate(self) -> None:
        """Bring the schema to the latest revision.

        Runs every pending migration in one transaction on the store's engine.
        Invoking it again once at head changes nothing.

        Raises:
            MigrationFailure: If any migration step fails; the transaction is
                rolled back and the store must not be used
        """
        cfg = self._alembic_config()
        try:
            with self._write_lock, self.engine.begin() as connection:
                cfg.attributes['connection'] = connection
                command.upgrade(cfg, 'head')
        except Exception as e:
            logger.error(f'Schema migration failed: {e}', exc_info=True)
            raise MigrationFailure(f'Schema migration failed: {e}') from e

        logger.info('Metrics store schema is up to date')

    def schema_snapshot(self) -> dict:
        """Describe tables, columns and indexes; used to verify migrations."""
        inspector = inspect(self.engine)
        snapshot = {}
        for table in sorted(inspector.get_table_names()):
            snapshot[table] = {
                'columns': [col['name'] for col in inspector.get_columns(table)],
                'indexes': sorted(ix['name'] for ix in inspector.get_indexes(table)),
            }
        return snapshot

    # ==========================================================================
    # Writes
    # ==========================================================================

    def _next_timestamp(self) -> datetime:
        now = self.clock()
        if self._last_timestamp is not None and now < self._last_timestamp:
            return self._last_timestamp
        return now

    def insert(self, metric: ResolvedMetric) -> MetricRecord:
        """Append one metric record.

        Args:
            metric: Validated, fully-resolved metric

        Returns:
            The persisted record with id and timestamp assigned

        Raises:
            PersistenceError: On any database failure; the caller does not retry
        """
        with self._write_lock:
            timestamp = self._next_timestamp()
            record = MetricRecord(
                route=metric.route,
                method=metric.method,
                status=metric.status,
                response_time=metric.response_time,
                is_error=metric.is_error,
                source_port=metric.source_port,
                service_name=metric.service_name,
                timestamp=timestamp,
            )
            session = self._session_factory()
            try:
                session.add(record)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceError(f'Failed to store metric {metric.method} {metric.route}: {e}') from e
            finally:
                session.close()
            self._last_timestamp = timestamp

        return record

    def purge_older_than(self, retention: timedelta) -> int:
        """Delete records whose timestamp is older than now - retention.

        Returns:
            Number of rows removed

        Raises:
            PersistenceError: If the delete fails
        """
        cutoff = self.clock() - retention
        with self._write_lock:
            try:
                with self.engine.begin() as connection:
                    result = connection.execute(delete(MetricRecord).where(MetricRecord.timestamp < cutoff))
            except SQLAlchemyError as e:
                raise PersistenceError(f'Retention purge failed: {e}') from e

        removed = result.rowcount or 0
        if removed:
            logger.info(f'Purged {removed} metric records older than {cutoff.isoformat()}')
        return removed

    def clear(self, service_name: str) -> int:
        """Delete every record belonging to one service.

        Returns:
            Number of rows removed

        Raises:
            PersistenceError: If the delete fails
        """
        with self._write_lock:
            try:
                with self.engine.begin() as connection:
                    result = connection.execute(
                        delete(MetricRecord).where(MetricRecord.service_name == service_name)
                    )
            except SQLAlchemyError as e:
                raise PersistenceError(f'Failed to clear metrics for {service_name}: {e}') from e

        removed = result.rowcount or 0
        logger.info(f'Cleared {removed} metric records for service {service_name}')
        return removed

    # ==========================================================================
    # Reads
    # ==========================================================================

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        """Session for read-only queries.

        Raises:
            PersistenceError: If the query fails
        """
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            raise PersistenceError(f'Metrics query failed: {e}') from e
        finally:
            session.rollback()
            session.close()

    def _metrics(self):
        from routewatch.services.metrics_service import MetricsService

        return MetricsService(self)

    def query(
        self,
        kind: str,
        minutes: int = 60,
        service: Optional[str] = None,
        limit: Optional[int] = None,
    ):
        """Run one of the windowed query kinds.

        Args:
            kind: 'summary', 'routes', 'latency', 'errors' or 'export'
            minutes: Trailing window (ignored by 'export')
            service: Optional service name filter
            limit: Row limit for 'latency' and 'export'

        Raises:
            ValueError: For an unknown kind
            PersistenceError: If the query fails
        """
        metrics = self._metrics()
        if kind == 'summary':
            return metrics.summary(minutes, service)
        if kind == 'routes':
            return metrics.route_breakdown(minutes, service)
        if kind == 'latency':
            return metrics.latency_series(minutes, service, limit or 50)
        if kind == 'errors':
            return metrics.error_buckets(minutes, service)
        if kind == 'export':
            return metrics.raw_export(service, limit or 25)
        raise ValueError(f'Unknown query kind {kind!r}; expected one of {", ".join(QUERY_KINDS)}')

    def list_services(self) -> list:
        """Distinct service names with request counts, most requests first."""
        return self._metrics().services()

    def stats(self, service: Optional[str] = None) -> dict:
        """Record count, distinct routes and age range, optionally for one service."""
        return self._metrics().stats(service)

    def dispose(self) -> None:
        self.engine.dispose()
