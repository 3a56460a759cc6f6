"""Ingestion service: validate, classify, persist and publish metric reports."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from routewatch.lib.errors import PersistenceError, ValidationError
from routewatch.lib.metrics import record_ingest
from routewatch.models.metric_payload import MetricPayload, ResolvedMetric
from routewatch.services.fanout_hub import FanoutHub
from routewatch.services.metric_store import MetricStore
from routewatch.services.noise_filter import is_noise_route
from routewatch.services.recent_metrics import RecentMetrics

logger = logging.getLogger(__name__)


class IngestStatus(str, Enum):
    ACCEPTED = 'accepted'
    IGNORED = 'ignored'


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingest call.

    Attributes:
        status: accepted (stored and published) or ignored (noise route)
        metric: The resolved metric
        record: Serialized stored record, None when ignored
    """

    status: IngestStatus
    metric: ResolvedMetric
    record: Optional[Dict[str, Any]] = None

    @property
    def id(self) -> Optional[int]:
        return self.record['id'] if self.record else None


def validate_payload(payload: Any) -> ResolvedMetric:
    """Validate a raw payload and resolve its derived fields.

    Raises:
        ValidationError: Naming the first violated field
    """
    if not isinstance(payload, dict):
        raise ValidationError('Metric payload must be a JSON object')
    try:
        return MetricPayload.model_validate(payload).resolve()
    except PydanticValidationError as e:
        error = e.errors()[0]
        field = '.'.join(str(part) for part in error.get('loc', ())) or None
        message = f'{field}: {error.get("msg")}' if field else str(error.get('msg'))
        raise ValidationError(message, field=field) from e


class IngestionService:
    """Single entry point for metric reports.

    Records are published to live subscribers only after they were persisted,
    so a dashboard never shows a record the store does not have.
    """

    def __init__(self, store: MetricStore, hub: FanoutHub, recent: RecentMetrics):
        """Initialize ingestion service.

        Args:
            store: Durable metric store
            hub: Fan-out hub for live dashboard sessions
            recent: Ring buffer of recently accepted records
        """
        self.store = store
        self.hub = hub
        self.recent = recent

    async def ingest(self, payload: Any) -> IngestResult:
        """Validate, filter, persist and publish one metric report.

        Args:
            payload: Decoded JSON body

        Returns:
            IngestResult, accepted or ignored

        Raises:
            ValidationError: Malformed or out-of-range payload; nothing stored
            PersistenceError: The store rejected the write; the metric is dropped
        """
        try:
            metric = validate_payload(payload)
        except ValidationError as e:
            record_ingest('rejected')
            logger.info(f'Rejected metric payload: {e}')
            raise

        if is_noise_route(metric.route, self.store.noise_prefixes):
            record_ingest('ignored')
            logger.debug(f'Ignored noise route {metric.method} {metric.route}')
            return IngestResult(status=IngestStatus.IGNORED, metric=metric)

        try:
            stored = await run_in_threadpool(self.store.insert, metric)
        except PersistenceError as e:
            record_ingest('failed')
            logger.error(f'Dropping metric {metric.method} {metric.route}: {e}')
            raise

        record = stored.to_dict()
        self.recent.push(record)
        self.hub.publish(metric.service_name, record)
        record_ingest('accepted')
        logger.debug(
            f'Stored metric {record["id"]} {metric.method} {metric.route} '
            f'({metric.response_time}ms) for {metric.service_name}'
        )
        return IngestResult(status=IngestStatus.ACCEPTED, metric=metric, record=record)

    async def clear(self, service: str) -> int:
        """Delete a service's stored history and its buffered records.

        Raises:
            PersistenceError: If the delete fails
        """
        removed = await run_in_threadpool(self.store.clear, service)
        self.recent.evict(service)
        return removed
