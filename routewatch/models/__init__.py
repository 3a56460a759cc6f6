"""Models package for database entities and Pydantic models."""

from routewatch.models.metric_payload import MetricPayload, ResolvedMetric
from routewatch.models.metric_record import MetricRecord

__all__ = [
  'MetricRecord',
  'MetricPayload',
  'ResolvedMetric',
]
