"""Metrics API endpoints: ingestion and dashboard queries.

Query endpoints are plain functions so FastAPI runs them in its threadpool
and a slow read never stalls the event loop. Store failures surface as 503
through the application's PersistenceError handler.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from routewatch.lib.errors import PersistenceError, ValidationError
from routewatch.routers.dependencies import get_ingestion_service, get_metrics_service
from routewatch.services.ingestion_service import IngestionService, IngestStatus
from routewatch.services.metrics_service import DEFAULT_WINDOW_MINUTES, MetricsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api/metrics', tags=['Metrics'])

MAX_WINDOW_MINUTES = 60 * 24 * 30


# Pydantic models for response documentation


class SummaryResponse(BaseModel):
  """Aggregate over the trailing window."""

  totalRequests: int = Field(..., description='Requests in the window')
  avgResponseTime: int = Field(..., description='Mean response time (ms, rounded)')
  errorRate: float = Field(..., description='Share of error responses (percent, 2 decimals)')


class RouteStats(BaseModel):
  """Statistics for one (method, route) pair."""

  id: str = Field(..., description='Stable row key: "<METHOD> <route>"')
  route: str
  method: str
  hits: int
  avgTime: int
  maxTime: int
  minTime: int
  errorPercent: float
  isSlow: bool = Field(..., description='Average latency above the slow-route threshold')


class LatencyPoint(BaseModel):
  time: str = Field(..., description='Time of day (HH:MM:SS, UTC)')
  latency: int = Field(..., description='Response time (ms)')
  route: str
  method: str


class ErrorBucket(BaseModel):
  time: str = Field(..., description='Minute (HH:MM, UTC)')
  count: int
  route: str
  status: int = Field(..., description='Highest status in the bucket')


class IngestResponse(BaseModel):
  ok: bool
  status: Optional[str] = None
  id: Optional[int] = None
  error: Optional[str] = None


@router.post('', response_model=IngestResponse, response_model_exclude_none=True)
async def ingest_metric(
  payload: Any = Body(None),
  ingestion: IngestionService = Depends(get_ingestion_service),
):
  """Ingest one metric report.

  Noise routes (the collector's own API and health paths) are acknowledged
  but neither stored nor broadcast.

  Returns:
      {'ok': True, 'status': 'accepted', 'id': ...} or {'ok': True, 'status': 'ignored'}
  """
  try:
    result = await ingestion.ingest(payload)
  except ValidationError as e:
    return JSONResponse(status_code=400, content={'ok': False, 'error': str(e)})
  except PersistenceError:
    return JSONResponse(status_code=500, content={'ok': False, 'error': 'Failed to store metric'})

  if result.status is IngestStatus.IGNORED:
    return IngestResponse(ok=True, status=result.status.value)
  return IngestResponse(ok=True, status=result.status.value, id=result.id)


@router.get('/summary', response_model=SummaryResponse)
def get_summary(
  minutes: int = Query(DEFAULT_WINDOW_MINUTES, ge=1, le=MAX_WINDOW_MINUTES),
  service: Optional[str] = None,
  metrics: MetricsService = Depends(get_metrics_service),
):
  """Request count, mean latency and error rate over the window."""
  return metrics.summary(minutes, service)


@router.get('/routes', response_model=List[RouteStats])
def get_routes(
  minutes: int = Query(DEFAULT_WINDOW_MINUTES, ge=1, le=MAX_WINDOW_MINUTES),
  service: Optional[str] = None,
  metrics: MetricsService = Depends(get_metrics_service),
):
  """Per-route statistics sorted by hits, descending."""
  return metrics.route_breakdown(minutes, service)


@router.get('/latency', response_model=List[LatencyPoint])
def get_latency(
  minutes: int = Query(DEFAULT_WINDOW_MINUTES, ge=1, le=MAX_WINDOW_MINUTES),
  limit: int = Query(50, ge=1, le=1000),
  service: Optional[str] = None,
  metrics: MetricsService = Depends(get_metrics_service),
):
  """Most recent response times, oldest first."""
  return metrics.latency_series(minutes, service, limit)


@router.get('/errors', response_model=List[ErrorBucket])
def get_errors(
  minutes: int = Query(DEFAULT_WINDOW_MINUTES, ge=1, le=MAX_WINDOW_MINUTES),
  service: Optional[str] = None,
  metrics: MetricsService = Depends(get_metrics_service),
):
  """Error counts per minute and route, most recent first (max 50 groups)."""
  return metrics.error_buckets(minutes, service)


@router.get('/export')
def export_metrics(
  limit: int = Query(25, ge=1, le=1000),
  service: Optional[str] = None,
  metrics: MetricsService = Depends(get_metrics_service),
) -> List[Dict[str, Any]]:
  """Most recent raw records, newest first.

  Dashboards use this as their liveness probe: a 503 or an empty list means
  disconnected.
  """
  return metrics.raw_export(service, limit)


@router.get('/recent')
def get_recent(
  limit: int = Query(25, ge=1, le=1000),
  service: Optional[str] = None,
  ingestion: IngestionService = Depends(get_ingestion_service),
) -> List[Dict[str, Any]]:
  """Recently accepted records from the in-memory buffer, newest first."""
  return ingestion.recent.snapshot(service, limit)


@router.get('/stats')
def get_stats(
  service: Optional[str] = None,
  metrics: MetricsService = Depends(get_metrics_service),
) -> Dict[str, Any]:
  """Record count, distinct routes and the age range of stored history."""
  return metrics.stats(service)


@router.delete('/clear/{service}')
async def clear_metrics(
  service: str,
  ingestion: IngestionService = Depends(get_ingestion_service),
):
  """Delete all stored history for one service."""
  removed = await ingestion.clear(service)
  logger.info(f'Cleared history for service {service} ({removed} records)')
  return {
    'status': 'success',
    'message': f'Metrics cleared for {service}',
    'removed': removed,
  }
