"""FastAPI dependencies resolving the collector's shared services."""

from fastapi import Depends, Request

from routewatch.services.fanout_hub import FanoutHub
from routewatch.services.ingestion_service import IngestionService
from routewatch.services.metric_store import MetricStore
from routewatch.services.metrics_service import MetricsService


def get_store(request: Request) -> MetricStore:
  return request.app.state.store


def get_hub(request: Request) -> FanoutHub:
  return request.app.state.hub


def get_ingestion_service(request: Request) -> IngestionService:
  return request.app.state.ingestion


def get_metrics_service(store: MetricStore = Depends(get_store)) -> MetricsService:
  return MetricsService(store)
