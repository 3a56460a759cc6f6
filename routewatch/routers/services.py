"""Service discovery endpoint for the dashboard's service selector."""

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from routewatch.routers.dependencies import get_metrics_service
from routewatch.services.metrics_service import MetricsService

router = APIRouter(prefix='/api/services', tags=['Services'])


class ServiceSummary(BaseModel):
  serviceName: str
  requests: int


@router.get('', response_model=List[ServiceSummary])
def list_services(metrics: MetricsService = Depends(get_metrics_service)):
  """Services with stored history, busiest first."""
  return metrics.services()
