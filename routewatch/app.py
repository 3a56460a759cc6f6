"""FastAPI application for the RouteWatch collector."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from routewatch import __version__
from routewatch.lib.config import Settings, load_settings
from routewatch.lib.distributed_tracing import (
  CORRELATION_HEADER,
  correlation_id_from,
  set_correlation_id,
)
from routewatch.lib.errors import PersistenceError
from routewatch.lib.structured_logger import log_request
from routewatch.models.metric_record import utcnow
from routewatch.routers import router
from routewatch.services.fanout_hub import FanoutHub
from routewatch.services.ingestion_service import IngestionService
from routewatch.services.metric_store import MetricStore
from routewatch.services.recent_metrics import RecentMetrics
from routewatch.services.retention import run_retention_sweeps

logger = logging.getLogger(__name__)

INGEST_PATH = '/api/metrics'


def create_app(
  settings: Optional[Settings] = None,
  store: Optional[MetricStore] = None,
  clock: Callable[[], datetime] = utcnow,
  run_retention: bool = True,
) -> FastAPI:
  """Build the collector application.

  The store is migrated when the app starts; a migration failure aborts
  startup.

  Args:
      settings: Collector settings, loaded from the environment when omitted
      store: Pre-built store (tests pass one bound to a temporary database)
      clock: Time source for a store built here
      run_retention: Start the periodic retention sweep

  Returns:
      Configured FastAPI app
  """
  settings = settings or load_settings()
  owns_store = store is None
  if owns_store:
    store = MetricStore.from_settings(settings, clock=clock)
  hub = FanoutHub(queue_size=settings.subscriber_queue_size)
  recent = RecentMetrics(capacity=settings.recent_cache_size)
  ingestion = IngestionService(store, hub, recent)

  @asynccontextmanager
  async def lifespan(app: FastAPI):
    """Migrate the store, then run the retention sweep for the app's lifetime."""
    store.migrate()
    sweep = None
    if run_retention:
      sweep = asyncio.create_task(
        run_retention_sweeps(
          store, timedelta(days=settings.retention_days), settings.purge_interval_seconds
        )
      )
    logger.info(f'Collector ready, store at {store.engine.url.render_as_string(hide_password=True)}')
    try:
      yield
    finally:
      if sweep is not None:
        sweep.cancel()
        await asyncio.gather(sweep, return_exceptions=True)
      if owns_store:
        store.dispose()

  app = FastAPI(
    title='RouteWatch Collector',
    description='Collects, stores and aggregates HTTP request metrics',
    version=__version__,
    lifespan=lifespan,
  )
  app.state.settings = settings
  app.state.store = store
  app.state.hub = hub
  app.state.recent = recent
  app.state.ingestion = ingestion

  # Dashboards are served from other origins
  app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_methods=['*'],
    allow_headers=['*'],
  )

  @app.middleware('http')
  async def add_correlation_id(request: Request, call_next):
    """Propagate X-Correlation-ID and log the request with its timing."""
    correlation_id = correlation_id_from(request.headers)
    set_correlation_id(correlation_id)
    request.state.correlation_id = correlation_id

    start_time = time.time()
    response = await call_next(request)
    duration_ms = (time.time() - start_time) * 1000

    response.headers[CORRELATION_HEADER] = correlation_id
    if not request.url.path.startswith('/internal/'):
      log_request(request.url.path, request.method, response.status_code, duration_ms)
    return response

  @app.exception_handler(RequestValidationError)
  async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed ingest bodies in the ingestion response shape."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = '.'.join(str(part) for part in first.get('loc', ()) if part != 'body')
    message = f'{location}: {first.get("msg")}' if location else str(first.get('msg', 'Invalid request'))

    if request.url.path.rstrip('/') == INGEST_PATH and request.method == 'POST':
      return JSONResponse(status_code=400, content={'ok': False, 'error': message})
    return JSONResponse(status_code=422, content={'detail': jsonable_encoder(errors)})

  @app.exception_handler(PersistenceError)
  async def persistence_exception_handler(request: Request, exc: PersistenceError):
    """A failing store means the dashboard is disconnected."""
    logger.error(f'{request.method} {request.url.path} failed: {exc}')
    return JSONResponse(status_code=503, content={'error': 'Metrics store unavailable'})

  @app.get('/health')
  async def health():
    return {'status': 'healthy'}

  @app.get('/internal/prometheus', include_in_schema=False)
  async def prometheus_metrics():
    """Prometheus exposition of the collector's own counters."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

  app.include_router(router)
  return app
