"""Measuring reverse proxy.

Forwards every request verbatim to one upstream service, times the round
trip, and reports one metric per request to the collector after the response
has been sent. The proxy exposes no routes of its own.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.background import BackgroundTask

from routewatch.lib.config import Settings, load_settings
from routewatch.lib.distributed_tracing import (
  CORRELATION_HEADER,
  correlation_id_from,
  set_correlation_id,
)
from routewatch.lib.errors import UpstreamError, UpstreamTimeout, UpstreamUnreachable
from routewatch.lib.metrics import record_upstream_call
from routewatch.lib.structured_logger import log_request
from routewatch.services.metric_reporter import MetricReporter

logger = logging.getLogger(__name__)

# Status recorded for a request that got no upstream response at all
PROXY_FAILURE_STATUS = 500

HOP_BY_HOP_HEADERS = frozenset({
  'connection',
  'keep-alive',
  'proxy-authenticate',
  'proxy-authorization',
  'te',
  'trailer',
  'trailers',
  'transfer-encoding',
  'upgrade',
})

# The body is re-sent already decoded and re-measured
STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {'content-encoding', 'content-length'}

PROXY_METHODS = ['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'HEAD', 'OPTIONS', 'TRACE']


def upstream_port(upstream_url: str) -> Optional[int]:
  """Port the upstream listens on, defaulting by scheme."""
  url = httpx.URL(upstream_url)
  if url.port is not None:
    return url.port
  return {'http': 80, 'https': 443}.get(url.scheme)


def build_metric(
  route: str,
  method: str,
  status: int,
  response_time_ms: int,
  is_error: bool,
  source_port: Optional[int],
  service_name: Optional[str],
) -> dict:
  """Metric payload in the shape POST /api/metrics accepts."""
  payload = {
    'route': route,
    'method': method,
    'status': status,
    'responseTime': response_time_ms,
    'isError': is_error,
  }
  if source_port is not None:
    payload['sourcePort'] = source_port
  if service_name:
    payload['serviceName'] = service_name
  return payload


def _request_headers(request: Request, correlation_id: str, preserve_host: bool) -> list:
  headers = []
  for name, value in request.headers.items():
    lowered = name.lower()
    if lowered in HOP_BY_HOP_HEADERS or lowered in ('content-length', CORRELATION_HEADER.lower()):
      continue
    if lowered == 'host' and not preserve_host:
      continue
    headers.append((name, value))
  headers.append((CORRELATION_HEADER, correlation_id))
  return headers


class MeasuringProxy:
  """Forwards requests to the upstream and reports what it observed."""

  def __init__(self, settings: Settings, client: httpx.AsyncClient, reporter: MetricReporter):
    """Initialize the proxy.

    Args:
        settings: Proxy settings (upstream, service name, timeouts)
        client: HTTP client whose base_url is the upstream
        reporter: Delivers metric reports to the collector
    """
    self.settings = settings
    self.client = client
    self.reporter = reporter
    self.source_port = upstream_port(settings.upstream_url)

  async def _send_upstream(self, request: Request, target: str, correlation_id: str) -> httpx.Response:
    upstream_request = self.client.build_request(
      request.method,
      target,
      headers=_request_headers(request, correlation_id, self.settings.preserve_host),
      content=await request.body(),
    )
    try:
      return await self.client.send(upstream_request)
    except httpx.TimeoutException as e:
      raise UpstreamTimeout(
        f'Upstream did not respond within {self.settings.proxy_timeout}s',
        upstream=self.settings.upstream_url,
      ) from e
    except httpx.ConnectError as e:
      raise UpstreamUnreachable(
        f'Upstream {self.settings.upstream_url} is unreachable', upstream=self.settings.upstream_url
      ) from e
    except httpx.TransportError as e:
      raise UpstreamError(f'Upstream request failed: {e}', upstream=self.settings.upstream_url) from e

  async def forward(self, request: Request) -> Response:
    """Proxy one request.

    Transport failures become 503 (connection refused), 504 (timeout) or 502
    (anything else) JSON responses. Either way exactly one metric is reported.
    """
    correlation_id = correlation_id_from(request.headers)
    set_correlation_id(correlation_id)

    target = request.url.path
    if request.url.query:
      target = f'{target}?{request.url.query}'

    start = time.perf_counter()
    try:
      upstream_response = await self._send_upstream(request, target, correlation_id)
    except UpstreamError as e:
      elapsed = time.perf_counter() - start
      outcome = {504: 'timeout', 503: 'unreachable'}.get(e.status_code, 'error')
      record_upstream_call(request.method, outcome, elapsed)
      logger.warning(f'{request.method} {target} failed: {e}')

      payload = build_metric(
        target,
        request.method,
        PROXY_FAILURE_STATUS,
        int(round(elapsed * 1000)),
        True,
        self.source_port,
        self.settings.service_name,
      )
      return JSONResponse(
        status_code=e.status_code,
        content={'error': str(e)},
        headers={CORRELATION_HEADER: correlation_id},
        background=BackgroundTask(self.reporter.send, payload, correlation_id),
      )

    elapsed = time.perf_counter() - start
    status = upstream_response.status_code
    record_upstream_call(request.method, 'ok', elapsed)
    log_request(
      target,
      request.method,
      status,
      elapsed * 1000,
      upstream=self.settings.upstream_url,
      service_name=self.settings.service_name,
    )

    payload = build_metric(
      target,
      request.method,
      status,
      int(round(elapsed * 1000)),
      status >= 400,
      self.source_port,
      self.settings.service_name,
    )
    response = Response(
      content=upstream_response.content,
      status_code=status,
      background=BackgroundTask(self.reporter.send, payload, correlation_id),
    )
    for name, value in upstream_response.headers.multi_items():
      if name.lower() not in STRIPPED_RESPONSE_HEADERS:
        response.headers.append(name, value)
    # HEAD responses advertise the upstream body length
    if request.method == 'HEAD' and 'content-length' in upstream_response.headers:
      response.headers['content-length'] = upstream_response.headers['content-length']
    return response


def create_proxy_app(
  settings: Optional[Settings] = None,
  upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
  reporter: Optional[MetricReporter] = None,
) -> FastAPI:
  """Build the proxy application.

  Args:
      settings: Proxy settings, loaded from the environment when omitted
      upstream_transport: Optional transport for the upstream client
      reporter: Optional reporter, built from settings when omitted

  Returns:
      FastAPI app forwarding every path to the upstream
  """
  settings = settings or load_settings()
  client = httpx.AsyncClient(
    base_url=settings.upstream_url,
    timeout=settings.proxy_timeout,
    transport=upstream_transport,
    follow_redirects=False,
  )
  reporter = reporter or MetricReporter(settings.collector_url, timeout=settings.report_timeout)
  proxy = MeasuringProxy(settings, client, reporter)

  @asynccontextmanager
  async def lifespan(app: FastAPI):
    logger.info(f'Proxying to {settings.upstream_url}, reporting to {settings.collector_url}')
    yield
    await reporter.aclose()
    await client.aclose()

  app = FastAPI(
    title='RouteWatch Proxy',
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
  )
  app.state.proxy = proxy

  @app.api_route('/{path:path}', methods=PROXY_METHODS, include_in_schema=False)
  async def forward(request: Request):
    return await proxy.forward(request)

  return app
