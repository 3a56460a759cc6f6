"""
FastAPI middleware that reports a service's own requests to the collector.

Install it on any FastAPI service to get the same metrics the measuring proxy
produces, without putting a proxy in front of it:

    reporter = MetricReporter('http://localhost:3002/api/metrics')
    app.middleware('http')(reporting_middleware(reporter, service_name='orders'))

Reports are dispatched as background tasks after the response is built.
Reporting failures never affect the response.
"""

import logging
import time
from typing import Iterable, Optional

from fastapi import Request

from routewatch.lib.config import DEFAULT_NOISE_PREFIXES
from routewatch.services.metric_reporter import MetricReporter
from routewatch.services.noise_filter import is_noise_route

logger = logging.getLogger(__name__)

EXCLUDED_PREFIXES = DEFAULT_NOISE_PREFIXES + ('/internal',)


def reporting_middleware(
    reporter: MetricReporter,
    service_name: Optional[str] = None,
    excluded_prefixes: Iterable[str] = EXCLUDED_PREFIXES,
    source_port: Optional[int] = None,
):
    """Build an HTTP middleware reporting every handled request.

    Args:
        reporter: Delivers reports to the collector
        service_name: Logical name reported with every metric
        excluded_prefixes: Paths that are never reported (health, metrics, internal)
        source_port: Port reported as sourcePort, the request's server port when omitted

    Returns:
        Middleware coroutine for `app.middleware('http')`
    """
    excluded = tuple(excluded_prefixes)

    async def middleware(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        response_time_ms = int(round((time.perf_counter() - start_time) * 1000))

        route = request.url.path
        if is_noise_route(route, excluded):
            return response
        if request.url.query:
            route = f'{route}?{request.url.query}'

        payload = {
            'route': route,
            'method': request.method,
            'status': response.status_code,
            'responseTime': response_time_ms,
            'isError': response.status_code >= 400,
        }
        port = source_port if source_port is not None else request.url.port
        if port is not None:
            payload['sourcePort'] = port
        if service_name:
            payload['serviceName'] = service_name

        reporter.dispatch(payload, request.headers.get('X-Correlation-ID'))
        return response

    return middleware
