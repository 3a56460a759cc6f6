"""Shared infrastructure: configuration, database, logging, tracing, errors.

Services that report their own requests install `reporting_middleware`.
"""

from routewatch.lib.metrics_middleware import reporting_middleware

__all__ = ['reporting_middleware']
