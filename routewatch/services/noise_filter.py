"""Recognizes the collector's own API and health routes.

A route is noise when its path equals a noise prefix or is nested under it,
e.g. with prefix '/api/metrics': '/api/metrics', '/api/metrics/summary' and
'/api/metrics?limit=5' are noise, '/api/metricsboard' is not.
"""

from typing import Iterable

from sqlalchemy import ColumnElement, false, or_

from routewatch.lib.config import DEFAULT_NOISE_PREFIXES


def is_noise_route(route: str, prefixes: Iterable[str] = DEFAULT_NOISE_PREFIXES) -> bool:
    path = route.split('?', 1)[0].lower()
    for prefix in prefixes:
        prefix = prefix.lower()
        if path == prefix or path.startswith(prefix + '/'):
            return True
    return False


def noise_route_clause(column, prefixes: Iterable[str] = DEFAULT_NOISE_PREFIXES) -> ColumnElement:
    """SQL condition matching the same routes as is_noise_route.

    Args:
        column: Route column to test
        prefixes: Noise prefixes

    Returns:
        Boolean clause, true for noise routes
    """
    conditions = []
    for prefix in prefixes:
        conditions.extend([column == prefix, column.like(f'{prefix}/%'), column.like(f'{prefix}?%')])
    if not conditions:
        return false()
    return or_(*conditions)
