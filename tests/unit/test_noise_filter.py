"""Unit tests for noise route recognition."""

import pytest
from sqlalchemy import not_, select

from routewatch.models.metric_record import MetricRecord
from routewatch.services.noise_filter import is_noise_route, noise_route_clause


@pytest.mark.parametrize(
    'route',
    [
        '/api/metrics',
        '/api/metrics/summary',
        '/api/metrics?limit=5',
        '/API/Metrics/routes',
        '/health',
        '/api/health',
        '/metrics',
    ],
)
def test_collector_routes_are_noise(route):
    assert is_noise_route(route)


@pytest.mark.parametrize('route', ['/api/orders', '/api/metricsboard', '/healthcheck', '/'])
def test_application_routes_are_not_noise(route):
    assert not is_noise_route(route)


def test_custom_prefixes():
    assert is_noise_route('/status/live', ('/status',))
    assert not is_noise_route('/api/metrics', ('/status',))
    assert not is_noise_route('/api/metrics', ())


def test_sql_clause_matches_python_predicate(store, make_metric):
    routes = ['/api/metrics', '/api/metrics/summary', '/api/metrics?x=1', '/api/metricsboard', '/api/orders']
    for route in routes:
        store.insert(make_metric(route=route))

    query = select(MetricRecord.route).where(not_(noise_route_clause(MetricRecord.route)))
    with store.read_session() as session:
        kept = sorted(session.scalars(query))

    assert kept == sorted(r for r in routes if not is_noise_route(r))
    assert kept == ['/api/metricsboard', '/api/orders']
