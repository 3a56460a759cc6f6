"""
Contract tests for the collector's metrics API.

Each test runs against a fresh SQLite store with a fixed clock
(2025-03-14 12:00:00 UTC).
"""

from unittest.mock import patch

import pytest

from routewatch.lib.errors import PersistenceError


# ============================================================================
# POST /api/metrics
# ============================================================================


class TestIngest:
    def test_accepts_valid_metric(self, ingest, client):
        response = ingest(route='/api/orders', method='GET', status=200, responseTime=120)

        assert response.status_code == 200
        body = response.json()
        assert body['ok'] is True
        assert body['status'] == 'accepted'
        assert isinstance(body['id'], int)

        summary = client.get('/api/metrics/summary').json()
        assert summary == {'totalRequests': 1, 'avgResponseTime': 120, 'errorRate': 0}

    def test_error_rate_for_server_errors(self, ingest, client):
        ingest(status=500)
        ingest(status=502)

        assert client.get('/api/metrics/summary').json()['errorRate'] == 100

    def test_noise_route_is_ignored(self, ingest, client):
        response = ingest(route='/api/metrics/summary')

        assert response.status_code == 200
        assert response.json() == {'ok': True, 'status': 'ignored'}
        assert client.get('/api/metrics/export').json() == []
        assert client.get('/api/metrics/summary').json()['totalRequests'] == 0

    @pytest.mark.parametrize(
        'overrides',
        [
            {'status': 'ok'},
            {'status': 700},
            {'responseTime': -5},
            {'route': ''},
            {'method': None, 'route': '/x'},
        ],
    )
    def test_invalid_payload_is_rejected(self, ingest, client, overrides):
        response = ingest(**overrides)

        assert response.status_code == 400
        body = response.json()
        assert body['ok'] is False
        assert body['error']
        assert client.get('/api/metrics/export').json() == []

    def test_malformed_json_is_rejected(self, client):
        response = client.post(
            '/api/metrics', content=b'{"route": ', headers={'Content-Type': 'application/json'}
        )

        assert response.status_code == 400
        assert response.json()['ok'] is False

    def test_json_array_is_rejected(self, client):
        response = client.post('/api/metrics', json=[{'route': '/a'}])

        assert response.status_code == 400
        assert 'JSON object' in response.json()['error']

    def test_store_failure_returns_500(self, ingest, store):
        with patch.object(store, 'insert', side_effect=PersistenceError('database is locked')):
            response = ingest()

        assert response.status_code == 500
        assert response.json() == {'ok': False, 'error': 'Failed to store metric'}

    def test_correlation_id_is_echoed(self, client, make_payload):
        response = client.post(
            '/api/metrics', json=make_payload(), headers={'X-Correlation-ID': 'trace-42'}
        )

        assert response.headers['X-Correlation-ID'] == 'trace-42'


# ============================================================================
# Windowed queries
# ============================================================================


class TestQueries:
    def test_routes(self, ingest, client):
        ingest(route='/api/orders', responseTime=100)
        ingest(route='/api/orders', responseTime=200)
        ingest(route='/api/users', method='POST', responseTime=900, status=500)

        rows = client.get('/api/metrics/routes').json()

        assert [r['id'] for r in rows] == ['GET /api/orders', 'POST /api/users']
        assert rows[0]['avgTime'] == 150
        assert rows[1]['isSlow'] is True
        assert rows[1]['errorPercent'] == 100

    def test_latency_respects_limit(self, ingest, client):
        for i in range(5):
            ingest(responseTime=10 * i)

        points = client.get('/api/metrics/latency', params={'limit': 2}).json()

        assert [p['latency'] for p in points] == [30, 40]

    def test_errors(self, ingest, client):
        ingest(route='/api/orders', status=500)
        ingest(route='/api/orders', status=404)
        ingest(route='/api/orders', status=200)

        assert client.get('/api/metrics/errors').json() == [
            {'time': '12:00', 'count': 2, 'route': '/api/orders', 'status': 500}
        ]

    def test_export_round_trips_fields(self, ingest, client):
        ingest(route='/api/orders?page=2', method='PUT', status=201, responseTime=33, sourcePort=8081)

        [record] = client.get('/api/metrics/export', params={'limit': 1}).json()

        assert record['route'] == '/api/orders?page=2'
        assert record['method'] == 'PUT'
        assert record['status'] == 201
        assert record['responseTime'] == 33
        assert record['isError'] is False
        assert record['sourcePort'] == 8081
        assert record['serviceName'] == 'port-8081'
        assert record['timestamp'] == '2025-03-14T12:00:00+00:00'

    def test_export_keeps_route_verbatim(self, ingest, client):
        assert ingest(route='/x ').status_code == 200

        [record] = client.get('/api/metrics/export', params={'limit': 1}).json()

        assert record['route'] == '/x '

    @pytest.mark.parametrize('port', [0, 70000])
    def test_any_integer_source_port_is_stored(self, ingest, client, port):
        assert ingest(sourcePort=port).status_code == 200

        [record] = client.get('/api/metrics/export').json()

        assert record['sourcePort'] == port
        assert record['serviceName'] == f'port-{port}'

    def test_long_service_name_is_stored(self, ingest, client):
        name = 'svc-' + 'x' * 500
        assert ingest(serviceName=name).status_code == 200

        assert client.get('/api/metrics/export').json()[0]['serviceName'] == name

    def test_service_filter(self, ingest, client):
        ingest(serviceName='orders', responseTime=100)
        ingest(serviceName='billing', responseTime=300)

        summary = client.get('/api/metrics/summary', params={'service': 'billing'}).json()
        exported = client.get('/api/metrics/export', params={'service': 'orders'}).json()

        assert summary['avgResponseTime'] == 300
        assert [r['serviceName'] for r in exported] == ['orders']

    def test_window_excludes_older_records(self, ingest, client, clock):
        ingest(route='/old')
        clock.advance(minutes=20)
        ingest(route='/new')

        rows = client.get('/api/metrics/routes', params={'minutes': 10}).json()

        assert [r['route'] for r in rows] == ['/new']

    @pytest.mark.parametrize('path', ['summary', 'routes', 'latency', 'errors'])
    def test_window_must_be_positive(self, client, path):
        response = client.get(f'/api/metrics/{path}', params={'minutes': 0})
        assert response.status_code == 422

    @pytest.mark.parametrize('path', ['summary', 'export'])
    def test_store_failure_reports_disconnected(self, client, store, path):
        with patch.object(store, 'read_session', side_effect=PersistenceError('disk I/O error')):
            response = client.get(f'/api/metrics/{path}')

        assert response.status_code == 503
        assert 'error' in response.json()


# ============================================================================
# Recent buffer, stats and clear
# ============================================================================


class TestMaintenance:
    def test_recent_is_newest_first(self, ingest, client):
        ingest(route='/a')
        ingest(route='/b')
        ingest(route='/api/metrics')

        recent = client.get('/api/metrics/recent').json()

        assert [r['route'] for r in recent] == ['/b', '/a']

    def test_stats(self, ingest, client):
        ingest(route='/a')
        ingest(route='/b')

        stats = client.get('/api/metrics/stats').json()

        assert stats['totalRecords'] == 2
        assert stats['uniqueRoutes'] == 2

    def test_clear_service(self, ingest, client):
        ingest(serviceName='orders')
        ingest(serviceName='billing')

        response = client.delete('/api/metrics/clear/orders')

        assert response.status_code == 200
        assert response.json()['status'] == 'success'
        assert response.json()['removed'] == 1
        assert [r['serviceName'] for r in client.get('/api/metrics/export').json()] == ['billing']
        assert [r['serviceName'] for r in client.get('/api/metrics/recent').json()] == ['billing']


def test_prometheus_exposition(ingest, client):
    ingest()

    response = client.get('/internal/prometheus')

    assert response.status_code == 200
    assert 'routewatch_ingest_total' in response.text
