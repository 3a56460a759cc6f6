"""
Integration tests for the measuring proxy.

The proxy forwards to an in-process upstream app and reports to an in-process
collector, both over httpx.ASGITransport, so a request's metric can be read
back from the collector's store once the response has been returned.
"""

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from fastapi.testclient import TestClient

from routewatch.app import create_app
from routewatch.proxy import PROXY_FAILURE_STATUS, build_metric, create_proxy_app, upstream_port
from routewatch.services.metric_reporter import MetricReporter


def _build_upstream() -> FastAPI:
    upstream = FastAPI()

    @upstream.get('/api/orders')
    async def list_orders():
        return JSONResponse([{'id': 1}], headers={'X-Upstream': 'yes'})

    @upstream.post('/api/orders')
    async def create_order(request: Request):
        return JSONResponse(await request.json(), status_code=201)

    @upstream.get('/api/broken')
    async def broken():
        return JSONResponse({'detail': 'boom'}, status_code=500)

    @upstream.head('/files/report.csv')
    async def report_head():
        return Response(headers={'content-length': '1234', 'content-type': 'text/csv'})

    @upstream.api_route('/echo/method', methods=['TRACE'])
    async def echo_method(request: Request):
        return {'method': request.method}

    @upstream.get('/echo/headers')
    async def echo_headers(request: Request):
        return dict(request.headers)

    return upstream


@pytest.fixture
def collector(settings, store):
    return create_app(settings, store=store, run_retention=False)


@pytest.fixture
def reporter(settings, collector):
    return MetricReporter(settings.collector_url, transport=httpx.ASGITransport(app=collector))


def _proxy_client(settings, reporter, upstream_transport):
    app = create_proxy_app(settings, upstream_transport=upstream_transport, reporter=reporter)
    return TestClient(app)


def _failing_transport(error: Exception) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    return httpx.MockTransport(handler)


@pytest.fixture
def proxy_client(settings, reporter):
    upstream = httpx.ASGITransport(app=_build_upstream())
    with _proxy_client(settings, reporter, upstream) as client:
        yield client


class TestForwarding:
    def test_passes_response_through_and_reports(self, proxy_client, store):
        response = proxy_client.get('/api/orders', params={'page': '2'})

        assert response.status_code == 200
        assert response.json() == [{'id': 1}]
        assert response.headers['x-upstream'] == 'yes'

        [record] = store.query('export')
        assert record['route'] == '/api/orders?page=2'
        assert record['method'] == 'GET'
        assert record['status'] == 200
        assert record['isError'] is False
        assert record['sourcePort'] == 8081
        assert record['serviceName'] == 'orders'
        assert record['responseTime'] >= 0

    def test_forwards_method_and_body(self, proxy_client, store):
        response = proxy_client.post('/api/orders', json={'sku': 'A-1', 'qty': 2})

        assert response.status_code == 201
        assert response.json() == {'sku': 'A-1', 'qty': 2}
        assert store.query('export')[0]['method'] == 'POST'

    def test_upstream_error_status_is_recorded(self, proxy_client, store):
        response = proxy_client.get('/api/broken')

        assert response.status_code == 500
        assert response.json() == {'detail': 'boom'}
        [record] = store.query('export')
        assert record['status'] == 500
        assert record['isError'] is True

    def test_request_headers(self, proxy_client):
        headers = proxy_client.get(
            '/echo/headers', headers={'X-Custom': 'kept', 'X-Correlation-ID': 'trace-7'}
        ).json()

        assert headers['x-custom'] == 'kept'
        assert headers['x-correlation-id'] == 'trace-7'
        assert headers['host'] == 'upstream.test:8081'

    def test_head_keeps_upstream_content_length(self, proxy_client, store):
        response = proxy_client.head('/files/report.csv')

        assert response.status_code == 200
        assert response.headers['content-length'] == '1234'
        assert response.content == b''
        assert store.query('export')[0]['method'] == 'HEAD'

    def test_trace_is_forwarded(self, proxy_client, store):
        response = proxy_client.request('TRACE', '/echo/method')

        assert response.status_code == 200
        assert response.json() == {'method': 'TRACE'}
        assert store.query('export')[0]['method'] == 'TRACE'


class TestUpstreamFailures:
    @pytest.mark.parametrize(
        'error, status',
        [
            (httpx.ConnectError('connection refused'), 503),
            (httpx.ReadTimeout('timed out'), 504),
            (httpx.RemoteProtocolError('peer closed connection'), 502),
        ],
    )
    def test_failure_maps_to_gateway_status(self, settings, reporter, store, error, status):
        with _proxy_client(settings, reporter, _failing_transport(error)) as client:
            response = client.get('/api/orders')

        assert response.status_code == status
        assert 'error' in response.json()

        [record] = store.query('export')
        assert record['status'] == PROXY_FAILURE_STATUS
        assert record['isError'] is True
        assert record['route'] == '/api/orders'
        assert record['serviceName'] == 'orders'


class TestCollectorFailures:
    def test_collector_down_does_not_affect_response(self, settings):
        reporter = MetricReporter(
            settings.collector_url, transport=_failing_transport(httpx.ConnectError('refused'))
        )
        upstream = httpx.ASGITransport(app=_build_upstream())

        with _proxy_client(settings, reporter, upstream) as client:
            response = client.get('/api/orders')

        assert response.status_code == 200
        assert response.json() == [{'id': 1}]


def test_upstream_port_defaults_by_scheme():
    assert upstream_port('http://localhost:8081') == 8081
    assert upstream_port('http://orders.internal') == 80
    assert upstream_port('https://orders.internal') == 443


def test_build_metric_omits_unknown_fields():
    assert build_metric('/a', 'GET', 200, 5, False, None, None) == {
        'route': '/a',
        'method': 'GET',
        'status': 200,
        'responseTime': 5,
        'isError': False,
    }
