"""Shared test fixtures for unit, contract and integration tests.

Every test gets its own SQLite file under tmp_path and a controllable clock,
so window and retention behaviour can be exercised without sleeping.
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

# Ensure the project root is first in sys.path so `scripts` is importable
project_root = str(Path(__file__).parent.parent.absolute())
if project_root not in sys.path:
    sys.path.insert(0, project_root)
elif sys.path[0] != project_root:
    sys.path.remove(project_root)
    sys.path.insert(0, project_root)

import pytest
from fastapi.testclient import TestClient

from routewatch.app import create_app
from routewatch.lib.config import Settings
from routewatch.lib.database import create_metrics_engine
from routewatch.models.metric_payload import MetricPayload
from routewatch.services.metric_store import MetricStore


class FakeClock:
    """Callable clock returning naive-UTC times that only move when told to."""

    def __init__(self, start: datetime = datetime(2025, 3, 14, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


def build_payload(**overrides) -> dict:
    """Valid ingestion payload; keyword arguments replace or add fields."""
    payload = {
        'route': '/api/orders',
        'method': 'GET',
        'status': 200,
        'responseTime': 120,
    }
    payload.update(overrides)
    return {k: v for k, v in payload.items() if v is not None}


def build_metric(**overrides):
    """Resolved metric ready for MetricStore.insert."""
    return MetricPayload.model_validate(build_payload(**overrides)).resolve()


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database_url(tmp_path):
    return f'sqlite:///{tmp_path / "metrics.db"}'


@pytest.fixture
def store(database_url, clock):
    """Migrated store on a fresh SQLite file."""
    metric_store = MetricStore(create_metrics_engine(database_url), clock=clock)
    metric_store.migrate()
    yield metric_store
    metric_store.dispose()


@pytest.fixture
def settings(database_url):
    return Settings(
        database_url=database_url,
        upstream_url='http://upstream.test:8081',
        collector_url='http://collector.test/api/metrics',
        service_name='orders',
        proxy_timeout=5.0,
    )


# ============================================================================
# FastAPI Application Fixtures
# ============================================================================


@pytest.fixture
def app(settings, store):
    """Collector app bound to the test store, without the retention sweep."""
    return create_app(settings, store=store, run_retention=False)


@pytest.fixture
def client(app):
    """Test client with the app's lifespan running."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def ingest(client):
    """Post one payload to the collector and return the response."""

    def _ingest(**overrides):
        return client.post('/api/metrics', json=build_payload(**overrides))

    return _ingest


@pytest.fixture
def make_payload():
    return build_payload


@pytest.fixture
def make_metric():
    return build_metric
