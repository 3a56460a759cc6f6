"""Runtime configuration for the collector and the measuring proxy.

Values come from environment variables. `.env` and `.env.local` in the working
directory are loaded first so local development does not need exported vars.
"""

import os
from dataclasses import dataclass, field
from typing import Tuple

from dotenv import load_dotenv

DEFAULT_NOISE_PREFIXES = ('/api/metrics', '/metrics', '/health', '/api/health')


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f'{name} must be an integer (got {raw!r})')


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f'{name} must be a number (got {raw!r})')


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_prefixes(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return DEFAULT_NOISE_PREFIXES
    return tuple(p.strip().rstrip('/') or '/' for p in raw.split(',') if p.strip())


@dataclass(frozen=True)
class Settings:
    """Collector and proxy settings.

    Collector:
        database_url: SQLAlchemy URL of the metrics store
        busy_timeout_ms: Max time a connection waits on a locked database
        retention_days: Age after which records are purged
        purge_interval_seconds: Delay between retention sweeps
        noise_prefixes: Route prefixes belonging to the collector itself
        recent_cache_size: Capacity of the recent-metrics ring buffer
        slow_route_ms: Average latency above which a route is flagged slow
        subscriber_queue_size: Pending live events per dashboard session

    Proxy:
        upstream_url: Base URL all proxied requests are sent to
        collector_url: Ingestion endpoint metric reports are posted to
        service_name: Logical name reported with every metric (optional)
        proxy_timeout: Upstream timeout in seconds
        report_timeout: Metric report timeout in seconds
        preserve_host: Forward the client's Host header unchanged
    """

    database_url: str = 'sqlite:///metrics.db'
    busy_timeout_ms: int = 5000
    retention_days: int = 7
    purge_interval_seconds: float = 3600.0
    noise_prefixes: Tuple[str, ...] = field(default=DEFAULT_NOISE_PREFIXES)
    recent_cache_size: int = 100
    slow_route_ms: int = 500
    subscriber_queue_size: int = 256

    upstream_url: str = 'http://localhost:8081'
    collector_url: str = 'http://localhost:3002/api/metrics'
    service_name: str | None = None
    proxy_timeout: float = 30.0
    report_timeout: float = 2.0
    preserve_host: bool = False


def load_settings() -> Settings:
    """Build settings from the environment.

    Returns:
        Settings populated from ROUTEWATCH_* variables, defaults elsewhere

    Raises:
        ValueError: If a numeric variable cannot be parsed
    """
    load_dotenv('.env')
    load_dotenv('.env.local', override=True)

    return Settings(
        database_url=os.getenv('ROUTEWATCH_DATABASE_URL', Settings.database_url),
        busy_timeout_ms=_env_int('ROUTEWATCH_BUSY_TIMEOUT_MS', Settings.busy_timeout_ms),
        retention_days=_env_int('ROUTEWATCH_RETENTION_DAYS', Settings.retention_days),
        purge_interval_seconds=_env_float(
            'ROUTEWATCH_PURGE_INTERVAL_SECONDS', Settings.purge_interval_seconds
        ),
        noise_prefixes=_env_prefixes('ROUTEWATCH_NOISE_PREFIXES'),
        recent_cache_size=_env_int('ROUTEWATCH_RECENT_CACHE_SIZE', Settings.recent_cache_size),
        slow_route_ms=_env_int('ROUTEWATCH_SLOW_ROUTE_MS', Settings.slow_route_ms),
        subscriber_queue_size=_env_int(
            'ROUTEWATCH_SUBSCRIBER_QUEUE_SIZE', Settings.subscriber_queue_size
        ),
        upstream_url=os.getenv('ROUTEWATCH_UPSTREAM_URL', Settings.upstream_url),
        collector_url=os.getenv('ROUTEWATCH_COLLECTOR_URL', Settings.collector_url),
        service_name=os.getenv('ROUTEWATCH_SERVICE_NAME') or None,
        proxy_timeout=_env_float('ROUTEWATCH_PROXY_TIMEOUT', Settings.proxy_timeout),
        report_timeout=_env_float('ROUTEWATCH_REPORT_TIMEOUT', Settings.report_timeout),
        preserve_host=_env_bool('ROUTEWATCH_PRESERVE_HOST', Settings.preserve_host),
    )
